from __future__ import annotations

import asyncio
import logging

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .errors import ProviderTimeoutError, ProviderUnavailableError
from .html_analyzer import HIDDEN_MARKER_ATTR, analyze_html
from .models import HtmlFeatureRecord
from .pending import PendingHtmlCache

logger = logging.getLogger(__name__)

PROVIDER = "browser"

# Tags iframes the browser actually lays out as invisible, so the static
# analyzer can see computed styles it cannot evaluate itself.
_MARK_HIDDEN_IFRAMES_JS = """
(attr) => {
  let marked = 0;
  for (const frame of document.querySelectorAll('iframe')) {
    const style = window.getComputedStyle(frame);
    const rect = frame.getBoundingClientRect();
    if (style.display === 'none' || style.visibility === 'hidden' ||
        parseFloat(style.opacity) === 0 || rect.width <= 1 || rect.height <= 1) {
      frame.setAttribute(attr, '1');
      marked += 1;
    }
  }
  return marked;
}
"""


async def render_html(url: str, *, timeout_ms: int = 12000) -> str:
    """Load url in headless Chromium and return the rendered DOM."""
    async with async_playwright() as p:
        browser = await p.chromium.launch(
            headless=True,
            args=[
                "--no-sandbox",
                "--disable-dev-shm-usage",
                "--disable-gpu",
            ],
        )
        context = await browser.new_context(
            viewport={"width": 1365, "height": 768},
            user_agent=(
                "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 RiskScanCapture/1.0"
            ),
            java_script_enabled=True,
            ignore_https_errors=True,
        )
        page = await context.new_page()

        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            # Give client-side apps a moment to build their forms.
            await page.wait_for_timeout(450)
            marked = await page.evaluate(_MARK_HIDDEN_IFRAMES_JS, HIDDEN_MARKER_ATTR)
            if marked:
                logger.debug("marked %d hidden iframes on %s", marked, url)
            return await page.content()
        finally:
            await context.close()
            await browser.close()


async def capture_page_features(url: str, *, timeout_ms: int = 12000) -> HtmlFeatureRecord:
    try:
        html = await render_html(url, timeout_ms=timeout_ms)
    except (PlaywrightTimeoutError, asyncio.TimeoutError) as e:
        raise ProviderTimeoutError(PROVIDER, f"rendering {url} timed out") from e
    except PlaywrightError as e:
        raise ProviderUnavailableError(PROVIDER, f"rendering {url} failed: {e}") from e
    return analyze_html(html, url)


async def capture_into(pending: PendingHtmlCache, url: str, *, timeout_ms: int = 12000) -> bool:
    """Render url, analyze it and hand the record to the pending cache.

    Returns whether a waiting scan received it directly. Failures are logged
    and abandon the URL, so a scan waiting on it stops waiting.
    """
    try:
        record = await capture_page_features(url, timeout_ms=timeout_ms)
    except (ProviderTimeoutError, ProviderUnavailableError) as e:
        logger.warning("page capture failed: %s", e)
        pending.abandon(url)
        return False
    return pending.put(url, record)
