"""
Rendered page producer tests (browser stubbed out)
"""

import asyncio

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from riskscan_agent import page_capture
from riskscan_agent.errors import ProviderTimeoutError
from riskscan_agent.pending import PendingHtmlCache


PAGE = '<form><input type="text" name="cardnumber"><input name="cvv"><input name="exp_date"></form>'


def test_capture_delivers_to_cache(monkeypatch):
    async def fake_render(url, *, timeout_ms=12000):
        return PAGE

    monkeypatch.setattr(page_capture, "render_html", fake_render)
    pending = PendingHtmlCache()
    delivered = asyncio.run(page_capture.capture_into(pending, "https://shop.example.test/"))
    assert delivered is False
    assert pending.take("https://shop.example.test/").has_financial_harvesting


def test_render_timeout_is_a_provider_timeout(monkeypatch):
    async def fake_render(url, *, timeout_ms=12000):
        raise PlaywrightTimeoutError("Timeout 12000ms exceeded")

    monkeypatch.setattr(page_capture, "render_html", fake_render)
    with pytest.raises(ProviderTimeoutError):
        asyncio.run(page_capture.capture_page_features("https://slow.example.test/"))


def test_failed_capture_leaves_cache_empty(monkeypatch):
    async def fake_render(url, *, timeout_ms=12000):
        raise PlaywrightTimeoutError("Timeout 12000ms exceeded")

    monkeypatch.setattr(page_capture, "render_html", fake_render)
    pending = PendingHtmlCache()
    assert asyncio.run(page_capture.capture_into(pending, "https://slow.example.test/")) is False
    assert len(pending) == 0


def test_failed_capture_releases_waiting_scan(monkeypatch):
    async def fake_render(url, *, timeout_ms=12000):
        raise PlaywrightTimeoutError("Timeout 12000ms exceeded")

    monkeypatch.setattr(page_capture, "render_html", fake_render)
    pending = PendingHtmlCache()

    async def scenario():
        waiting = asyncio.create_task(pending.wait("https://slow.example.test/", 10.0))
        await asyncio.sleep(0)
        await page_capture.capture_into(pending, "https://slow.example.test/")
        return await asyncio.wait_for(waiting, 0.5)

    assert asyncio.run(scenario()) is None
