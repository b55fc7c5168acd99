from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi import HTTPException
from fastapi.middleware.cors import CORSMiddleware

from dotenv import load_dotenv

from .certificates import CertificateInspector
from .config import Settings
from .domain_age import DomainAgeResolver
from .errors import InvalidUrlError
from .features import build_features, merge_html
from .html_analyzer import analyze_html
from .models import (
    AgeRecord,
    HtmlFeaturesRequest,
    HtmlFeaturesResponse,
    RiskAssessment,
    ScanRequest,
    ScanResult,
    ScoreRequest,
    UsageSnapshot,
)
from .orchestrator import ScanOrchestrator, ScanSupervisor
from .page_capture import capture_into
from .pending import PendingHtmlCache
from .scorer import score_features
from .threat_intel import MonthlyUsageCounter, WebRiskGateway


# Load environment variables from the project root .env (WEBRISK_API_KEY in local dev)
_HERE = Path(__file__).resolve()
_PROJECT_ROOT = _HERE.parents[1]
load_dotenv(_PROJECT_ROOT / ".env", override=False)

logging.basicConfig(
    level=os.getenv("RISKSCAN_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

settings = Settings.from_env()
usage = MonthlyUsageCounter(settings.monthly_scan_limit)
pending = PendingHtmlCache(settings.pending_capacity, settings.pending_ttl_s)
age_resolver = DomainAgeResolver(settings)
threat_gateway = WebRiskGateway(settings, usage=usage)
if not threat_gateway.configured:
    logger.warning("WEBRISK_API_KEY not set; threat intel lookups are disabled")

orchestrator = ScanOrchestrator(
    settings,
    age_resolver=age_resolver,
    threat_gateway=threat_gateway if threat_gateway.configured else None,
    cert_inspector=CertificateInspector(),
    pending=pending,
)
supervisor = ScanSupervisor(orchestrator)

app = FastAPI(title="RiskScan Agent", version="0.1.0")

_PLAYWRIGHT_CONCURRENCY = max(1, int(os.getenv("PLAYWRIGHT_CONCURRENCY", "1")))
_PLAYWRIGHT_ACQUIRE_TIMEOUT_S = float(os.getenv("PLAYWRIGHT_ACQUIRE_TIMEOUT_S", "0.25"))
_playwright_semaphore = asyncio.Semaphore(_PLAYWRIGHT_CONCURRENCY)


@asynccontextmanager
async def _playwright_slot():
    try:
        await asyncio.wait_for(_playwright_semaphore.acquire(), timeout=_PLAYWRIGHT_ACQUIRE_TIMEOUT_S)
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=503,
            detail="Agent busy (too many concurrent browser jobs). Please retry.",
            headers={"Retry-After": "2"},
        )
    try:
        yield
    finally:
        _playwright_semaphore.release()


# In production, set RISKSCAN_CORS_ORIGINS to the extension/frontend origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _validated(url: str) -> str:
    try:
        return build_features(url).url
    except InvalidUrlError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/healthz")
def healthz():
    return {"ok": True}


async def _rendered_scan(req: ScanRequest) -> ScanResult | None:
    async with _playwright_slot():
        capture = asyncio.create_task(capture_into(pending, req.url, timeout_ms=settings.render_timeout_ms))
        try:
            if req.tab_id:
                return await supervisor.run(
                    req.tab_id, req.url, req.scan_type, html_wait_ms=settings.render_timeout_ms
                )
            return await orchestrator.scan(req.url, req.scan_type, html_wait_ms=settings.render_timeout_ms)
        finally:
            if not capture.done():
                capture.cancel()
            await asyncio.gather(capture, return_exceptions=True)


@app.post("/scan", response_model=ScanResult)
async def scan_endpoint(req: ScanRequest):
    _validated(req.url)
    html = analyze_html(req.html, req.url) if req.html else None
    if req.render and html is None:
        result = await _rendered_scan(req)
    elif req.tab_id:
        result = await supervisor.run(req.tab_id, req.url, req.scan_type, html=html)
    else:
        return await orchestrator.scan(req.url, req.scan_type, html=html)

    if result is None:
        raise HTTPException(status_code=409, detail="Scan superseded by a newer scan for this tab")
    return result


@app.delete("/scan/{tab_id}")
async def cancel_scan_endpoint(tab_id: str):
    return {"cancelled": supervisor.close(tab_id)}


@app.post("/html-features", response_model=HtmlFeaturesResponse)
async def html_features_endpoint(req: HtmlFeaturesRequest):
    _validated(req.url)
    features = analyze_html(req.html, req.url)
    delivered = pending.put(req.url, features)
    return HtmlFeaturesResponse(url=req.url, delivered=delivered, features=features)


@app.post("/score", response_model=RiskAssessment)
def score_endpoint(req: ScoreRequest):
    try:
        record = build_features(req.url)
    except InvalidUrlError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if req.html:
        record = merge_html(record, analyze_html(req.html, req.url))
    return score_features(record, settings.weights)


@app.get("/api/domain-age", response_model=AgeRecord)
async def domain_age_endpoint(domain: str):
    record = await age_resolver.resolve(domain.strip().lower())
    if record is None:
        raise HTTPException(status_code=404, detail=f"No registration data for {domain}")
    return record


@app.get("/stats/usage", response_model=UsageSnapshot)
def usage_endpoint():
    return usage.snapshot()


@app.get("/stats/domain-age")
def domain_age_stats_endpoint():
    return age_resolver.stats()
