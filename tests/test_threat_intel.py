"""
Threat intelligence gateway tests
"""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from riskscan_agent.config import Settings
from riskscan_agent.errors import ProviderTimeoutError, ProviderUnavailableError, QuotaExceededError
from riskscan_agent.threat_intel import MonthlyUsageCounter, WebRiskGateway, normalize_threat_response


class TestNormalizeThreatResponse:
    """Provider response shapes"""

    def test_web_risk_shape(self):
        verdict = normalize_threat_response({"threat": {"threatTypes": ["MALWARE", "SOCIAL_ENGINEERING"]}})
        assert verdict.threats == ("MALWARE", "SOCIAL_ENGINEERING")
        assert verdict.flagged

    def test_matches_shape(self):
        verdict = normalize_threat_response({"matches": [{"threatType": "THREAT_TYPE_MALWARE"}]})
        assert verdict.threats == ("MALWARE",)

    def test_threat_matches_shape(self):
        verdict = normalize_threat_response({"threatMatches": [{"threatType": "unwanted_software"}]})
        assert verdict.threats == ("UNWANTED_SOFTWARE",)

    def test_first_shape_wins(self):
        payload = {"threat": {"threatTypes": ["MALWARE"]}, "matches": [{"threatType": "SOCIAL_ENGINEERING"}]}
        assert normalize_threat_response(payload).threats == ("MALWARE",)

    def test_duplicates_dropped(self):
        verdict = normalize_threat_response({"threat": {"threatTypes": ["MALWARE", "THREAT_TYPE_MALWARE"]}})
        assert verdict.threats == ("MALWARE",)

    @pytest.mark.parametrize("payload", [{}, None, [], {"threat": {}}, {"matches": "nope"}])
    def test_unknown_shapes_are_clean(self, payload):
        verdict = normalize_threat_response(payload)
        assert verdict.threats == ()
        assert not verdict.flagged


class TestMonthlyUsageCounter:
    """Monthly quota"""

    def test_limit_enforced(self):
        counter = MonthlyUsageCounter(2)
        counter.try_acquire()
        counter.try_acquire()
        with pytest.raises(QuotaExceededError):
            counter.try_acquire()
        snap = counter.snapshot()
        assert snap.used == 2
        assert snap.remaining == 0
        assert snap.exhausted

    def test_resets_on_new_month(self):
        moment = {"now": datetime(2024, 1, 31, 23, 0, tzinfo=timezone.utc)}
        counter = MonthlyUsageCounter(1, clock=lambda: moment["now"])
        counter.try_acquire()
        with pytest.raises(QuotaExceededError):
            counter.try_acquire()
        moment["now"] = datetime(2024, 2, 1, 0, 5, tzinfo=timezone.utc)
        assert counter.try_acquire() == 1
        assert counter.snapshot().month == "2024-02"

    def test_near_limit(self):
        counter = MonthlyUsageCounter(10)
        for _ in range(8):
            counter.try_acquire()
        snap = counter.snapshot()
        assert snap.near_limit
        assert not snap.exhausted
        assert snap.percent_used == 80.0

    def test_reset(self):
        counter = MonthlyUsageCounter(1)
        counter.try_acquire()
        counter.reset()
        assert counter.snapshot().used == 0


def _gateway(handler, *, limit=100, key="test-key"):
    settings = Settings(webrisk_api_key=key, monthly_scan_limit=limit)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebRiskGateway(settings, client=client)


class TestWebRiskGateway:
    """uris:search client"""

    def test_flagged_url(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"threat": {"threatTypes": ["SOCIAL_ENGINEERING"]}})

        gateway = _gateway(handler)
        verdict = asyncio.run(gateway.check("http://evil.test/"))
        assert verdict.threats == ("SOCIAL_ENGINEERING",)
        params = seen[0].url.params
        assert params.get_list("threatTypes") == ["MALWARE", "SOCIAL_ENGINEERING", "UNWANTED_SOFTWARE"]
        assert params["uri"] == "http://evil.test/"
        assert params["key"] == "test-key"
        assert gateway.usage.snapshot().used == 1

    def test_clean_url(self):
        gateway = _gateway(lambda request: httpx.Response(200, json={}))
        assert not asyncio.run(gateway.check("https://example.com/")).flagged

    def test_http_error_is_unavailable(self):
        gateway = _gateway(lambda request: httpx.Response(503))
        with pytest.raises(ProviderUnavailableError):
            asyncio.run(gateway.check("https://example.com/"))

    def test_bad_json_is_unavailable(self):
        gateway = _gateway(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(ProviderUnavailableError):
            asyncio.run(gateway.check("https://example.com/"))

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        gateway = _gateway(handler)
        with pytest.raises(ProviderTimeoutError):
            asyncio.run(gateway.check("https://example.com/"))

    def test_quota_exhausted_never_calls_provider(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={})

        gateway = _gateway(handler, limit=0)
        with pytest.raises(QuotaExceededError):
            asyncio.run(gateway.check("https://example.com/"))
        assert calls == []

    def test_missing_key(self):
        gateway = _gateway(lambda request: httpx.Response(200, json={}), key=None)
        assert not gateway.configured
        with pytest.raises(ProviderUnavailableError):
            asyncio.run(gateway.check("https://example.com/"))
