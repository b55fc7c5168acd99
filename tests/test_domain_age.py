"""
Domain age resolver tests
"""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from riskscan_agent.domain_age import DomainAgeResolver, TTLCache, age_category, build_age_record, looks_private


NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _resolver(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DomainAgeResolver(client=client, now=lambda: NOW, **kwargs)


def _rdap_payload(date, registrar="Example Registrar LLC"):
    return {
        "events": [
            {"eventAction": "last changed", "eventDate": "2024-05-01T00:00:00Z"},
            {"eventAction": "registration", "eventDate": date},
        ],
        "entities": [
            {"roles": ["registrar"], "vcardArray": ["vcard", [["version", {}, "text", "4.0"], ["fn", {}, "text", registrar]]]},
        ],
    }


class TestAgeRecord:
    """Age categories and record building"""

    @pytest.mark.parametrize(
        "days,category",
        [(None, "UNKNOWN"), (0, "VERY_NEW"), (6, "VERY_NEW"), (7, "NEW"), (29, "NEW"), (30, "RECENT"),
         (89, "RECENT"), (90, "YOUNG"), (364, "YOUNG"), (365, "MATURE"), (1824, "MATURE"), (1825, "OLD")],
    )
    def test_categories(self, days, category):
        assert age_category(days) == category

    def test_build_from_creation_date(self):
        record = build_age_record("example.com", datetime(2024, 5, 28, tzinfo=timezone.utc), NOW, source="rdap")
        assert record.domain_age_days == 4
        assert record.is_very_new
        assert record.is_new
        assert not record.is_estimated
        assert record.creation_date.startswith("2024-05-28")

    def test_privacy_keywords(self):
        assert looks_private("Domains By Proxy, LLC")
        assert looks_private(None, "REDACTED FOR PRIVACY")
        assert not looks_private("GoDaddy.com, LLC")


class TestTTLCache:
    """LRU + TTL map"""

    def test_lru_eviction(self):
        cache = TTLCache(2, 60)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 1

    def test_expiry(self):
        now = {"t": 0.0}
        cache = TTLCache(10, 60, clock=lambda: now["t"])
        cache.set("a", 1)
        now["t"] = 61
        assert cache.get("a") is None


class TestDomainAgeResolver:
    """Provider fallback chain and cache"""

    def test_whoisjson_first(self):
        calls = []

        def handler(request):
            calls.append(request.url.host)
            return httpx.Response(200, json={"created_date": "2024-05-30T10:00:00Z", "registrar": "Privacy Protect LLC"})

        resolver = _resolver(handler)
        record = asyncio.run(resolver.resolve("login.example.com"))
        assert record.domain == "example.com"
        assert record.source == "whoisjson"
        assert record.domain_age_days == 1
        assert record.whois_privacy_enabled is True
        assert calls == ["whoisjson.com"]

    def test_rdap_fallback(self):
        def handler(request):
            if request.url.host == "whoisjson.com":
                return httpx.Response(500)
            assert request.url.path == "/com/v1/domain/example.com"
            return httpx.Response(200, json=_rdap_payload("2015-01-15T00:00:00Z"))

        record = asyncio.run(_resolver(handler).resolve("example.com"))
        assert record.source == "rdap"
        assert record.registrar == "Example Registrar LLC"
        assert record.age_category == "OLD"
        assert record.whois_privacy_enabled is False

    def test_cache_hit(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"created_date": "2023-01-01"})

        resolver = _resolver(handler)

        async def twice():
            first = await resolver.resolve("example.com")
            second = await resolver.resolve("www.example.com")
            return first, second

        first, second = asyncio.run(twice())
        assert first == second
        assert len(calls) == 1
        stats = resolver.stats()
        assert stats["cache_hits"] == 1
        assert stats["cache_misses"] == 1
        assert stats["whoisjson_success"] == 1

    def test_known_old_domain_estimate(self):
        resolver = _resolver(lambda request: httpx.Response(503))
        record = asyncio.run(resolver.resolve("mail.google.com"))
        assert record.is_estimated
        assert record.source == "estimate"
        assert record.domain_age_days == 3650
        assert record.age_category == "OLD"

    def test_unknown_domain_failure(self):
        resolver = _resolver(lambda request: httpx.Response(503))
        assert asyncio.run(resolver.resolve("brand-new-site.xyz")) is None
        assert resolver.stats()["failed"] == 1

    def test_timeout_falls_back(self):
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json={})

        resolver = _resolver(handler)
        assert asyncio.run(resolver.resolve("slow-site.com", timeout=0.05)) is None

    def test_bare_label_is_ignored(self):
        resolver = _resolver(lambda request: httpx.Response(200, json={}))
        assert asyncio.run(resolver.resolve("localhost")) is None
