from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from .config import Settings
from .errors import ProviderError, ProviderUnavailableError
from .features import registrable_domain
from .models import AgeCategory, AgeRecord
from .tables import KNOWN_OLD_DOMAINS, RDAP_SERVERS, WHOIS_PRIVACY_KEYWORDS, host_matches

logger = logging.getLogger(__name__)

_DATE_PREFIX_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")


def _parse_date(raw: Any) -> datetime | None:
    if not raw:
        return None
    value = str(raw).strip()
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        m = _DATE_PREFIX_RE.match(value)
        if not m:
            return None
        dt = datetime(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def age_category(days: int | None) -> AgeCategory:
    if days is None:
        return "UNKNOWN"
    if days < 7:
        return "VERY_NEW"
    if days < 30:
        return "NEW"
    if days < 90:
        return "RECENT"
    if days < 365:
        return "YOUNG"
    if days < 1825:
        return "MATURE"
    return "OLD"


def looks_private(*texts: str | None) -> bool:
    joined = " ".join((t or "").lower() for t in texts)
    return any(k in joined for k in WHOIS_PRIVACY_KEYWORDS)


def build_age_record(
    domain: str,
    created: datetime | None,
    now: datetime,
    *,
    registrar: str | None = None,
    privacy: bool | None = None,
    source: str = "estimate",
    estimated_days: int | None = None,
) -> AgeRecord:
    if created is not None:
        days: int | None = int((now - created).total_seconds() // 86400)
    else:
        days = estimated_days
    if days is not None and days < 0:
        days = None
    return AgeRecord(
        domain=domain,
        creation_date=created.isoformat() if created else None,
        domain_age_days=days,
        is_very_new=days is not None and days < 7,
        is_new=days is not None and days < 30,
        is_young=days is not None and days < 365,
        whois_privacy_enabled=privacy,
        registrar=registrar or "Unknown",
        age_category=age_category(days),
        is_estimated=created is None,
        source=source,
    )


class TTLCache:
    """Small LRU map whose entries also expire after `ttl_s` seconds."""

    def __init__(self, capacity: int, ttl_s: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.capacity = max(1, capacity)
        self.ttl_s = ttl_s
        self._clock = clock
        self._data: OrderedDict[str, tuple[float, Any]] = OrderedDict()

    def get(self, key: str) -> Any | None:
        item = self._data.get(key)
        if item is None:
            return None
        stored_at, value = item
        if self._clock() - stored_at > self.ttl_s:
            self._data.pop(key, None)
            return None
        self._data.move_to_end(key)
        return value

    def set(self, key: str, value: Any) -> None:
        self._data[key] = (self._clock(), value)
        self._data.move_to_end(key)
        while len(self._data) > self.capacity:
            self._data.popitem(last=False)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


def _vcard_name(entity: dict[str, Any]) -> str | None:
    vcard = entity.get("vcardArray")
    if not isinstance(vcard, list) or len(vcard) < 2 or not isinstance(vcard[1], list):
        return None
    for prop in vcard[1]:
        if isinstance(prop, list) and len(prop) >= 4 and prop[0] == "fn":
            return str(prop[3])
    return None


class DomainAgeResolver:
    """Registration age lookups: WhoisJSON first, then RDAP, with a TTL cache.

    When both providers fail, well-known long-lived domains get an estimated
    record; anything else resolves to None.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.settings = settings or Settings()
        self._client = client
        self._now = now
        self._cache = TTLCache(self.settings.age_cache_size, self.settings.age_cache_ttl_s, clock)
        self._stats = {
            "total_requests": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "whoisjson_success": 0,
            "rdap_success": 0,
            "estimated": 0,
            "failed": 0,
        }

    def stats(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self._stats)
        out["cache_size"] = len(self._cache)
        total = self._stats["total_requests"]
        out["cache_hit_rate"] = round(self._stats["cache_hits"] / total, 4) if total else 0.0
        return out

    def clear_cache(self) -> None:
        self._cache.clear()

    def estimate(self, domain: str) -> AgeRecord | None:
        if not host_matches(domain, KNOWN_OLD_DOMAINS):
            return None
        self._stats["estimated"] += 1
        return build_age_record(domain, None, self._now(), privacy=False, estimated_days=3650)

    async def resolve(self, hostname: str, timeout: float | None = None) -> AgeRecord | None:
        domain = registrable_domain(hostname or "")
        if not domain or "." not in domain:
            return None
        self._stats["total_requests"] += 1

        cached = self._cache.get(domain)
        if cached is not None:
            self._stats["cache_hits"] += 1
            return cached
        self._stats["cache_misses"] += 1

        budget = timeout if timeout is not None else self.settings.age_timeout_ms / 1000
        try:
            record = await asyncio.wait_for(self._lookup(domain, budget), timeout=budget)
        except asyncio.TimeoutError:
            logger.info("domain age lookup for %s timed out after %.1fs", domain, budget)
            record = None

        if record is None:
            self._stats["failed"] += 1
            return self.estimate(domain)

        self._cache.set(domain, record)
        return record

    async def _lookup(self, domain: str, timeout: float) -> AgeRecord | None:
        if self._client is not None:
            return await self._lookup_with(self._client, domain)
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            return await self._lookup_with(client, domain)

    async def _lookup_with(self, client: httpx.AsyncClient, domain: str) -> AgeRecord | None:
        for name, fn in (("whoisjson", self._whoisjson), ("rdap", self._rdap)):
            try:
                record = await fn(client, domain)
            except ProviderError as e:
                logger.debug("domain age provider failed: %s", e)
                continue
            if record is not None:
                self._stats[f"{name}_success"] += 1
                return record
        return None

    async def _get_json(self, client: httpx.AsyncClient, provider: str, url: str, **kwargs: Any) -> Any:
        try:
            res = await client.get(url, headers={"accept": "application/rdap+json, application/json"}, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(provider, str(e) or type(e).__name__) from e
        if res.status_code < 200 or res.status_code >= 300:
            raise ProviderUnavailableError(provider, f"HTTP {res.status_code}")
        try:
            return res.json()
        except ValueError as e:
            raise ProviderUnavailableError(provider, "invalid JSON") from e

    async def _whoisjson(self, client: httpx.AsyncClient, domain: str) -> AgeRecord | None:
        data = await self._get_json(client, "whoisjson", self.settings.whoisjson_endpoint, params={"domain": domain})
        if not isinstance(data, dict):
            return None
        created = _parse_date(data.get("created_date") or data.get("creation_date") or data.get("created"))
        if created is None:
            return None

        registrar = data.get("registrar") or data.get("registrarName")
        if isinstance(registrar, dict):
            registrar = registrar.get("name")
        contact = data.get("admin_contact") or data.get("registrant") or {}
        contact_name = contact.get("name") if isinstance(contact, dict) else None
        return build_age_record(
            domain,
            created,
            self._now(),
            registrar=str(registrar) if registrar else None,
            privacy=looks_private(str(registrar or ""), contact_name),
            source="whoisjson",
        )

    async def _rdap(self, client: httpx.AsyncClient, domain: str) -> AgeRecord | None:
        tld = domain.rsplit(".", 1)[-1]
        base = RDAP_SERVERS.get(tld, self.settings.rdap_fallback)
        data = await self._get_json(client, "rdap", f"{base}/domain/{domain}")
        if not isinstance(data, dict):
            return None

        created = None
        for event in data.get("events") or []:
            action = str(event.get("eventAction") or "").lower()
            if action in ("registration", "creation"):
                created = _parse_date(event.get("eventDate"))
                break
        if created is None:
            return None

        registrar = None
        registrant = None
        for entity in data.get("entities") or []:
            roles = entity.get("roles") or []
            if "registrar" in roles and registrar is None:
                registrar = _vcard_name(entity)
            if "registrant" in roles and registrant is None:
                registrant = _vcard_name(entity)
        return build_age_record(
            domain,
            created,
            self._now(),
            registrar=registrar,
            privacy=looks_private(registrar, registrant),
            source="rdap",
        )
