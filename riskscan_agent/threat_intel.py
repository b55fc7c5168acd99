from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

import httpx

from .config import Settings
from .errors import ProviderTimeoutError, ProviderUnavailableError, QuotaExceededError
from .models import ThreatVerdict, UsageSnapshot
from .tables import THREAT_TYPES

logger = logging.getLogger(__name__)

PROVIDER = "webrisk"
_PREFIX = "THREAT_TYPE_"


def canonical_threat(raw: Any) -> str | None:
    name = str(raw or "").strip().upper()
    if name.startswith(_PREFIX):
        name = name[len(_PREFIX):]
    return name or None


def _collect(items: Any, key: str) -> list[Any]:
    if not isinstance(items, list):
        return []
    return [item.get(key) for item in items if isinstance(item, dict)]


def normalize_threat_response(payload: Any) -> ThreatVerdict:
    """Map a provider response onto canonical threat names.

    Exactly one known shape is used, checked in this order:

    1. ``{"threat": {"threatTypes": [...]}}`` (Web Risk uris:search)
    2. ``{"matches": [{"threatType": ...}, ...]}`` (Safe Browsing v4)
    3. ``{"threatMatches": [{"threatType": ...}, ...]}``

    Anything else, including ``{}``, means no threats. Names are upper-cased
    with any ``THREAT_TYPE_`` prefix removed; order is kept, duplicates dropped.
    """
    raw: list[Any] = []
    if isinstance(payload, dict):
        threat = payload.get("threat")
        if isinstance(threat, dict) and isinstance(threat.get("threatTypes"), list):
            raw = list(threat["threatTypes"])
        elif isinstance(payload.get("matches"), list):
            raw = _collect(payload["matches"], "threatType")
        elif isinstance(payload.get("threatMatches"), list):
            raw = _collect(payload["threatMatches"], "threatType")

    threats: list[str] = []
    for item in raw:
        name = canonical_threat(item)
        if name and name not in threats:
            threats.append(name)
    return ThreatVerdict(threats=tuple(threats))


def _month_key(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


class MonthlyUsageCounter:
    """Thread-safe monthly call budget that resets when the calendar month changes."""

    def __init__(
        self,
        limit: int,
        *,
        warn_ratio: float = 0.8,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.limit = max(0, int(limit))
        self.warn_ratio = warn_ratio
        self._clock = clock
        self._lock = threading.Lock()
        self._month = _month_key(clock())
        self._used = 0
        self._warned = False

    def _rollover(self) -> None:
        month = _month_key(self._clock())
        if month != self._month:
            logger.info("threat intel usage reset for %s (previous month used %d)", month, self._used)
            self._month = month
            self._used = 0
            self._warned = False

    def try_acquire(self) -> int:
        """Reserve one call. Returns the new usage count or raises QuotaExceededError."""
        with self._lock:
            self._rollover()
            if self._used >= self.limit:
                raise QuotaExceededError(PROVIDER, self._used, self.limit)
            self._used += 1
            if not self._warned and self._used >= self.limit * self.warn_ratio:
                self._warned = True
                logger.warning("threat intel usage at %d/%d for %s", self._used, self.limit, self._month)
            return self._used

    def snapshot(self) -> UsageSnapshot:
        with self._lock:
            self._rollover()
            used, limit, month = self._used, self.limit, self._month
        percent = round(used / limit * 100, 2) if limit else 100.0
        return UsageSnapshot(
            month=month,
            used=used,
            limit=limit,
            remaining=max(0, limit - used),
            percent_used=percent,
            near_limit=used >= limit * self.warn_ratio,
            exhausted=used >= limit,
        )

    def reset(self) -> None:
        with self._lock:
            self._month = _month_key(self._clock())
            self._used = 0
            self._warned = False


class ThreatIntelGateway(Protocol):
    async def check(self, url: str) -> ThreatVerdict: ...


class WebRiskGateway:
    """Web Risk `uris:search` client. Raises ProviderError subclasses on failure."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        usage: MonthlyUsageCounter | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.usage = usage or MonthlyUsageCounter(self.settings.monthly_scan_limit)
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.settings.webrisk_api_key)

    async def check(self, url: str) -> ThreatVerdict:
        if not self.configured:
            raise ProviderUnavailableError(PROVIDER, "no API key configured")
        self.usage.try_acquire()

        params: list[tuple[str, str]] = [("threatTypes", t) for t in THREAT_TYPES]
        params.append(("uri", url))
        params.append(("key", self.settings.webrisk_api_key or ""))
        timeout = self.settings.intel_timeout_ms / 1000

        try:
            if self._client is not None:
                res = await self._client.get(self.settings.webrisk_endpoint, params=params, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    res = await client.get(self.settings.webrisk_endpoint, params=params)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(PROVIDER, f"timed out after {timeout:.1f}s") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(PROVIDER, str(e) or type(e).__name__) from e

        if res.status_code < 200 or res.status_code >= 300:
            raise ProviderUnavailableError(PROVIDER, f"HTTP {res.status_code}")
        try:
            payload = res.json()
        except ValueError as e:
            raise ProviderUnavailableError(PROVIDER, "invalid JSON response") from e

        verdict = normalize_threat_response(payload)
        if verdict.flagged:
            logger.info("threat intel flagged %s: %s", url, ", ".join(verdict.threats))
        return verdict
