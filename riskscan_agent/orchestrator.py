from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from .config import Settings
from .errors import ProviderError, ProviderTimeoutError, QuotaExceededError
from .features import extract_features, merge_age, merge_certificate, merge_html, merge_threats
from .models import (
    AgeRecord,
    CertificateRecord,
    FeatureRecord,
    HtmlFeatureRecord,
    ScanMetadata,
    ScanResult,
    ScanType,
    ThreatVerdict,
)
from .pending import PendingHtmlCache
from .scorer import score_features

logger = logging.getLogger(__name__)

# The resolver bounds its own lookups and falls back to an estimate; the outer
# guard only catches resolvers that ignore their budget.
AGE_GUARD_GRACE_S = 0.5


class ScanStage(str, Enum):
    START = "START"
    LOCAL_SCORED = "LOCAL_SCORED"
    AGE_CHECKED = "AGE_CHECKED"
    HTML_AWAITED = "HTML_AWAITED"
    INTEL_DECIDED = "INTEL_DECIDED"
    DONE = "DONE"


class AgeResolver(Protocol):
    async def resolve(self, hostname: str, timeout: float | None = None) -> AgeRecord | None: ...


class ThreatChecker(Protocol):
    async def check(self, url: str) -> ThreatVerdict: ...


class CertInspector(Protocol):
    async def inspect(self, hostname: str, timeout_ms: int = ...) -> CertificateRecord: ...


ResultSink = Callable[[ScanResult], "Awaitable[None] | None"]


def _skip_reason(exc: BaseException) -> str:
    if isinstance(exc, QuotaExceededError):
        return "quota_exceeded"
    if isinstance(exc, (ProviderTimeoutError, asyncio.TimeoutError)):
        return "timeout"
    return "unavailable"


class _Timer:
    def __init__(self, timings: dict[str, int]) -> None:
        self.timings = timings

    def __call__(self, name: str) -> "_Timer":
        self._name = name
        return self

    def __enter__(self) -> None:
        self._t0 = time.perf_counter()

    def __exit__(self, *exc: Any) -> None:
        self.timings[self._name] = int((time.perf_counter() - self._t0) * 1000)


class ScanOrchestrator:
    """Runs one scan through START → LOCAL_SCORED → AGE_CHECKED → HTML_AWAITED → INTEL_DECIDED → DONE.

    Every collaborator is optional and every collaborator failure is turned
    into a recorded skip, so a scan always completes with whatever data
    arrived. The threat-intel lookup only runs once the score has reached the
    SUSPICIOUS threshold.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        age_resolver: AgeResolver | None = None,
        threat_gateway: ThreatChecker | None = None,
        cert_inspector: CertInspector | None = None,
        pending: PendingHtmlCache | None = None,
        sink: ResultSink | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.age_resolver = age_resolver
        self.threat_gateway = threat_gateway
        self.cert_inspector = cert_inspector
        self.pending = pending
        self.sink = sink

    def html_wait_seconds(self, scan_type: ScanType) -> float:
        if scan_type == "manual":
            return self.settings.html_wait_manual_ms / 1000
        return self.settings.html_wait_automatic_ms / 1000

    async def scan(
        self,
        url: str,
        scan_type: ScanType = "automatic",
        scan_id: str | None = None,
        *,
        html: HtmlFeatureRecord | None = None,
        html_wait_ms: int | None = None,
    ) -> ScanResult:
        started = time.perf_counter()
        weights = self.settings.weights
        meta = ScanMetadata()
        timed = _Timer(meta.timings_ms)
        meta.stages.append(ScanStage.START.value)

        with timed("local"):
            record = extract_features(url)
            assessment = score_features(record, weights)
        meta.local_score = assessment.score
        meta.stages.append(ScanStage.LOCAL_SCORED.value)

        with timed("age"):
            record, age = await self._age_and_certificate(record, meta)
        assessment = score_features(record, weights)
        meta.stages.append(ScanStage.AGE_CHECKED.value)

        with timed("html"):
            record = await self._html(record, meta, scan_type, html, html_wait_ms)
        assessment = score_features(record, weights)
        meta.stages.append(ScanStage.HTML_AWAITED.value)

        meta.pre_intel_score = assessment.score
        with timed("intel"):
            record, called = await self._intel(record, meta, assessment.score)
        assessment = score_features(record, weights)
        meta.stages.append(ScanStage.INTEL_DECIDED.value)

        meta.elapsed_ms = int((time.perf_counter() - started) * 1000)
        meta.stages.append(ScanStage.DONE.value)
        result = ScanResult(
            id=scan_id or uuid.uuid4().hex,
            url=url,
            risk_score=assessment.score,
            risk_label=assessment.label,
            risk_reasons=assessment.reasons,
            features=record,
            domain_age=age,
            web_risk_called=called,
            scan_type=scan_type,
            timestamp=datetime.now(timezone.utc).isoformat(),
            metadata=meta,
        )
        logger.info(
            "scan %s %s -> %s (%d) skipped=%s in %dms",
            result.id,
            record.hostname or url,
            result.risk_label,
            result.risk_score,
            meta.skipped,
            meta.elapsed_ms,
        )
        await self._emit(result)
        return result

    async def _emit(self, result: ScanResult) -> None:
        if self.sink is None:
            return
        out = self.sink(result)
        if inspect.isawaitable(out):
            await out

    async def _age_and_certificate(
        self, record: FeatureRecord, meta: ScanMetadata
    ) -> tuple[FeatureRecord, AgeRecord | None]:
        if not record.hostname:
            meta.skipped["age"] = "no_data"
            meta.skipped["certificate"] = "no_data"
            return record, None

        async def _age() -> AgeRecord | None:
            if self.age_resolver is None:
                meta.skipped["age"] = "not_configured"
                return None
            timeout = self.settings.age_timeout_ms / 1000
            try:
                found = await asyncio.wait_for(
                    self.age_resolver.resolve(record.hostname, timeout), timeout=timeout + AGE_GUARD_GRACE_S
                )
            except (ProviderError, asyncio.TimeoutError) as e:
                meta.skipped["age"] = _skip_reason(e)
                return None
            except Exception:
                logger.exception("domain age resolver crashed for %s", record.hostname)
                meta.skipped["age"] = "unavailable"
                return None
            if found is None or found.domain_age_days is None:
                meta.skipped["age"] = "no_data"
                return None
            return found

        async def _cert() -> CertificateRecord | None:
            if self.cert_inspector is None:
                meta.skipped["certificate"] = "not_configured"
                return None
            if not record.uses_https:
                meta.skipped["certificate"] = "not_https"
                return None
            timeout_ms = self.settings.cert_timeout_ms
            try:
                return await asyncio.wait_for(
                    self.cert_inspector.inspect(record.hostname, timeout_ms), timeout=timeout_ms / 1000
                )
            except (ProviderError, asyncio.TimeoutError) as e:
                meta.skipped["certificate"] = _skip_reason(e)
            except Exception:
                logger.exception("certificate inspection crashed for %s", record.hostname)
                meta.skipped["certificate"] = "unavailable"
            return None

        age, cert = await asyncio.gather(_age(), _cert())
        if age is not None:
            record = merge_age(record, age)
            meta.enrichments.append("age")
        if cert is not None:
            record = merge_certificate(record, cert)
            meta.enrichments.append("certificate")
        return record, age

    async def _html(
        self,
        record: FeatureRecord,
        meta: ScanMetadata,
        scan_type: ScanType,
        supplied: HtmlFeatureRecord | None,
        wait_ms: int | None,
    ) -> FeatureRecord:
        if supplied is not None:
            meta.enrichments.append("html")
            return merge_html(record, supplied)
        if self.pending is None:
            meta.skipped["html"] = "not_configured"
            return record

        budget = wait_ms / 1000 if wait_ms is not None else self.html_wait_seconds(scan_type)
        found = await self.pending.wait(record.url, budget)
        if found is None:
            meta.skipped["html"] = "timeout"
            return record
        meta.enrichments.append("html")
        return merge_html(record, found)

    async def _intel(self, record: FeatureRecord, meta: ScanMetadata, current: int) -> tuple[FeatureRecord, bool]:
        if self.threat_gateway is None:
            meta.skipped["threat_intel"] = "not_configured"
            return record, False
        if current < self.settings.weights.suspicious_threshold:
            meta.skipped["threat_intel"] = "below_threshold"
            return record, False
        if not record.hostname:
            meta.skipped["threat_intel"] = "no_data"
            return record, False

        timeout = self.settings.intel_timeout_ms / 1000
        try:
            verdict = await asyncio.wait_for(self.threat_gateway.check(record.url), timeout=timeout)
        except QuotaExceededError as e:
            logger.warning("threat intel skipped, quota exhausted: %s", e)
            meta.skipped["threat_intel"] = "quota_exceeded"
            return record, False
        except (ProviderError, asyncio.TimeoutError) as e:
            logger.warning("threat intel unavailable for %s: %s", record.hostname, str(e) or "timed out")
            meta.skipped["threat_intel"] = _skip_reason(e)
            return record, True
        except Exception:
            logger.exception("threat intel gateway crashed for %s", record.hostname)
            meta.skipped["threat_intel"] = "unavailable"
            return record, True

        meta.enrichments.append("threat_intel")
        return merge_threats(record, verdict), True


class ScanSupervisor:
    """One in-flight scan per tab; a new scan or a closed tab cancels the old one."""

    def __init__(self, orchestrator: ScanOrchestrator) -> None:
        self.orchestrator = orchestrator
        self._tasks: dict[str, asyncio.Task] = {}

    def active(self, tab_id: str) -> bool:
        task = self._tasks.get(tab_id)
        return task is not None and not task.done()

    def start(self, tab_id: str, url: str, scan_type: ScanType = "automatic", **kwargs: Any) -> asyncio.Task:
        self.close(tab_id)
        task = asyncio.create_task(self.orchestrator.scan(url, scan_type, **kwargs))
        self._tasks[tab_id] = task

        def _forget(done: asyncio.Task) -> None:
            if self._tasks.get(tab_id) is done:
                self._tasks.pop(tab_id, None)

        task.add_done_callback(_forget)
        return task

    def close(self, tab_id: str) -> bool:
        task = self._tasks.pop(tab_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug("cancelled stale scan for tab %s", tab_id)
        return True

    async def run(self, tab_id: str, url: str, scan_type: ScanType = "automatic", **kwargs: Any) -> ScanResult | None:
        """Start a scan and wait for it. Returns None when it was superseded or the tab closed."""
        task = self.start(tab_id, url, scan_type, **kwargs)
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
