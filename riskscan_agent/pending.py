from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Callable
from urllib.parse import urlsplit, urlunsplit

from .models import HtmlFeatureRecord

logger = logging.getLogger(__name__)


def cache_key(url: str) -> str:
    """Normalize a page URL so producer and consumer agree on the key."""
    value = (url or "").strip()
    try:
        parts = urlsplit(value)
    except ValueError:
        return value
    if not parts.scheme or not parts.netloc:
        return value
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path or "/", parts.query, ""))


class PendingHtmlCache:
    """Rendezvous between page analysis (producer) and scans (consumers), keyed by URL.

    A record handed to a waiting scan is never stored. Otherwise it waits here
    until consumed, until it expires, or until capacity pushes it out
    (oldest first).
    """

    def __init__(self, capacity: int = 100, ttl_s: float = 30.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.capacity = max(1, capacity)
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, HtmlFeatureRecord]] = OrderedDict()
        self._waiters: dict[str, list[asyncio.Future]] = {}
        self._abandoned: dict[str, float] = {}

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._entries)

    def __contains__(self, url: str) -> bool:
        self._purge_expired()
        return cache_key(url) in self._entries

    def _purge_expired(self) -> None:
        cutoff = self._clock() - self.ttl_s
        stale = [k for k, (stored_at, _) in self._entries.items() if stored_at < cutoff]
        for key in stale:
            self._entries.pop(key, None)
        for key in [k for k, at in self._abandoned.items() if at < cutoff]:
            self._abandoned.pop(key, None)

    def put(self, url: str, record: HtmlFeatureRecord) -> bool:
        """Deliver a record. Returns True when a waiting scan received it directly."""
        key = cache_key(url)
        self._abandoned.pop(key, None)
        waiters = [f for f in self._waiters.get(key, []) if not f.done()]
        if waiters:
            for fut in waiters:
                fut.set_result(record)
            return True

        self._purge_expired()
        self._entries[key] = (self._clock(), record)
        self._entries.move_to_end(key)
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("pending html cache full, evicted %s", evicted)
        return False

    def take(self, url: str) -> HtmlFeatureRecord | None:
        self._purge_expired()
        item = self._entries.pop(cache_key(url), None)
        return item[1] if item else None

    def abandon(self, url: str) -> None:
        """The producer for url gave up: wake its waiters with None.

        With nobody waiting yet, the next wait for url returns None at once
        (unless a record is put first or the mark expires).
        """
        key = cache_key(url)
        waiters = [f for f in self._waiters.get(key, []) if not f.done()]
        for fut in waiters:
            fut.set_result(None)
        if not waiters:
            self._abandoned[key] = self._clock()

    async def wait(self, url: str, timeout: float) -> HtmlFeatureRecord | None:
        """Return the record for url, waiting up to `timeout` seconds; None if none arrives."""
        ready = self.take(url)
        if ready is not None or timeout <= 0:
            return ready

        key = cache_key(url)
        if self._abandoned.pop(key, None) is not None:
            return None
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(key, []).append(fut)
        try:
            return await asyncio.wait_for(fut, timeout=timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            waiters = self._waiters.get(key)
            if waiters is not None:
                if fut in waiters:
                    waiters.remove(fut)
                if not waiters:
                    self._waiters.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
        self._abandoned.clear()
