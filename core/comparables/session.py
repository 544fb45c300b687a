"""
Session coordination and time-bounded caches.

SessionCoordinator owns all cross-request state of the pipeline:
- in-flight table: session id -> the asyncio task computing its analysis
- intermediate cache (30 min): comparables stage keyed by session + subject
- result cache (24 h): final analysis keyed by session, for link sharing

At most one analysis runs per session. Later requests await the same task
and receive the same result object. The in-flight entry is removed in a
finally block inside the task itself, so it is released even when the
requester that started it is cancelled.
"""

import asyncio
import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, TypeVar

from .models import PropertyRecord


logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Configuration Constants
# =============================================================================

INTERMEDIATE_CACHE_TTL = 30 * 60
RESULT_CACHE_TTL = 24 * 60 * 60
CLEANUP_INTERVAL = 5 * 60


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """
    Thread-safe in-memory cache with per-entry expiry.

    Expired entries are dropped on read and swept at most every
    CLEANUP_INTERVAL seconds on write.
    """

    def __init__(
        self,
        ttl_seconds: float,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: Dict[Hashable, _Entry] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.expires_at <= now:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def set(self, key: Hashable, value: Any) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=now + self.ttl_seconds)
            if now - self._last_cleanup >= CLEANUP_INTERVAL:
                self._sweep(now)

    def delete(self, key: Hashable) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _sweep(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        self._last_cleanup = now
        if expired:
            logger.debug("Swept %d expired entries from %s", len(expired), self.name)

    def __len__(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for entry in self._entries.values() if entry.expires_at > now)

    def __contains__(self, key: Hashable) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.expires_at > now

    def stats(self) -> dict:
        total = self.hits + self.misses
        return {
            "name": self.name,
            "size": len(self),
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total, 3) if total else 0.0,
        }


def intermediate_cache_key(session_id: str, subject: PropertyRecord) -> str:
    """Hash of the session and the subject attributes that drive the search."""
    parts = [
        session_id,
        subject.reference or subject.id,
        str(subject.listing_type.value if subject.listing_type else ""),
        str(subject.sale_price or subject.monthly_price or subject.weekly_price_from or subject.price or ""),
        str(subject.bedrooms or ""),
        str(subject.build_area or ""),
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


class SessionCoordinator:
    """
    Per-process lock table and caches for analysis sessions.

    Create one per application and inject it into the service.
    """

    def __init__(
        self,
        intermediate_ttl: float = INTERMEDIATE_CACHE_TTL,
        result_ttl: float = RESULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.intermediate = TTLCache(intermediate_ttl, name="intermediate", clock=clock)
        self.results = TTLCache(result_ttl, name="results", clock=clock)
        self._in_flight: Dict[str, "asyncio.Task"] = {}
        self.computations = 0
        self.joined = 0

    def cached_result(self, session_id: str) -> Optional[Any]:
        return self.results.get(session_id)

    def is_in_flight(self, session_id: str) -> bool:
        return session_id in self._in_flight

    async def run(
        self,
        session_id: str,
        compute: Callable[[], Awaitable[T]],
        should_cache: Callable[[T], bool] = lambda result: True,
    ) -> T:
        """
        Return the session's result, computing it at most once.

        Args:
            session_id: Opaque session identifier
            compute: Coroutine factory producing the result
            should_cache: Whether a finished result goes into the 24 h cache

        Returns:
            The cached, in-flight or freshly computed result
        """
        cached = self.results.get(session_id)
        if cached is not None:
            logger.info("Serving cached analysis for session %s", session_id)
            return cached

        task = self._in_flight.get(session_id)
        if task is None:
            self.computations += 1
            task = asyncio.ensure_future(self._execute(session_id, compute, should_cache))
            self._in_flight[session_id] = task
        else:
            self.joined += 1
            logger.info("Analysis for session %s already in progress, waiting", session_id)

        # Shielded so a cancelled requester does not cancel the shared task
        return await asyncio.shield(task)

    async def _execute(
        self,
        session_id: str,
        compute: Callable[[], Awaitable[T]],
        should_cache: Callable[[T], bool],
    ) -> T:
        try:
            result = await compute()
            if should_cache(result):
                self.results.set(session_id, result)
            else:
                logger.info("Analysis for session %s is degraded, not caching", session_id)
            return result
        finally:
            self._in_flight.pop(session_id, None)

    def invalidate(self, session_id: str) -> bool:
        """Drop the cached result of one session. Returns whether one existed."""
        removed = self.results.delete(session_id)
        if removed:
            logger.info("Invalidated cached analysis for session %s", session_id)
        return removed

    def clear(self) -> None:
        self.intermediate.clear()
        self.results.clear()

    def stats(self) -> dict:
        return {
            "in_flight": len(self._in_flight),
            "computations": self.computations,
            "joined": self.joined,
            "intermediate": self.intermediate.stats(),
            "results": self.results.stats(),
        }
