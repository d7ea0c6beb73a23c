"""Time-windowed cache-or-refresh with graceful fallback.

Every data endpoint follows the same shape: serve a fresh cached value for a
key if one exists, otherwise produce a new one, persist it with a new expiry
and fall back to degraded data when the upstream fails. ``TemporalCache``
owns that sequence so each endpoint is a single ``get_or_produce`` call.

Fallback results are never written: the next request retries the producer
instead of serving degraded data for a full TTL.

Note: concurrent misses on the same key may each call the producer (last
writer wins on the whole entry). Pass ``single_flight=True`` to serialise
production per key within one process.
"""

import asyncio
import inspect
import json
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from dashboard.errors import ProductionAndFallbackFailed, StoreUnavailable

logger = logging.getLogger(__name__)

Producer = Callable[[], Any | Awaitable[Any]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheEntry:
    """One cached artifact. Replaced wholesale, never updated in place."""

    key: str
    value: Any
    expires_at: datetime
    created_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


def _as_timedelta(ttl: timedelta | float) -> timedelta:
    if isinstance(ttl, timedelta):
        return ttl
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
        raise ValueError(f"ttl must be a timedelta or seconds, got {type(ttl).__name__}")
    if not math.isfinite(ttl):
        raise ValueError(f"ttl must be finite, got {ttl}")
    try:
        return timedelta(seconds=ttl)
    except OverflowError as e:
        raise ValueError(f"ttl out of range: {ttl}") from e


async def _call(fn: Producer) -> Any:
    result = fn()
    if inspect.isawaitable(result):
        result = await result
    return result


class TemporalCache:
    def __init__(
        self,
        store,
        clock: Callable[[], datetime] = utc_now,
        single_flight: bool = False,
    ):
        self._store = store
        self._clock = clock
        self._single_flight = single_flight
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def store(self):
        return self._store

    @property
    def single_flight(self) -> bool:
        return self._single_flight

    async def get_or_produce(
        self,
        key: str,
        ttl: timedelta | float,
        producer: Producer,
        fallback: Producer,
    ) -> tuple[Any, bool]:
        """Return ``(value, was_cached)`` for ``key``.

        A fresh entry is returned as-is with no side effects. Otherwise
        ``producer`` runs once; its value is stored with ``expires_at = now + ttl``.
        If it raises, ``fallback`` supplies the value and nothing is stored.

        Raises:
            ValueError: empty key or non-positive or non-finite ttl.
            ProductionAndFallbackFailed: the fallback itself raised.
        """
        if not isinstance(key, str) or not key:
            raise ValueError("Cache key must be a non-empty string")
        ttl = _as_timedelta(ttl)
        if ttl <= timedelta(0):
            raise ValueError(f"ttl must be positive, got {ttl}")

        entry = await self._lookup(key)
        if entry is not None:
            return entry.value, True

        if not self._single_flight:
            return await self._refresh(key, ttl, producer, fallback)

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another caller may have refreshed the key while we waited
            entry = await self._lookup(key)
            if entry is not None:
                return entry.value, True
            return await self._refresh(key, ttl, producer, fallback)

    async def peek(self, key: str) -> CacheEntry | None:
        """Return the stored entry for ``key``, fresh or stale, without producing."""
        try:
            return await self._store.get(key)
        except StoreUnavailable as e:
            logger.warning("Cache peek failed for %s: %s", key, e)
            return None

    async def _lookup(self, key: str) -> CacheEntry | None:
        try:
            entry = await self._store.get(key)
        except StoreUnavailable as e:
            logger.warning("Cache read failed for %s, treating as miss: %s", key, e)
            return None
        if entry is not None and entry.is_fresh(self._clock()):
            logger.debug("Cache HIT: %s", key)
            return entry
        logger.debug("Cache MISS: %s", key)
        return None

    async def _refresh(
        self,
        key: str,
        ttl: timedelta,
        producer: Producer,
        fallback: Producer,
    ) -> tuple[Any, bool]:
        try:
            value = await _call(producer)
        except Exception as e:
            logger.warning("Producer failed for %s, serving fallback: %s", key, e)
            try:
                return await _call(fallback), False
            except Exception as fallback_error:
                logger.exception("Fallback failed for %s", key)
                raise ProductionAndFallbackFailed(key, str(fallback_error)) from fallback_error

        try:
            # Hits come back JSON-decoded; misses must return the same shape
            value = json.loads(json.dumps(value))
        except (TypeError, ValueError) as e:
            logger.warning("Value for %s is not JSON-serializable, returning uncached: %s", key, e)
            return value, False

        now = self._clock()
        entry = CacheEntry(key=key, value=value, expires_at=now + ttl, created_at=now)
        try:
            await self._store.put(entry)
        except StoreUnavailable as e:
            logger.warning("Cache write failed for %s, returning uncached value: %s", key, e)
        return value, False
