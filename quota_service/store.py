"""
Counter store for daily quotas.

All mutation goes through ``atomic_increment_with_expiry`` (INCR + EXPIRE for
every key inside one MULTI/EXEC transaction) or ``delete``. Every call is
bounded by a timeout and returns ``StoreOk`` or ``StoreError``; transport
errors never propagate past this module.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Dict, Generic, List, Optional, Protocol, Sequence, Tuple, TypeVar, Union

from redis.asyncio import Redis
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from quota_service.metrics import QuotaMetrics, get_quota_metrics
from quota_service.structured_logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class StoreErrorKind(str, Enum):
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class StoreOk(Generic[T]):
    value: T

    ok = True


@dataclass(frozen=True)
class StoreError:
    kind: StoreErrorKind
    detail: str = ""

    ok = False


StoreResult = Union[StoreOk[T], StoreError]


class QuotaStore(Protocol):
    """Capabilities the quota engine needs from a shared counter store."""

    async def atomic_increment_with_expiry(self, keys: Sequence[str], ttl_seconds: int) -> StoreResult[List[int]]:
        """Increment every key by one and set its expiry, atomically; returns post-increment counts."""
        ...

    async def multi_get(self, keys: Sequence[str]) -> StoreResult[List[int]]:
        """Batched read; missing keys read as 0. Not a gate: the value may be stale by the time it is used."""
        ...

    async def delete(self, keys: Sequence[str]) -> StoreResult[int]:
        """Remove keys; returns how many existed."""
        ...

    async def ping(self) -> StoreResult[bool]:
        ...


def _to_int(value: Any) -> int:
    if value is None:
        return 0
    return int(value)


class RedisQuotaStore:
    """
    QuotaStore backed by Redis.

    The client is injected; this class never creates or closes connections.
    """

    def __init__(self, redis: Redis, operation_timeout: float = 0.05, metrics: Optional[QuotaMetrics] = None):
        self.redis = redis
        self.operation_timeout = operation_timeout
        self.metrics = metrics if metrics is not None else get_quota_metrics()

    async def _run(self, operation: str, call: Awaitable[T]) -> StoreResult[T]:
        started = time.perf_counter()
        try:
            value = await asyncio.wait_for(call, timeout=self.operation_timeout)
        except (asyncio.TimeoutError, RedisTimeoutError):
            # asyncio.TimeoutError is an OSError subclass on 3.11+, so it must be matched first
            error = StoreError(StoreErrorKind.TIMEOUT, f"{operation} exceeded {self.operation_timeout:.3f}s")
        except (RedisError, OSError, ValueError) as e:
            # ValueError: a counter key holds something other than an integer
            error = StoreError(StoreErrorKind.UNAVAILABLE, f"{type(e).__name__}: {str(e)[:200]}")
        else:
            self.metrics.observe_store_call(operation, time.perf_counter() - started)
            return StoreOk(value)

        self.metrics.record_store_error(operation, error.kind.value)
        logger.debug("quota_store_error", operation=operation, kind=error.kind.value, detail=error.detail)
        return error

    async def atomic_increment_with_expiry(self, keys: Sequence[str], ttl_seconds: int) -> StoreResult[List[int]]:
        keys = list(keys)

        async def _transaction() -> List[int]:
            async with self.redis.pipeline(transaction=True) as pipe:
                for key in keys:
                    pipe.incr(key)
                    pipe.expire(key, ttl_seconds)
                results = await pipe.execute()
            # results alternate INCR count / EXPIRE flag
            return [_to_int(count) for count in results[0::2]]

        return await self._run("incr", _transaction())

    async def multi_get(self, keys: Sequence[str]) -> StoreResult[List[int]]:
        keys = list(keys)
        if not keys:
            return StoreOk([])

        async def _mget() -> List[int]:
            values = await self.redis.mget(keys)
            return [_to_int(value) for value in values]

        return await self._run("mget", _mget())

    async def delete(self, keys: Sequence[str]) -> StoreResult[int]:
        keys = list(keys)
        if not keys:
            return StoreOk(0)

        async def _delete() -> int:
            return int(await self.redis.delete(*keys))

        return await self._run("delete", _delete())

    async def ping(self) -> StoreResult[bool]:
        async def _ping() -> bool:
            return bool(await self.redis.ping())

        return await self._run("ping", _ping())


class InMemoryQuotaStore:
    """
    Process-local QuotaStore for development and tests.

    Counters live in this process only, so limits are per-process when several
    workers run. ``available`` can be flipped off to simulate an outage.
    """

    def __init__(self, clock=time.monotonic):
        self._counters: Dict[str, Tuple[int, float]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self.available = True

    def _unavailable(self) -> Optional[StoreError]:
        if not self.available:
            return StoreError(StoreErrorKind.UNAVAILABLE, "in-memory store marked unavailable")
        return None

    def _live(self, key: str, now: float) -> int:
        entry = self._counters.get(key)
        if entry is None:
            return 0
        count, expires_at = entry
        if expires_at <= now:
            del self._counters[key]
            return 0
        return count

    async def atomic_increment_with_expiry(self, keys: Sequence[str], ttl_seconds: int) -> StoreResult[List[int]]:
        error = self._unavailable()
        if error:
            return error
        async with self._lock:
            now = self._clock()
            counts = []
            for key in keys:
                count = self._live(key, now) + 1
                self._counters[key] = (count, now + ttl_seconds)
                counts.append(count)
        return StoreOk(counts)

    async def multi_get(self, keys: Sequence[str]) -> StoreResult[List[int]]:
        error = self._unavailable()
        if error:
            return error
        async with self._lock:
            now = self._clock()
            return StoreOk([self._live(key, now) for key in keys])

    async def delete(self, keys: Sequence[str]) -> StoreResult[int]:
        error = self._unavailable()
        if error:
            return error
        async with self._lock:
            now = self._clock()
            deleted = 0
            for key in keys:
                if self._live(key, now):
                    deleted += 1
                self._counters.pop(key, None)
        return StoreOk(deleted)

    async def ping(self) -> StoreResult[bool]:
        error = self._unavailable()
        if error:
            return error
        return StoreOk(True)
