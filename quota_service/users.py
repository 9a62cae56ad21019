"""
User tier resolution.

The user store itself lives outside this service; ``UserDirectory`` is the
seam. Resolved tiers are cached in Redis for a few minutes to keep the
request path off the user database.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Dict, Iterable, Optional, Protocol

from pydantic import BaseModel
from redis.asyncio import Redis
from redis.exceptions import RedisError

from quota_service.logger import logger
from quota_service.tiers import Tier


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class UserRecord(BaseModel):
    id: str
    username: str
    tier: Tier = Tier.FREE
    role: Role = Role.USER


class UserDirectory(Protocol):
    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    async def update_tier(self, user_id: str, tier: Tier) -> Optional[UserRecord]:
        ...


class InMemoryUserDirectory:
    """Dictionary-backed directory for development and tests."""

    def __init__(self, users: Iterable[UserRecord] = ()):
        self._users: Dict[str, UserRecord] = {user.id: user for user in users}

    def add(self, user: UserRecord) -> None:
        self._users[user.id] = user

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self._users.get(user_id)

    async def update_tier(self, user_id: str, tier: Tier) -> Optional[UserRecord]:
        user = self._users.get(user_id)
        if user is None:
            return None
        updated = user.model_copy(update={"tier": tier})
        self._users[user_id] = updated
        return updated


class TierResolver:
    """
    ``resolve_user_tier`` with a Redis read-through cache.

    Cache failures are logged and skipped; the directory stays the source of truth.
    """

    def __init__(
        self,
        directory: UserDirectory,
        redis: Optional[Redis] = None,
        ttl: int = 300,
        key_prefix: str = "user:tier",
        operation_timeout: float = 0.05,
    ):
        self.directory = directory
        self.redis = redis
        self.ttl = ttl
        self.key_prefix = key_prefix
        self.operation_timeout = operation_timeout

    def _cache_key(self, user_id: str) -> str:
        return f"{self.key_prefix}:{user_id}"

    @property
    def _cache_enabled(self) -> bool:
        return self.redis is not None and self.ttl > 0

    async def _cached(self, user_id: str) -> Optional[Tier]:
        if not self._cache_enabled:
            return None
        try:
            raw = await asyncio.wait_for(self.redis.get(self._cache_key(user_id)), timeout=self.operation_timeout)
        except (asyncio.TimeoutError, RedisError, OSError) as e:
            logger.warning("Error reading user tier from cache: {}", e)
            return None
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return Tier(raw)
        except ValueError:
            logger.warning("Ignoring unknown cached tier {!r} for user {}", raw, user_id)
            return None

    async def _store(self, user_id: str, tier: Tier) -> None:
        if not self._cache_enabled:
            return
        try:
            await asyncio.wait_for(
                self.redis.set(self._cache_key(user_id), tier.value, ex=self.ttl),
                timeout=self.operation_timeout,
            )
        except (asyncio.TimeoutError, RedisError, OSError) as e:
            logger.warning("Error caching user tier: {}", e)

    async def resolve_user_tier(self, user_id: str) -> Optional[Tier]:
        """Tier of ``user_id``, or None when the user does not exist."""
        tier = await self._cached(user_id)
        if tier is not None:
            return tier

        user = await self.directory.get_user(user_id)
        if user is None:
            return None

        await self._store(user_id, user.tier)
        return user.tier

    async def invalidate(self, user_id: str) -> None:
        if not self._cache_enabled:
            return
        try:
            await asyncio.wait_for(self.redis.delete(self._cache_key(user_id)), timeout=self.operation_timeout)
        except (asyncio.TimeoutError, RedisError, OSError) as e:
            logger.warning("Error invalidating cached tier for {}: {}", user_id, e)
