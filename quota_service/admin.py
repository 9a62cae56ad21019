"""
Quota introspection and overrides for operators.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel

from quota_service.keyspace import QuotaKeySpace, utc_now
from quota_service.store import QuotaStore, StoreError, StoreOk, StoreResult
from quota_service.structured_logging import get_logger, log_quota_reset
from quota_service.tiers import (
    ALL_CATEGORIES,
    RATE_LIMITS_BY_TIER,
    EndpointCategory,
    QuotaLimit,
    RateLimitConfig,
    Tier,
    TierLimitTable,
    parse_category,
    parse_tier,
)

logger = get_logger(__name__)


class CategoryUsage(BaseModel):
    used: int
    limit: int
    remaining: int


class QuotaAdmin:
    """Read counters and reset them for the current UTC day."""

    def __init__(
        self,
        store: QuotaStore,
        limits: Optional[TierLimitTable] = None,
        keyspace: Optional[QuotaKeySpace] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.limits = limits if limits is not None else TierLimitTable()
        self.keyspace = keyspace if keyspace is not None else QuotaKeySpace()
        self.clock = clock

    async def usage_snapshot(self, user_id: str, tier: Tier) -> StoreResult[Dict[EndpointCategory, CategoryUsage]]:
        """Usage of every category, ``total`` included, in one batched read."""
        tier = parse_tier(tier)
        keys = self.keyspace.keys_for(user_id, ALL_CATEGORIES, self.clock())
        result = await self.store.multi_get(keys)
        if isinstance(result, StoreError):
            logger.warning("quota_snapshot_unavailable", user_id=user_id, reason=result.kind.value)
            return result

        tier_limits = self.limits.limits_for(tier)
        usage: Dict[EndpointCategory, CategoryUsage] = {}
        for category, used in zip(ALL_CATEGORIES, result.value):
            limit = tier_limits[category].requests
            usage[category] = CategoryUsage(used=used, limit=limit, remaining=max(0, limit - used))
        return StoreOk(usage)

    async def reset(self, user_id: str, category: Optional[EndpointCategory] = None) -> StoreResult[int]:
        """
        Delete today's counter for ``category``, or all of the user's counters
        (``total`` included) when no category is given. Other days and other
        users are never touched.
        """
        categories: List[EndpointCategory]
        if category is None:
            categories = list(ALL_CATEGORIES)
        else:
            category = parse_category(category)
            categories = [category]

        keys = self.keyspace.keys_for(user_id, categories, self.clock())
        result = await self.store.delete(keys)
        if isinstance(result, StoreError):
            logger.warning("quota_reset_unavailable", user_id=user_id, reason=result.kind.value)
            return result

        log_quota_reset(logger, user_id, category.value if category is not None else "all", result.value)
        return result

    def limits_for(self, tier: Tier) -> Dict[EndpointCategory, QuotaLimit]:
        return self.limits.limits_for(tier)

    def all_tier_limits(self) -> Dict[Tier, Dict[EndpointCategory, QuotaLimit]]:
        return self.limits.all_limits()

    @staticmethod
    def rate_limits_for(tier: Tier) -> RateLimitConfig:
        return RATE_LIMITS_BY_TIER[parse_tier(tier)]
