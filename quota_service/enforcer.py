"""
Daily Quota Enforcement

INTEGRATIONS:
- QuotaStore for atomic counter updates (injected, no global client)
- TierLimitTable for ceilings
- Fail-open strategy: an unavailable or slow store never blocks traffic
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

from quota_service.keyspace import QuotaKeySpace, seconds_until_utc_midnight, utc_now
from quota_service.metrics import QuotaMetrics, get_quota_metrics
from quota_service.store import QuotaStore, StoreError
from quota_service.structured_logging import get_logger, log_quota_exceeded, log_quota_fail_open
from quota_service.tiers import EndpointCategory, QuotaLimit, Tier, TierLimitTable, parse_category, parse_tier

logger = get_logger(__name__)


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of a quota check for one request."""
    allowed: bool
    remaining: int
    limit: int
    reset_seconds: int
    category: EndpointCategory
    # True when the store could not be consulted
    fail_open: bool = field(default=False, compare=False)

    def headers(self) -> Dict[str, str]:
        """X-Quota-* response headers."""
        return {
            "X-Quota-Limit": str(self.limit),
            "X-Quota-Remaining": str(self.remaining),
            "X-Quota-Reset": str(self.reset_seconds),
            "X-Quota-Category": self.category.value,
        }


class QuotaEnforcer:
    """
    Decides allow/deny for a (user, tier, category) against the category
    ceiling and the tier's aggregate ``total`` ceiling.

    ``check_and_increment`` is the only enforcement-grade operation.
    """

    def __init__(
        self,
        store: QuotaStore,
        limits: Optional[TierLimitTable] = None,
        keyspace: Optional[QuotaKeySpace] = None,
        clock: Callable[[], datetime] = utc_now,
        metrics: Optional[QuotaMetrics] = None,
    ):
        self.store = store
        self.limits = limits if limits is not None else TierLimitTable()
        self.keyspace = keyspace if keyspace is not None else QuotaKeySpace()
        self.clock = clock
        self.metrics = metrics if metrics is not None else get_quota_metrics()

    def _resolve(self, tier: Tier, category: EndpointCategory):
        tier = parse_tier(tier)
        category = parse_category(category, allow_total=False)
        return tier, category, self.limits.limit(tier, category), self.limits.total_for(tier)

    @staticmethod
    def _zero_limit(category: EndpointCategory, reset_seconds: int) -> QuotaDecision:
        return QuotaDecision(allowed=False, remaining=0, limit=0, reset_seconds=reset_seconds, category=category)

    def _fail_open(
        self,
        user_id: str,
        tier: Tier,
        category: EndpointCategory,
        limit: QuotaLimit,
        reset_seconds: int,
        operation: str,
        error: StoreError,
    ) -> QuotaDecision:
        log_quota_fail_open(logger, user_id, category.value, operation, error.kind.value, error.detail)
        self.metrics.record_decision(category.value, tier.value, "fail_open")
        return QuotaDecision(
            allowed=True,
            remaining=limit.requests,
            limit=limit.requests,
            reset_seconds=reset_seconds,
            category=category,
            fail_open=True,
        )

    async def check_and_increment(self, user_id: str, tier: Tier, category: EndpointCategory) -> QuotaDecision:
        """
        Atomically count this request and decide whether it may proceed.

        Both the category counter and the ``total`` counter are incremented in
        one store transaction, so concurrent callers can never both observe the
        same pre-increment value. A denied request still consumes one unit on
        both counters; repeated attempts after exhaustion stay denied until the
        day rolls over.

        Raises:
            InvalidTierException / InvalidCategoryException for unknown values
            (``total`` is not a caller-selectable category).
        """
        tier, category, category_limit, total_limit = self._resolve(tier, category)
        now = self.clock()
        reset_seconds = seconds_until_utc_midnight(now)

        if category_limit.requests == 0:
            self.metrics.record_decision(category.value, tier.value, "zero_limit")
            return self._zero_limit(category, reset_seconds)

        category_key, ttl = self.keyspace.key_for(user_id, category, now)
        total_key, _ = self.keyspace.key_for(user_id, EndpointCategory.TOTAL, now)

        result = await self.store.atomic_increment_with_expiry([category_key, total_key], ttl)
        if isinstance(result, StoreError):
            return self._fail_open(user_id, tier, category, category_limit, reset_seconds, "check_and_increment", result)

        category_count, total_count = result.value
        allowed = category_count <= category_limit.requests and total_count <= total_limit.requests
        decision = QuotaDecision(
            allowed=allowed,
            remaining=max(0, category_limit.requests - category_count),
            limit=category_limit.requests,
            reset_seconds=reset_seconds,
            category=category,
        )

        if allowed:
            self.metrics.record_decision(category.value, tier.value, "allowed")
        else:
            self.metrics.record_decision(category.value, tier.value, "denied")
            log_quota_exceeded(logger, user_id, tier.value, category.value, decision.limit, reset_seconds)
        return decision

    async def check_only(self, user_id: str, tier: Tier, category: EndpointCategory) -> QuotaDecision:
        """
        Read-only quota view for response headers and telemetry. Never increments.

        Not a gate: between this read and any later increment, concurrent
        requests can consume the remaining budget (time-of-check/time-of-use),
        so N callers may all see ``allowed`` for the last unit.
        """
        tier, category, category_limit, total_limit = self._resolve(tier, category)
        now = self.clock()
        reset_seconds = seconds_until_utc_midnight(now)

        if category_limit.requests == 0:
            return self._zero_limit(category, reset_seconds)

        keys = self.keyspace.keys_for(user_id, [category, EndpointCategory.TOTAL], now)
        result = await self.store.multi_get(keys)
        if isinstance(result, StoreError):
            return self._fail_open(user_id, tier, category, category_limit, reset_seconds, "check_only", result)

        category_count, total_count = result.value
        return QuotaDecision(
            allowed=category_count < category_limit.requests and total_count < total_limit.requests,
            remaining=max(0, category_limit.requests - category_count),
            limit=category_limit.requests,
            reset_seconds=reset_seconds,
            category=category,
        )
