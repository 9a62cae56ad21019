"""
Quota Tiers Configuration

Daily request ceilings per subscription tier and endpoint category. The table
is plain data: operators adjust it through QUOTA_LIMITS_JSON / QUOTA_LIMITS_FILE
without touching enforcement logic.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

from quota_service import json_utils
from quota_service.config import QuotaSettings
from quota_service.exceptions import InvalidCategoryException, InvalidTierException


class Tier(str, Enum):
    FREE = "FREE"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class EndpointCategory(str, Enum):
    ANALYTICS = "analytics"
    API = "api"
    ADMIN = "admin"
    PUBLIC = "public"
    # Synthetic aggregate, incremented alongside every concrete category
    TOTAL = "total"


ENFORCEABLE_CATEGORIES: Tuple[EndpointCategory, ...] = (
    EndpointCategory.ANALYTICS,
    EndpointCategory.API,
    EndpointCategory.ADMIN,
    EndpointCategory.PUBLIC,
)
ALL_CATEGORIES: Tuple[EndpointCategory, ...] = ENFORCEABLE_CATEGORIES + (EndpointCategory.TOTAL,)


class QuotaLimit(BaseModel):
    requests: StrictInt = Field(ge=0, description="Requests allowed per window; 0 denies the category outright")
    window: Literal["daily"] = "daily"

    model_config = ConfigDict(extra="forbid", frozen=True)


class RateLimitConfig(BaseModel):
    """Per-minute ceilings published for display; enforced elsewhere."""
    requests_per_minute: int = Field(ge=0)
    requests_per_15_minutes: int = Field(ge=0)

    model_config = ConfigDict(frozen=True)


def _limits(analytics: int, api: int, admin: int, public: int, total: int) -> Dict[EndpointCategory, QuotaLimit]:
    return {
        EndpointCategory.ANALYTICS: QuotaLimit(requests=analytics),
        EndpointCategory.API: QuotaLimit(requests=api),
        EndpointCategory.ADMIN: QuotaLimit(requests=admin),
        EndpointCategory.PUBLIC: QuotaLimit(requests=public),
        EndpointCategory.TOTAL: QuotaLimit(requests=total),
    }


QUOTA_LIMITS: Dict[Tier, Dict[EndpointCategory, QuotaLimit]] = {
    Tier.FREE: _limits(analytics=100, api=1000, admin=0, public=500, total=1000),
    Tier.PRO: _limits(analytics=1000, api=10000, admin=0, public=5000, total=10000),
    Tier.ENTERPRISE: _limits(analytics=10000, api=100000, admin=50000, public=50000, total=100000),
}

RATE_LIMITS_BY_TIER: Dict[Tier, RateLimitConfig] = {
    Tier.FREE: RateLimitConfig(requests_per_minute=30, requests_per_15_minutes=100),
    Tier.PRO: RateLimitConfig(requests_per_minute=100, requests_per_15_minutes=1000),
    Tier.ENTERPRISE: RateLimitConfig(requests_per_minute=300, requests_per_15_minutes=5000),
}


def parse_tier(value: Any) -> Tier:
    """Coerce a tier name (case-insensitive) or raise InvalidTierException."""
    if isinstance(value, Tier):
        return value
    if isinstance(value, str):
        try:
            return Tier(value.strip().upper())
        except ValueError:
            pass
    raise InvalidTierException(value)


def parse_category(value: Any, allow_total: bool = True) -> EndpointCategory:
    """Coerce a category name or raise InvalidCategoryException.

    ``allow_total=False`` is used on the enforcement path, where callers may
    only name a concrete category.
    """
    allowed = ALL_CATEGORIES if allow_total else ENFORCEABLE_CATEGORIES
    category: Optional[EndpointCategory] = None
    if isinstance(value, EndpointCategory):
        category = value
    elif isinstance(value, str):
        try:
            category = EndpointCategory(value.strip().lower())
        except ValueError:
            category = None
    if category is None or category not in allowed:
        raise InvalidCategoryException(value, [c.value for c in allowed])
    return category


def classify_endpoint(path: str, prefix: str = "/api") -> EndpointCategory:
    """
    Map a request path to its quota category.

    The mount prefix is stripped first, so ``/api/analytics/x`` and
    ``/analytics/x`` both classify as analytics. Anything unmatched is ``api``.
    """
    if prefix and (path == prefix or path.startswith(prefix + "/")):
        path = path[len(prefix):] or "/"
    if path.startswith("/analytics"):
        return EndpointCategory.ANALYTICS
    if path.startswith("/admin"):
        return EndpointCategory.ADMIN
    if path.startswith("/public"):
        return EndpointCategory.PUBLIC
    return EndpointCategory.API


class TierLimitTable:
    """Lookup of daily ceilings by tier and category."""

    def __init__(self, limits: Optional[Mapping[Tier, Mapping[EndpointCategory, QuotaLimit]]] = None):
        source = limits if limits is not None else QUOTA_LIMITS
        table: Dict[Tier, Dict[EndpointCategory, QuotaLimit]] = {}
        for tier in Tier:
            if tier not in source:
                raise ValueError(f"Missing quota limits for tier {tier.value}")
            row = source[tier]
            missing = [c.value for c in ALL_CATEGORIES if c not in row]
            if missing:
                raise ValueError(f"Tier {tier.value} is missing categories: {', '.join(missing)}")
            table[tier] = {category: row[category] for category in ALL_CATEGORIES}
        self._table = table

    def limits_for(self, tier: Tier) -> Dict[EndpointCategory, QuotaLimit]:
        return dict(self._table[parse_tier(tier)])

    def limit(self, tier: Tier, category: EndpointCategory) -> QuotaLimit:
        return self._table[parse_tier(tier)][parse_category(category)]

    def total_for(self, tier: Tier) -> QuotaLimit:
        return self._table[parse_tier(tier)][EndpointCategory.TOTAL]

    def all_limits(self) -> Dict[Tier, Dict[EndpointCategory, QuotaLimit]]:
        return {tier: dict(row) for tier, row in self._table.items()}

    @classmethod
    def from_overrides(cls, overrides: Mapping[str, Mapping[str, Any]]) -> "TierLimitTable":
        """
        Build a table from the defaults with ``overrides`` merged on top.

        Values may be a bare integer or ``{"requests": n}``:
            {"FREE": {"analytics": 250}, "PRO": {"total": {"requests": 20000}}}
        """
        if not isinstance(overrides, Mapping):
            raise ValueError("Quota limit overrides must be a JSON object keyed by tier")
        merged = {tier: dict(row) for tier, row in QUOTA_LIMITS.items()}
        for raw_tier, row in overrides.items():
            tier = parse_tier(raw_tier)
            if not isinstance(row, Mapping):
                raise ValueError(f"Limits for tier {tier.value} must be an object")
            for raw_category, raw_limit in row.items():
                category = parse_category(raw_category)
                if isinstance(raw_limit, int):
                    raw_limit = {"requests": raw_limit}
                try:
                    merged[tier][category] = QuotaLimit(**raw_limit)
                except (TypeError, ValidationError) as e:
                    raise ValueError(f"Invalid limit for {tier.value}.{category.value}: {e}") from e
        return cls(merged)

    @classmethod
    def from_settings(cls, settings: QuotaSettings) -> "TierLimitTable":
        """Default table, or the JSON override configured in settings."""
        raw: Optional[str] = settings.limits_json
        if settings.limits_file:
            raw = Path(settings.limits_file).read_text(encoding="utf-8")
        if not raw:
            return cls()
        return cls.from_overrides(json_utils.loads(raw))


def limits_as_dict(limits: Mapping[EndpointCategory, QuotaLimit]) -> Dict[str, Dict[str, Any]]:
    """JSON-ready view of one tier's limits."""
    return {category.value: limit.model_dump() for category, limit in limits.items()}
