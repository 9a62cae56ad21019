"""
Counter key derivation for daily quotas.

Keys embed the UTC calendar day, so a new day maps to a disjoint key and the
previous day's counters simply expire at midnight.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Tuple

from quota_service.tiers import EndpointCategory

SECONDS_PER_DAY = 86400


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(now: datetime) -> datetime:
    # Naive datetimes are taken to already be UTC
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def day_bucket(now: datetime) -> str:
    """UTC calendar date as YYYY-MM-DD."""
    return _as_utc(now).date().isoformat()


def seconds_until_utc_midnight(now: datetime) -> int:
    """Seconds from ``now`` to the next UTC midnight, always within [1, 86400]."""
    now = _as_utc(now)
    midnight = datetime.combine(now.date() + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)
    remaining = math.ceil((midnight - now).total_seconds())
    return max(1, min(SECONDS_PER_DAY, remaining))


class QuotaKeySpace:
    """Maps (user, category, day) to a counter key and its time-to-live."""

    def __init__(self, prefix: str = "quota"):
        self.prefix = prefix

    def key_for(self, user_id: str, category: EndpointCategory, now: datetime) -> Tuple[str, int]:
        """
        Returns:
            (key, ttl_seconds) where ttl_seconds runs until the next UTC midnight.
        """
        return self._key(user_id, category, now), seconds_until_utc_midnight(now)

    def keys_for(self, user_id: str, categories: Iterable[EndpointCategory], now: datetime) -> List[str]:
        """Current-day keys for several categories of one user."""
        return [self._key(user_id, category, now) for category in categories]

    def _key(self, user_id: str, category: EndpointCategory, now: datetime) -> str:
        return f"{self.prefix}:{user_id}:{EndpointCategory(category).value}:{day_bucket(now)}"
