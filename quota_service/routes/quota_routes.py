"""
Quota usage and management routes.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from quota_service.admin import QuotaAdmin
from quota_service.auth import Principal, get_current_principal, require_admin
from quota_service.exceptions import NotFoundException, ServiceUnavailableException
from quota_service.store import StoreError
from quota_service.tiers import Tier, limits_as_dict, parse_category, parse_tier
from quota_service.users import TierResolver, UserDirectory

router = APIRouter(prefix="/quota", tags=["Quota"])


class TierUpdate(BaseModel):
    tier: str


def get_quota_admin(request: Request) -> QuotaAdmin:
    return request.app.state.quota_admin


def get_user_directory(request: Request) -> UserDirectory:
    return request.app.state.user_directory


def get_tier_resolver(request: Request) -> TierResolver:
    return request.app.state.tier_resolver


async def _usage_or_503(admin: QuotaAdmin, user_id: str, tier: Tier) -> Dict[str, Any]:
    result = await admin.usage_snapshot(user_id, tier)
    if isinstance(result, StoreError):
        raise ServiceUnavailableException("Quota counters are temporarily unavailable", service="redis")
    return {category.value: usage.model_dump() for category, usage in result.value.items()}


@router.get("/usage", summary="Quota usage of the calling user")
async def get_my_usage(
    principal: Principal = Depends(get_current_principal),
    admin: QuotaAdmin = Depends(get_quota_admin),
    directory: UserDirectory = Depends(get_user_directory),
) -> Dict[str, Any]:
    """
    **Response:**
    ```json
    {
        "tier": "FREE",
        "usage": {"analytics": {"used": 50, "limit": 100, "remaining": 50}, "...": {}},
        "limits": {"analytics": {"requests": 100, "window": "daily"}, "...": {}},
        "rateLimits": {"requests_per_minute": 30, "requests_per_15_minutes": 100}
    }
    ```
    """
    user = await directory.get_user(principal.user_id)
    if user is None:
        raise NotFoundException("User not found")

    return {
        "tier": user.tier.value,
        "usage": await _usage_or_503(admin, user.id, user.tier),
        "limits": limits_as_dict(admin.limits_for(user.tier)),
        "rateLimits": admin.rate_limits_for(user.tier).model_dump(),
    }


@router.get("/limits", summary="Quota limits of every tier")
async def get_all_limits(admin: QuotaAdmin = Depends(get_quota_admin)) -> Dict[str, Any]:
    return {
        tier.value: {
            "quotas": limits_as_dict(limits),
            "rateLimits": admin.rate_limits_for(tier).model_dump(),
        }
        for tier, limits in admin.all_tier_limits().items()
    }


@router.get("/users/{user_id}", summary="Quota usage of a user (admin)")
async def get_user_usage(
    user_id: str,
    _: Principal = Depends(require_admin),
    admin: QuotaAdmin = Depends(get_quota_admin),
    directory: UserDirectory = Depends(get_user_directory),
) -> Dict[str, Any]:
    user = await directory.get_user(user_id)
    if user is None:
        raise NotFoundException("User not found")

    return {
        "user": {
            "id": user.id,
            "username": user.username,
            "tier": user.tier.value,
            "role": user.role.value,
        },
        "usage": await _usage_or_503(admin, user.id, user.tier),
        "limits": limits_as_dict(admin.limits_for(user.tier)),
    }


@router.put("/users/{user_id}/tier", summary="Change a user's subscription tier (admin)")
async def update_user_tier(
    user_id: str,
    body: TierUpdate,
    _: Principal = Depends(require_admin),
    directory: UserDirectory = Depends(get_user_directory),
    resolver: TierResolver = Depends(get_tier_resolver),
) -> Dict[str, Any]:
    tier = parse_tier(body.tier)
    user = await directory.update_tier(user_id, tier)
    if user is None:
        raise NotFoundException("User not found")

    await resolver.invalidate(user_id)
    return {
        "message": "User tier updated successfully",
        "user": {"id": user.id, "username": user.username, "tier": user.tier.value},
    }


@router.delete("/users/{user_id}/reset", summary="Reset today's quota counters of a user (admin)")
async def reset_user_quota(
    user_id: str,
    category: Optional[str] = Query(default=None, description="Category to reset; all when omitted"),
    _: Principal = Depends(require_admin),
    admin: QuotaAdmin = Depends(get_quota_admin),
    directory: UserDirectory = Depends(get_user_directory),
) -> Dict[str, Any]:
    parsed = parse_category(category) if category is not None else None

    user = await directory.get_user(user_id)
    if user is None:
        raise NotFoundException("User not found")

    result = await admin.reset(user_id, parsed)
    if isinstance(result, StoreError):
        raise ServiceUnavailableException("Quota counters are temporarily unavailable", service="redis")

    return {
        "message": f"Quota reset for category: {parsed.value}" if parsed else "All quotas reset successfully",
        "userId": user_id,
        "username": user.username,
        "category": parsed.value if parsed else "all",
    }
