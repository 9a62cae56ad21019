"""
Request-path quota dependencies.

``enforce_quota`` counts the request and rejects it with 429 once a daily
quota is spent. ``quota_headers`` only publishes the current state. Both skip
unauthenticated requests, which are left to IP-based rate limiting.

Usage:
    router = APIRouter(dependencies=[Depends(enforce_quota)])
"""

from typing import Optional

from fastapi import Depends, Request, Response

from quota_service.auth import Principal, get_optional_principal
from quota_service.enforcer import QuotaDecision, QuotaEnforcer
from quota_service.exceptions import AuthorizationException, QuotaExceededException
from quota_service.structured_logging import LogContext
from quota_service.tiers import Tier, classify_endpoint
from quota_service.users import TierResolver


def get_enforcer(request: Request) -> QuotaEnforcer:
    return request.app.state.quota_enforcer


def get_tier_resolver(request: Request) -> TierResolver:
    return request.app.state.tier_resolver


def _path_prefix(request: Request) -> str:
    settings = getattr(request.app.state, "settings", None)
    return settings.quota.path_prefix if settings is not None else "/api"


def _enforcement_enabled(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return settings.quota.enforcement_enabled if settings is not None else True


async def _resolve_tier(resolver: TierResolver, principal: Principal) -> Tier:
    tier = await resolver.resolve_user_tier(principal.user_id)
    if tier is None:
        raise AuthorizationException("User not found")
    return tier


async def enforce_quota(
    request: Request,
    response: Response,
    principal: Optional[Principal] = Depends(get_optional_principal),
    enforcer: QuotaEnforcer = Depends(get_enforcer),
    resolver: TierResolver = Depends(get_tier_resolver),
) -> Optional[QuotaDecision]:
    if principal is None:
        return None
    if not _enforcement_enabled(request):
        return await quota_headers(request, response, principal, enforcer, resolver)

    tier = await _resolve_tier(resolver, principal)
    category = classify_endpoint(request.url.path, _path_prefix(request))
    with LogContext(path=request.url.path):
        decision = await enforcer.check_and_increment(principal.user_id, tier, category)

    request.state.quota = decision
    if not decision.allowed:
        raise QuotaExceededException(decision)

    response.headers.update(decision.headers())
    return decision


async def quota_headers(
    request: Request,
    response: Response,
    principal: Optional[Principal] = Depends(get_optional_principal),
    enforcer: QuotaEnforcer = Depends(get_enforcer),
    resolver: TierResolver = Depends(get_tier_resolver),
) -> Optional[QuotaDecision]:
    """Publish X-Quota-* headers without counting or blocking the request."""
    if principal is None:
        return None

    tier = await _resolve_tier(resolver, principal)
    category = classify_endpoint(request.url.path, _path_prefix(request))
    decision = await enforcer.check_only(principal.user_id, tier, category)

    request.state.quota = decision
    response.headers.update(decision.headers())
    return decision
