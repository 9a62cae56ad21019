"""
Caller identity.

Token validation happens upstream (gateway or auth service). This module only
turns what upstream established into a ``Principal``; the resolver is
pluggable through ``app.state.principal_resolver``.
"""

from typing import Callable, Optional

from fastapi import Depends, Request
from pydantic import BaseModel

from quota_service.exceptions import AuthenticationException, AuthorizationException
from quota_service.users import Role


class Principal(BaseModel):
    user_id: str
    role: Role = Role.USER


PrincipalResolver = Callable[[Request], Optional[Principal]]


def header_principal_resolver(request: Request) -> Optional[Principal]:
    """Trust X-User-Id / X-User-Role set by the authenticating gateway."""
    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        return None
    raw_role = request.headers.get("X-User-Role", Role.USER.value).strip().upper()
    role = Role.ADMIN if raw_role == Role.ADMIN.value else Role.USER
    return Principal(user_id=user_id, role=role)


async def get_optional_principal(request: Request) -> Optional[Principal]:
    resolver: PrincipalResolver = getattr(request.app.state, "principal_resolver", header_principal_resolver)
    return resolver(request)


async def get_current_principal(principal: Optional[Principal] = Depends(get_optional_principal)) -> Principal:
    if principal is None:
        raise AuthenticationException()
    return principal


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != Role.ADMIN:
        raise AuthorizationException("Admin role required")
    return principal
