"""
exceptions.py - Exception handling for the quota service

Provides:
- RFC 7807 Problem Details for HTTP APIs
- Structured quota-exceeded responses carrying X-Quota-* headers
- Local validation errors for unknown tiers and categories
"""

from __future__ import annotations

import traceback
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from quota_service.logger import logger

if TYPE_CHECKING:
    from quota_service.enforcer import QuotaDecision


# =============================================================================
# EXCEPTION MODELS (RFC 7807 Problem Details)
# =============================================================================

class ProblemDetail(BaseModel):
    """
    RFC 7807 Problem Details for HTTP APIs.
    """
    type: str = Field(..., description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: str = Field(..., description="Human-readable explanation")
    instance: str = Field(..., description="URI reference identifying specific occurrence")
    timestamp: Optional[str] = Field(None, description="Error timestamp")

    errors: Optional[list] = Field(None, description="Validation error details")
    quota: Optional[Dict[str, Any]] = Field(None, description="Quota state for quota errors")
    service: Optional[str] = Field(None, description="Unavailable dependency")


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class APIException(Exception):
    """
    Base exception for all API errors.
    """

    def __init__(
        self,
        *,
        error_type: str = "about:blank",
        title: str = "API Error",
        detail: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        headers: Optional[Dict[str, str]] = None,
        extensions: Optional[Dict[str, Any]] = None
    ):
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.status_code = status_code
        self.headers = headers or {}
        self.extensions = extensions or {}

        super().__init__(detail)

    def to_problem_detail(self, instance: str, timestamp: Optional[str] = None) -> ProblemDetail:
        """Convert exception to RFC 7807 Problem Detail."""
        return ProblemDetail(
            type=self.error_type,
            title=self.title,
            status=self.status_code,
            detail=self.detail,
            instance=instance,
            timestamp=timestamp,
            **self.extensions,
        )


class ValidationException(APIException):
    """Raised when request validation fails."""

    def __init__(
        self,
        detail: str,
        errors: Optional[list] = None,
        *,
        error_type: str = "validation_error",
        status_code: int = 422,
    ):
        super().__init__(
            error_type=error_type,
            title="Request Validation Failed",
            detail=detail,
            status_code=status_code,
            extensions={"errors": errors} if errors else {}
        )


class InvalidTierException(ValidationException):
    """Raised for a subscription tier outside FREE/PRO/ENTERPRISE."""

    def __init__(self, value: Any):
        from quota_service.tiers import Tier

        allowed = ", ".join(t.value for t in Tier)
        self.value = value
        super().__init__(
            f"Invalid tier '{value}'. Must be one of: {allowed}",
            error_type="invalid_tier",
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class InvalidCategoryException(ValidationException):
    """Raised for an unknown endpoint category."""

    def __init__(self, value: Any, allowed: Optional[list] = None):
        from quota_service.tiers import ALL_CATEGORIES

        names = allowed or [c.value for c in ALL_CATEGORIES]
        self.value = value
        super().__init__(
            f"Invalid category '{value}'. Must be one of: {', '.join(names)}",
            error_type="invalid_category",
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class AuthenticationException(APIException):
    """Raised when authentication fails."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            error_type="authentication_error",
            title="Authentication Failed",
            detail=detail,
            status_code=status.HTTP_401_UNAUTHORIZED,
            headers={"WWW-Authenticate": "Bearer"}
        )


class AuthorizationException(APIException):
    """Raised when authorization fails."""

    def __init__(self, detail: str = "Insufficient permissions"):
        super().__init__(
            error_type="authorization_error",
            title="Authorization Failed",
            detail=detail,
            status_code=status.HTTP_403_FORBIDDEN
        )


class NotFoundException(APIException):
    """Raised when a referenced resource does not exist."""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(
            error_type="not_found",
            title="Not Found",
            detail=detail,
            status_code=status.HTTP_404_NOT_FOUND
        )


class QuotaExceededException(APIException):
    """Raised when a daily quota denies the request."""

    def __init__(self, decision: "QuotaDecision"):
        self.decision = decision
        headers = decision.headers()
        headers["Retry-After"] = str(decision.reset_seconds)
        category = decision.category.value
        super().__init__(
            error_type="quota_exceeded",
            title="Quota Exceeded",
            detail=(
                f"You have exceeded your {category} quota for the day. "
                "Please upgrade your subscription or try again tomorrow."
            ),
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            headers=headers,
            extensions={
                "quota": {
                    "limit": decision.limit,
                    "remaining": decision.remaining,
                    "reset": decision.reset_seconds,
                    "category": category,
                }
            },
        )


class ServiceUnavailableException(APIException):
    """Raised when a service is unavailable."""

    def __init__(self, detail: str = "Service temporarily unavailable", service: Optional[str] = None):
        super().__init__(
            error_type="service_unavailable",
            title="Service Unavailable",
            detail=detail,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            extensions={"service": service} if service else {}
        )


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    """Handle APIException with a structured response."""
    problem = exc.to_problem_detail(instance=str(request.url), timestamp=_now_iso())

    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "API Exception | Type: {} | Status: {} | Detail: {} | Path: {}",
        exc.error_type,
        exc.status_code,
        exc.detail,
        request.url.path,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=problem.model_dump(exclude_none=True),
        headers=exc.headers
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle FastAPI request validation errors."""
    problem = ProblemDetail(
        type="validation_error",
        title="Request Validation Failed",
        status=422,
        detail="The request contains invalid data",
        instance=str(request.url),
        timestamp=_now_iso(),
        errors=_format_validation_errors(exc.errors()),
    )
    return JSONResponse(
        status_code=422,
        content=problem.model_dump(exclude_none=True),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions with safe error reporting."""
    settings = getattr(request.app.state, "settings", None)
    if settings is not None and settings.is_production:
        detail = "An unexpected error occurred. Please contact support if the problem persists."
    else:
        detail = f"{type(exc).__name__}: {str(exc)}"

    problem = ProblemDetail(
        type="internal_server_error",
        title="Internal Server Error",
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=detail,
        instance=str(request.url),
        timestamp=_now_iso(),
    )

    logger.critical(
        "Unhandled Exception | Type: {} | Detail: {} | Path: {}\n{}",
        type(exc).__name__,
        str(exc),
        request.url.path,
        traceback.format_exc(),
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=problem.model_dump(exclude_none=True)
    )


def _format_validation_errors(errors: list) -> list:
    """Format Pydantic validation errors for user-friendly display."""
    formatted = []
    for error in errors:
        formatted.append({
            "field": ".".join(str(loc) for loc in error.get("loc", [])),
            "message": error.get("msg", "validation error"),
            "type": error.get("type", "unknown"),
        })
    return formatted


# =============================================================================
# REGISTRATION FUNCTION
# =============================================================================

def register_exception_handlers(app):
    """Register all exception handlers with the FastAPI application."""
    app.add_exception_handler(APIException, api_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
