"""
Health Check Logic
"""

import time

from fastapi import HTTPException, Request

from quota_service.logger import logger
from quota_service.store import StoreError


async def check_liveness(request: Request):
    """
    Basic liveness check.
    Returns 200 OK if the application process is running.
    """
    settings = getattr(request.app.state, "settings", None)
    return {
        "status": "alive",
        "timestamp": time.time(),
        "service": settings.service_name if settings is not None else "quota-service",
    }


async def check_readiness(request: Request):
    """
    Readiness check against the counter store.

    Returns 503 when the store is unreachable. Enforcement keeps failing open
    in that state; the probe only reports it.
    """
    status = {
        "status": "ready",
        "timestamp": time.time(),
        "checks": {"counter_store": "unknown"},
    }

    store = getattr(request.app.state, "quota_store", None)
    if store is None:
        status["checks"]["counter_store"] = "failed: not initialized"
    else:
        result = await store.ping()
        if isinstance(result, StoreError):
            status["checks"]["counter_store"] = f"failed: {result.kind.value}"
            logger.error("Readiness check failed: counter store - {}", result.detail)
        else:
            status["checks"]["counter_store"] = "ok"

    if status["checks"]["counter_store"] != "ok":
        status["status"] = "degraded"
        raise HTTPException(status_code=503, detail=status)

    return status
