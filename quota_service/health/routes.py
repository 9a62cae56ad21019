"""
Healthcheck Routes
"""

from fastapi import APIRouter, Request

from quota_service.health.checks import check_liveness, check_readiness

router = APIRouter(tags=["Health"])


@router.get("/health/live")
async def liveness_probe(request: Request):
    """
    Liveness probe: Is the application running?
    """
    return await check_liveness(request)


@router.get("/health/ready")
async def readiness_probe(request: Request):
    """
    Readiness probe: Is the counter store reachable?
    """
    return await check_readiness(request)
