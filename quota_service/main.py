"""
Application factory.

Run with:
    uvicorn quota_service.main:create_app --factory
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Iterable, Optional

from fastapi import APIRouter, Depends, FastAPI
from redis.asyncio import Redis

from quota_service.admin import QuotaAdmin
from quota_service.config import Settings, get_settings
from quota_service.enforcer import QuotaEnforcer
from quota_service.exceptions import register_exception_handlers
from quota_service.health.routes import router as health_router
from quota_service.keyspace import QuotaKeySpace
from quota_service.logger import logger, setup_logging
from quota_service.metrics import QuotaMetrics, get_quota_metrics, metrics_response
from quota_service.quota_middleware import enforce_quota
from quota_service.redis_client import close_redis_client, create_redis_client
from quota_service.routes.quota_routes import router as quota_router
from quota_service.store import QuotaStore, RedisQuotaStore
from quota_service.structured_logging import setup_structured_logging
from quota_service.tiers import TierLimitTable
from quota_service.users import InMemoryUserDirectory, TierResolver, UserDirectory


def include_quota_enforced_router(app: FastAPI, router: APIRouter, prefix: str = "") -> None:
    """Mount ``router`` with daily quota enforcement on every route."""
    app.include_router(router, prefix=prefix, dependencies=[Depends(enforce_quota)])


def create_app(
    settings: Optional[Settings] = None,
    redis: Optional[Redis] = None,
    store: Optional[QuotaStore] = None,
    user_directory: Optional[UserDirectory] = None,
    metrics: Optional[QuotaMetrics] = None,
    enforced_routers: Iterable[APIRouter] = (),
) -> FastAPI:
    """
    Build the service with explicitly wired collaborators.

    ``redis`` and ``store`` may be injected (tests, embedding); otherwise a
    Redis client is built from settings and closed on shutdown.
    """
    settings = settings or get_settings()

    setup_logging(settings.environment.value, settings.logging.level, settings.logging.file)
    setup_structured_logging(settings.logging.level, settings.logging.json_format)

    owns_redis = redis is None and store is None
    if owns_redis:
        redis = create_redis_client(settings.redis, pool_timeout=settings.quota.operation_timeout)

    metrics = metrics or get_quota_metrics()
    if store is None:
        store = RedisQuotaStore(redis, operation_timeout=settings.quota.operation_timeout, metrics=metrics)

    limits = TierLimitTable.from_settings(settings.quota)
    keyspace = QuotaKeySpace(prefix=settings.quota.key_prefix)
    directory = user_directory if user_directory is not None else InMemoryUserDirectory()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        logger.info(
            "Starting {} | environment={} | store={}",
            settings.service_name,
            settings.environment.value,
            type(store).__name__,
        )
        try:
            yield
        finally:
            if owns_redis:
                await close_redis_client(redis)
            logger.info("Shutdown complete")

    app = FastAPI(title="Quota Service", version="1.0.0", debug=settings.debug, lifespan=lifespan)

    app.state.settings = settings
    app.state.redis = redis
    app.state.quota_store = store
    app.state.quota_metrics = metrics
    app.state.user_directory = directory
    app.state.quota_enforcer = QuotaEnforcer(store, limits=limits, keyspace=keyspace, metrics=metrics)
    app.state.quota_admin = QuotaAdmin(store, limits=limits, keyspace=keyspace)
    app.state.tier_resolver = TierResolver(
        directory,
        redis=redis,
        ttl=settings.quota.tier_cache_ttl,
        operation_timeout=settings.quota.operation_timeout,
    )

    register_exception_handlers(app)
    app.include_router(health_router)
    app.include_router(quota_router)
    for router in enforced_routers:
        include_quota_enforced_router(app, router)

    if settings.metrics_enabled:
        @app.get("/metrics", include_in_schema=False)
        async def prometheus_metrics():
            return metrics_response(metrics.registry)

    return app


def run() -> None:
    import uvicorn

    uvicorn.run("quota_service.main:create_app", factory=True, host="0.0.0.0", port=8000)
