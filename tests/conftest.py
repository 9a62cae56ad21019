"""
Shared test fixtures for all test files

Provides common fixtures for:
- Redis client (fakeredis)
- Settings with a generous store timeout
- Quota store / enforcer / admin wired against fakeredis
- FastAPI app instances and an async HTTP client
"""

import os
from datetime import datetime, timezone

import pytest
import pytest_asyncio

os.environ["TESTING"] = "1"

import fakeredis
from fakeredis.aioredis import FakeAsyncRedisConnection
from fastapi import APIRouter
from httpx import ASGITransport, AsyncClient
from prometheus_client import CollectorRegistry
from redis.asyncio import BlockingConnectionPool

from quota_service.admin import QuotaAdmin
from quota_service.config import LoggingSettings, QuotaSettings, Settings
from quota_service.enforcer import QuotaEnforcer
from quota_service.metrics import QuotaMetrics
from quota_service.store import RedisQuotaStore
from quota_service.tiers import Tier
from quota_service.users import InMemoryUserDirectory, Role, UserRecord


class FrozenClock:
    """Settable clock for day-boundary tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# =============================================================================
# ENVIRONMENT ISOLATION
# =============================================================================

@pytest.fixture(scope="function", autouse=True)
def isolate_env(monkeypatch):
    """Keep REDIS_/QUOTA_/LOG_ variables from the host out of every test."""
    for var in list(os.environ):
        if var.startswith(("REDIS_", "QUOTA_", "LOG_")) or var == "ENVIRONMENT":
            monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("TESTING", "1")

    from quota_service.config import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# =============================================================================
# CORE COMPONENTS
# =============================================================================

@pytest.fixture
def metrics():
    """Metrics on a private registry so tests can read exact values."""
    return QuotaMetrics(registry=CollectorRegistry())


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture(scope="function")
async def redis_client():
    """Fake Redis async client on a blocking pool smaller than the concurrency tests' fan-out"""
    pool = BlockingConnectionPool(
        connection_class=FakeAsyncRedisConnection,
        server=fakeredis.FakeServer(),
        max_connections=20,
        timeout=5,
    )
    client = fakeredis.FakeAsyncRedis.from_pool(pool)
    await client.flushall()
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def store(redis_client, metrics):
    # Generous timeout: concurrency tests schedule many transactions at once
    return RedisQuotaStore(redis_client, operation_timeout=5.0, metrics=metrics)


@pytest.fixture
def enforcer(store, clock, metrics):
    return QuotaEnforcer(store, clock=clock, metrics=metrics)


@pytest.fixture
def quota_admin(store, clock):
    return QuotaAdmin(store, clock=clock)


# =============================================================================
# FASTAPI APP
# =============================================================================

@pytest.fixture
def test_settings():
    return Settings(
        environment="testing",
        debug=True,
        metrics_enabled=True,
        quota=QuotaSettings(operation_timeout_ms=5000),
        logging=LoggingSettings(level="WARNING", json_format=False),
    )


@pytest.fixture
def user_directory():
    return InMemoryUserDirectory([
        UserRecord(id="user-free", username="freebie", tier=Tier.FREE),
        UserRecord(id="user-pro", username="prolific", tier=Tier.PRO),
        UserRecord(id="user-ent", username="bigco", tier=Tier.ENTERPRISE),
        UserRecord(id="admin-1", username="root", tier=Tier.ENTERPRISE, role=Role.ADMIN),
    ])


@pytest.fixture
def sample_router():
    """Routes standing in for the application endpoints being metered."""
    router = APIRouter(prefix="/api")

    @router.get("/analytics/summary")
    async def analytics_summary():
        return {"ok": True}

    @router.get("/admin/tools")
    async def admin_tools():
        return {"ok": True}

    @router.get("/guilds")
    async def guilds():
        return {"ok": True}

    return router


@pytest.fixture
def app(test_settings, redis_client, store, user_directory, metrics, sample_router):
    """FastAPI application wired against fakeredis"""
    from quota_service.main import create_app

    return create_app(
        settings=test_settings,
        redis=redis_client,
        store=store,
        user_directory=user_directory,
        metrics=metrics,
        enforced_routers=[sample_router],
    )


@pytest_asyncio.fixture(scope="function")
async def client(app):
    """Async HTTP client for testing"""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
