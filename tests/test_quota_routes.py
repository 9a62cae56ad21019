"""
Tests for quota usage and management endpoints
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from prometheus_client import CollectorRegistry

from quota_service.main import create_app
from quota_service.metrics import QuotaMetrics
from quota_service.store import InMemoryQuotaStore
from quota_service.tiers import EndpointCategory

ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "ADMIN"}


def user(user_id: str) -> dict:
    return {"X-User-Id": user_id}


@pytest.mark.asyncio
class TestLimitsEndpoint:
    async def test_public(self, client):
        response = await client.get("/quota/limits")

        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"FREE", "PRO", "ENTERPRISE"}
        assert data["FREE"]["quotas"]["analytics"] == {"requests": 100, "window": "daily"}
        assert data["ENTERPRISE"]["quotas"]["admin"]["requests"] == 50000
        assert data["PRO"]["rateLimits"]["requests_per_minute"] == 100


@pytest.mark.asyncio
class TestUsageEndpoint:
    async def test_requires_authentication(self, client):
        response = await client.get("/quota/usage")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["type"] == "authentication_error"

    async def test_reports_usage(self, client):
        await client.get("/api/analytics/summary", headers=user("user-free"))
        await client.get("/api/analytics/summary", headers=user("user-free"))

        response = await client.get("/quota/usage", headers=user("user-free"))

        assert response.status_code == 200
        data = response.json()
        assert data["tier"] == "FREE"
        assert data["usage"]["analytics"] == {"used": 2, "limit": 100, "remaining": 98}
        assert data["usage"]["total"]["used"] == 2
        assert data["limits"]["public"]["requests"] == 500
        assert data["rateLimits"] == {"requests_per_minute": 30, "requests_per_15_minutes": 100}

    async def test_usage_is_not_counted(self, client):
        await client.get("/quota/usage", headers=user("user-pro"))

        response = await client.get("/quota/usage", headers=user("user-pro"))

        assert response.json()["usage"]["total"]["used"] == 0

    async def test_corrupt_counter_is_503(self, app, client, redis_client):
        admin = app.state.quota_admin
        key, _ = admin.keyspace.key_for("user-free", EndpointCategory.ANALYTICS, admin.clock())
        await redis_client.set(key, "garbage")

        response = await client.get("/quota/usage", headers=user("user-free"))

        assert response.status_code == 503
        assert response.json()["service"] == "redis"

    async def test_unknown_user(self, client):
        response = await client.get("/quota/usage", headers=user("ghost"))

        assert response.status_code == 404


@pytest.mark.asyncio
class TestUserUsageEndpoint:
    async def test_requires_admin(self, client):
        response = await client.get("/quota/users/user-free", headers=user("user-pro"))

        assert response.status_code == 403

    async def test_requires_authentication(self, client):
        response = await client.get("/quota/users/user-free")

        assert response.status_code == 401

    async def test_admin_reads_usage(self, client):
        await client.get("/api/guilds", headers=user("user-pro"))

        response = await client.get("/quota/users/user-pro", headers=ADMIN)

        assert response.status_code == 200
        data = response.json()
        assert data["user"] == {"id": "user-pro", "username": "prolific", "tier": "PRO", "role": "USER"}
        assert data["usage"]["api"] == {"used": 1, "limit": 10000, "remaining": 9999}
        assert data["limits"]["total"]["requests"] == 10000

    async def test_missing_user(self, client):
        response = await client.get("/quota/users/ghost", headers=ADMIN)

        assert response.status_code == 404
        assert response.json()["type"] == "not_found"


@pytest.mark.asyncio
class TestUpdateTier:
    async def test_update(self, client):
        response = await client.put("/quota/users/user-free/tier", json={"tier": "pro"}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["user"]["tier"] == "PRO"

    async def test_new_tier_applies_immediately(self, client):
        before = await client.get("/api/guilds", headers=user("user-free"))
        await client.put("/quota/users/user-free/tier", json={"tier": "ENTERPRISE"}, headers=ADMIN)
        after = await client.get("/api/guilds", headers=user("user-free"))

        assert before.headers["X-Quota-Limit"] == "1000"
        assert after.headers["X-Quota-Limit"] == "100000"

    async def test_invalid_tier(self, client):
        response = await client.put("/quota/users/user-free/tier", json={"tier": "GOLD"}, headers=ADMIN)

        assert response.status_code == 400
        assert response.json()["type"] == "invalid_tier"

    async def test_missing_body(self, client):
        response = await client.put("/quota/users/user-free/tier", json={}, headers=ADMIN)

        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "body.tier"

    async def test_missing_user(self, client):
        response = await client.put("/quota/users/ghost/tier", json={"tier": "PRO"}, headers=ADMIN)

        assert response.status_code == 404

    async def test_requires_admin(self, client):
        response = await client.put("/quota/users/user-free/tier", json={"tier": "PRO"}, headers=user("user-free"))

        assert response.status_code == 403


@pytest.mark.asyncio
class TestResetEndpoint:
    async def test_reset_all(self, client):
        for _ in range(2):
            await client.get("/api/guilds", headers=user("user-free"))

        response = await client.delete("/quota/users/user-free/reset", headers=ADMIN)
        usage = (await client.get("/quota/usage", headers=user("user-free"))).json()["usage"]

        assert response.status_code == 200
        assert response.json() == {
            "message": "All quotas reset successfully",
            "userId": "user-free",
            "username": "freebie",
            "category": "all",
        }
        assert usage["api"]["used"] == 0
        assert usage["total"]["used"] == 0

    async def test_reset_category(self, client):
        await client.get("/api/guilds", headers=user("user-free"))
        await client.get("/api/analytics/summary", headers=user("user-free"))

        response = await client.delete("/quota/users/user-free/reset?category=analytics", headers=ADMIN)
        usage = (await client.get("/quota/usage", headers=user("user-free"))).json()["usage"]

        assert response.json()["category"] == "analytics"
        assert response.json()["message"] == "Quota reset for category: analytics"
        assert usage["analytics"]["used"] == 0
        assert usage["api"]["used"] == 1
        assert usage["total"]["used"] == 2

    async def test_invalid_category(self, client):
        response = await client.delete("/quota/users/user-free/reset?category=billing", headers=ADMIN)

        assert response.status_code == 400
        assert response.json()["type"] == "invalid_category"

    async def test_missing_user(self, client):
        response = await client.delete("/quota/users/ghost/reset", headers=ADMIN)

        assert response.status_code == 404

    async def test_requires_admin(self, client):
        response = await client.delete("/quota/users/user-free/reset", headers=user("user-ent"))

        assert response.status_code == 403


@pytest_asyncio.fixture
async def outage_client(test_settings, redis_client, user_directory):
    store = InMemoryQuotaStore()
    store.available = False
    app = create_app(
        settings=test_settings,
        redis=redis_client,
        store=store,
        user_directory=user_directory,
        metrics=QuotaMetrics(registry=CollectorRegistry()),
    )
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
class TestStoreOutage:
    async def test_usage_unavailable(self, outage_client):
        response = await outage_client.get("/quota/usage", headers=user("user-free"))

        assert response.status_code == 503
        assert response.json()["service"] == "redis"

    async def test_reset_unavailable(self, outage_client):
        response = await outage_client.delete("/quota/users/user-free/reset", headers=ADMIN)

        assert response.status_code == 503

    async def test_limits_still_served(self, outage_client):
        response = await outage_client.get("/quota/limits")

        assert response.status_code == 200
