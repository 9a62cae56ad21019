"""
Tests for Health Checks
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from fastapi import HTTPException, Request

from quota_service.health.checks import check_liveness, check_readiness
from quota_service.store import StoreError, StoreErrorKind, StoreOk


def fake_request(store=None):
    request = MagicMock(spec=Request)
    request.app.state.settings = None
    request.app.state.quota_store = store
    return request


@pytest.mark.asyncio
async def test_liveness():
    """Test liveness probe returns 200 OK."""
    result = await check_liveness(fake_request())
    assert result["status"] == "alive"
    assert result["service"] == "quota-service"
    assert "timestamp" in result


@pytest.mark.asyncio
async def test_readiness_success():
    store = MagicMock()
    store.ping = AsyncMock(return_value=StoreOk(True))

    result = await check_readiness(fake_request(store))

    assert result["status"] == "ready"
    assert result["checks"]["counter_store"] == "ok"


@pytest.mark.asyncio
async def test_readiness_store_failure():
    """Readiness fails when the counter store is down."""
    store = MagicMock()
    store.ping = AsyncMock(return_value=StoreError(StoreErrorKind.TIMEOUT, "ping exceeded 0.050s"))

    with pytest.raises(HTTPException) as exc:
        await check_readiness(fake_request(store))

    assert exc.value.status_code == 503
    assert exc.value.detail["status"] == "degraded"
    assert exc.value.detail["checks"]["counter_store"] == "failed: timeout"


@pytest.mark.asyncio
async def test_readiness_without_store():
    with pytest.raises(HTTPException) as exc:
        await check_readiness(fake_request(None))

    assert exc.value.detail["checks"]["counter_store"] == "failed: not initialized"


@pytest.mark.asyncio
class TestHealthRoutes:
    async def test_live(self, client):
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    async def test_ready(self, client):
        response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["checks"]["counter_store"] == "ok"

    async def test_ready_degraded(self, client, app):
        store = MagicMock()
        store.ping = AsyncMock(return_value=StoreError(StoreErrorKind.UNAVAILABLE, "connection refused"))
        app.state.quota_store = store

        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["detail"]["status"] == "degraded"

    async def test_metrics_exposed(self, client):
        await client.get("/api/guilds", headers={"X-User-Id": "user-free"})

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "quota_decisions_total" in response.text
        assert "quota_store_latency_seconds" in response.text
