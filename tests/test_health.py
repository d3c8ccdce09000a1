"""Tests for health endpoints."""

import pytest
from httpx import AsyncClient

from app.api.v1.endpoints import health


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """Test health check endpoint."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data


@pytest.mark.asyncio
async def test_ping(client: AsyncClient) -> None:
    """Test ping endpoint."""
    response = await client.get("/api/v1/ping")
    assert response.status_code == 200
    assert response.json() == {"message": "pong"}


@pytest.mark.asyncio
async def test_detailed_health_degraded_without_redis(
    client: AsyncClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A redis outage degrades the service without failing the check."""

    async def healthy() -> bool:
        return True

    async def unhealthy() -> bool:
        return False

    monkeypatch.setattr(health, "check_database_connection", healthy)
    monkeypatch.setattr(health, "check_redis_connection", unhealthy)

    response = await client.get("/api/v1/health/detailed")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["database"] == "healthy"
    assert data["redis"] == "unhealthy"
    assert data["active_sagas"] == 0


@pytest.mark.asyncio
async def test_request_id_header(client: AsyncClient) -> None:
    """Responses echo the caller's request id."""
    response = await client.get("/api/v1/ping", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"
    assert "X-Process-Time" in response.headers
