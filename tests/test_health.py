"""Health check endpoint tests."""

import pytest

from hookrelay import __version__


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "hookrelay"
    assert data["version"] == __version__


@pytest.mark.asyncio
async def test_liveness(client):
    response = await client.get("/api/v1/health/live")
    assert response.json() == {"status": "alive"}


@pytest.mark.asyncio
async def test_readiness(client):
    response = await client.get("/api/v1/health/ready")
    assert response.status_code == 200
    assert response.json()["checks"] == {"database": "ok", "pipeline": "ok"}


@pytest.mark.asyncio
async def test_readiness_without_pipeline(app, client):
    app.state.pipeline = None
    response = await client.get("/api/v1/health/ready")
    assert response.status_code == 503
    assert response.json()["checks"]["pipeline"] == "not_wired"
