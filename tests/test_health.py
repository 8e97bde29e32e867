"""
Tests for the /health and / endpoints.

All tests run without a live MongoDB (db is mocked as disconnected in conftest).
"""

from unittest.mock import AsyncMock, MagicMock

import pytest


async def test_health_returns_200(client):
    """Health endpoint must return 200 whenever the API process is alive."""
    response = await client.get("/health")
    assert response.status_code == 200


async def test_health_response_schema(client):
    data = (await client.get("/health")).json()

    assert data["status"] == "ok"
    assert data["version"] == "0.1.0"
    assert data["environment"] == "test"
    assert "database" in data


async def test_health_disconnected_when_no_db(client):
    data = (await client.get("/health")).json()
    assert data["database"] == "disconnected"


async def test_health_connected_when_ping_succeeds(client):
    import issue_heatmap.core.database as db_module

    fake_client = MagicMock()
    fake_client.admin.command = AsyncMock(return_value={"ok": 1})
    db_module.db_client.client = fake_client

    data = (await client.get("/health")).json()

    assert data["database"] == "connected"
    fake_client.admin.command.assert_awaited_once_with("ping")


async def test_health_stays_up_when_ping_fails(client):
    import issue_heatmap.core.database as db_module

    fake_client = MagicMock()
    fake_client.admin.command = AsyncMock(side_effect=RuntimeError("timeout"))
    db_module.db_client.client = fake_client

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["database"] == "disconnected"


async def test_root_endpoint(client):
    response = await client.get("/")
    assert response.status_code == 200

    data = response.json()
    assert data["name"] == "Issue Heatmap API"
    assert data["status"] == "running"
    assert data["docs"] == "/docs"


async def test_docs_available_in_test_env(client):
    """OpenAPI docs are disabled only when ENVIRONMENT=production."""
    response = await client.get("/docs")
    assert response.status_code == 200


@pytest.mark.parametrize("path", ["/does-not-exist", "/api/v1/heatmap/nope"])
async def test_unknown_route_returns_404(client, path):
    response = await client.get(path)
    assert response.status_code == 404
