"""Unit tests for the health and readiness endpoints."""

from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from bitredict.api import dependencies
from bitredict.api.routes import health


@pytest.fixture
def db_session():
    return AsyncMock()


@pytest.fixture
def client(monkeypatch, settings, gateway, db_session):
    monkeypatch.setattr(health, "get_settings", lambda: settings)
    monkeypatch.setattr(health, "get_gateway", lambda: gateway)

    app = FastAPI()
    app.include_router(health.router)
    app.dependency_overrides[dependencies.get_db] = lambda: db_session
    app.dependency_overrides[dependencies.get_redis] = lambda: None
    with TestClient(app) as test_client:
        yield test_client


class TestReadiness:
    """Test the readiness checks against injected dependencies."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_ready_uses_api_session(self, client, db_session, gateway):
        response = client.get("/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["ready"] is True
        assert body["checks"]["db"]["status"] == "ok"
        assert body["checks"]["redis"]["status"] == "disabled"
        assert body["checks"]["rpc"]["message"] == f"head {gateway.head}"
        db_session.execute.assert_awaited_once()

    def test_database_error_not_ready(self, client, db_session):
        db_session.execute.side_effect = ConnectionError("db down")

        body = client.get("/ready").json()

        assert body["ready"] is False
        assert body["checks"]["db"] == {"status": "error", "message": "db down"}

    def test_rpc_error_not_ready(self, client, gateway):
        gateway.fail("get_block_number", ConnectionError("rpc down"))

        body = client.get("/ready").json()

        assert body["ready"] is False
        assert body["checks"]["rpc"]["status"] == "error"
