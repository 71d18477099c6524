"""Unit tests for the cron administration endpoints."""

from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from bitredict.api.dependencies import get_coordinator
from bitredict.api.routes import admin
from bitredict.services.coordinator import JobCoordinator


@pytest.fixture
def coordinator(cron_store, alert_store, settings, clock):
    return JobCoordinator(
        cron_store,
        alerts=alert_store,
        settings=settings,
        clock=clock,
        sleep=AsyncMock(),
        jitter=lambda: 0.0,
        locked_by="api-test:1",
    )


@pytest.fixture
def client(coordinator):
    app = FastAPI()
    app.include_router(admin.router)
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    with TestClient(app) as test_client:
        yield test_client


class TestCronEndpoints:
    """Test lock inspection and emergency release over HTTP."""

    async def test_status_lists_active_locks(self, client, coordinator):
        await coordinator.acquire_lock("unified_results", 600)

        response = client.get("/api/admin/cron/status")

        assert response.status_code == 200
        body = response.json()
        assert [lock["job_name"] for lock in body["active_locks"]] == ["unified_results"]
        assert body["summary_24h"]["unified_results"]["started"] == 1

    async def test_lock_status(self, client, coordinator):
        execution_id = await coordinator.acquire_lock("unified_evaluation", 600, {"cycle_id": 4})

        response = client.get("/api/admin/cron/locks/unified_evaluation")

        assert response.status_code == 200
        assert response.json()["execution_id"] == str(execution_id)
        assert response.json()["metadata"] == {"cycle_id": 4}

    def test_missing_lock_is_404(self, client):
        assert client.get("/api/admin/cron/locks/nothing").status_code == 404

    async def test_force_release(self, client, coordinator, cron_store):
        execution_id = await coordinator.acquire_lock("stuck_job", 600)

        response = client.post("/api/admin/cron/locks/stuck_job/force-release")

        assert response.status_code == 200
        assert response.json() == {"job_name": "stuck_job", "released": True}
        assert cron_store.execution(execution_id).status == "force_released"
        assert client.post("/api/admin/cron/locks/stuck_job/force-release").status_code == 404

    async def test_history(self, client, coordinator, clock):
        await coordinator.log_execution("unified_results", "failed", error="feed down")
        clock.advance(minutes=15)
        await coordinator.log_execution("unified_results", "completed")

        response = client.get("/api/admin/cron/history/unified_results", params={"limit": 5})

        assert response.status_code == 200
        assert [e["status"] for e in response.json()] == ["completed", "failed"]
        assert response.json()[1]["error_message"] == "feed down"

    def test_history_limit_bounds(self, client):
        assert client.get("/api/admin/cron/history/job", params={"limit": 0}).status_code == 400
