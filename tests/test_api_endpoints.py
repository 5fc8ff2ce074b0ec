from __future__ import annotations

import asyncio
from typing import Generator

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from corpsync.db import init_models
from corpsync.main import app
from corpsync.runtime import SyncRuntime, get_runtime
from corpsync.schemas.sync import ErrorRecord, SyncRunRecord
from corpsync.services.esi_client import EsiClient
from corpsync.services.token_service import TokenStore

from tests.conftest import CORPORATION_ID, TEST_BASE_URL, FakeClock, FakeRefresher


@pytest.fixture
def runtime(tmp_path) -> Generator[SyncRuntime, None, None]:
    """A runtime on its own database; NullPool so each request's event loop opens fresh connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    asyncio.run(init_models(engine))
    factory = async_sessionmaker(engine, expire_on_commit=False)

    clock = FakeClock()
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])),
        base_url=TEST_BASE_URL,
    )
    runtime = SyncRuntime(
        session_factory=factory,
        client=EsiClient(client=http_client, clock=clock),
        token_store=TokenStore(session_factory=factory, refresher=FakeRefresher(), clock=clock),
        clock=clock,
        corporation_id=CORPORATION_ID,
    )
    runtime.register_defaults()
    yield runtime
    asyncio.run(engine.dispose())


@pytest.fixture
def client(runtime: SyncRuntime) -> Generator[TestClient, None, None]:
    """Test client wired to the test runtime. Startup hooks are not run."""
    app.dependency_overrides[get_runtime] = lambda: runtime
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealthEndpoints:
    """Test health endpoints."""

    def test_health_check(self, client: TestClient):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_sync_health(self, client: TestClient):
        response = client.get("/health/sync")
        assert response.status_code == 200
        data = response.json()
        assert data["processes"] == 8
        assert data["repeated_failures"] == []

    def test_sync_health_degraded_on_repeated_failures(self, client: TestClient, runtime: SyncRuntime):
        for _ in range(3):
            runtime.errors.record_run_outcome("assets", succeeded=False)

        response = client.get("/health/sync")
        assert response.status_code == 503
        assert response.json()["repeated_failures"] == ["assets"]


class TestSyncEndpoints:
    """Test sync process management endpoints."""

    def test_list_processes(self, client: TestClient):
        response = client.get("/api/sync/processes")
        assert response.status_code == 200
        ids = {p["process"]["id"] for p in response.json()["processes"]}
        assert {"members", "assets", "industry_jobs", "contracts"} <= ids

    def test_get_unknown_process(self, client: TestClient):
        response = client.get("/api/sync/processes/planets")
        assert response.status_code == 404

    def test_disable_process(self, client: TestClient, runtime: SyncRuntime):
        response = client.patch("/api/sync/processes/members", json={"enabled": False})
        assert response.status_code == 200
        data = response.json()
        assert data["process"]["enabled"] is False
        assert data["status"]["next_run_at"] is None
        assert runtime.scheduler.get_process("members").enabled is False

    def test_change_interval(self, client: TestClient):
        response = client.patch("/api/sync/processes/assets", json={"interval_minutes": 15})
        assert response.status_code == 200
        assert response.json()["process"]["interval_minutes"] == 15

    def test_invalid_interval_rejected(self, client: TestClient):
        response = client.patch("/api/sync/processes/assets", json={"interval_minutes": 0})
        assert response.status_code == 422

    def test_toggle_process(self, client: TestClient):
        first = client.post("/api/sync/processes/members/toggle")
        second = client.post("/api/sync/processes/members/toggle")
        assert first.json()["enabled"] is False
        assert second.json()["enabled"] is True

    def test_toggle_unknown_process(self, client: TestClient):
        response = client.post("/api/sync/processes/planets/toggle")
        assert response.status_code == 404

    def test_remove_process(self, client: TestClient, runtime: SyncRuntime):
        response = client.delete("/api/sync/processes/contracts")
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert "contracts" not in runtime.scheduler.processes
        assert client.get("/api/sync/processes/contracts").status_code == 404
        assert client.delete("/api/sync/processes/contracts").status_code == 404

    def test_trigger_while_running_is_ignored(self, client: TestClient, runtime: SyncRuntime):
        runtime.state.begin_run(SyncRunRecord(process_id="members"))

        response = client.post("/api/sync/processes/members/trigger")
        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_trigger_unknown_process(self, client: TestClient):
        response = client.post("/api/sync/processes/planets/trigger")
        assert response.status_code == 404

    def test_status_lists_every_process(self, client: TestClient):
        response = client.get("/api/sync/status")
        assert response.status_code == 200
        assert len(response.json()) == 8
        assert {s["status"] for s in response.json()} == {"idle"}

    def test_error_stats_and_clear(self, client: TestClient, runtime: SyncRuntime):
        runtime.errors.record(ErrorRecord(process_id="assets", category="api", message="ESI 503"))

        stats = client.get("/api/sync/errors/stats").json()
        assert stats["total_count"] == 1
        assert stats["by_category"] == {"api": 1}

        recent = client.get("/api/sync/errors").json()
        assert recent[0]["message"] == "ESI 503"

        assert client.delete("/api/sync/errors").json()["success"] is True
        assert client.get("/api/sync/errors/stats").json()["total_count"] == 0


class TestDataEndpoints:
    """Test the unified data read path."""

    def test_sample_data_before_configuration(self, client: TestClient):
        response = client.get("/api/data/members")
        assert response.status_code == 200
        assert response.json()["provenance"] == "sample"

    def test_stored_data_after_configuration(self, client: TestClient):
        response = client.put(
            "/api/data/setup-status", json={"database_connected": True, "esi_configured": True}
        )
        assert response.status_code == 200
        assert response.json()["phase"] == "fully_configured"

        data = client.get("/api/data/members").json()
        assert data["provenance"] == "stored"
        assert data["data"] == []

    def test_setup_status(self, client: TestClient):
        response = client.get("/api/data/setup-status")
        assert response.status_code == 200
        assert response.json()["has_ever_been_green"] is False

    def test_unknown_category(self, client: TestClient):
        response = client.get("/api/data/planets")
        assert response.status_code == 400


class TestTokenEndpoints:
    """Test token status endpoints."""

    def test_unknown_token(self, client: TestClient):
        response = client.get(f"/api/tokens/{CORPORATION_ID}")
        assert response.status_code == 200
        assert response.json()["exists"] is False

    def test_stored_token_status(self, client: TestClient, runtime: SyncRuntime):
        asyncio.run(runtime.tokens.store_token(CORPORATION_ID, "access", "refresh", scopes=["a"]))

        listing = client.get("/api/tokens").json()
        assert [t["tenant_id"] for t in listing] == [CORPORATION_ID]
        assert "access_token" not in listing[0]

        response = client.post(f"/api/tokens/{CORPORATION_ID}/invalidate")
        assert response.json()["success"] is True
        assert client.get(f"/api/tokens/{CORPORATION_ID}").json()["is_valid"] is False
