"""
Integration Tests - Snapshot API

Drives the snapshot router over the in-memory database with httpx.
"""
from typing import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from snapshot_engine.database.connection import get_read_session
from snapshot_engine.engine import SnapshotStore
from snapshot_engine.serving.api.routes import snapshots_router
from snapshot_engine.serving.api.routes.snapshots import get_rebuild_session_factory

pytestmark = pytest.mark.integration

PREFIX = "/api/v1/snapshots"


@pytest.fixture
def api_app(session_factory, rebuild_lock) -> FastAPI:
    app = FastAPI()
    app.include_router(snapshots_router, prefix=PREFIX)
    app.state.rebuild_lock = rebuild_lock

    async def read_session_override():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_read_session] = read_session_override
    app.dependency_overrides[get_rebuild_session_factory] = lambda: session_factory
    return app


@pytest.fixture
async def client(api_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=api_app), base_url="http://test") as client:
        yield client


class TestCalculatingAnswer:
    """Tests for reads before the first snapshot is published"""

    @pytest.mark.parametrize(
        "path",
        [
            "inventory/metadata",
            "inventory/overview",
            "inventory/products",
            "customers/metadata",
            "customers/overview",
            "customers",
        ],
    )
    async def test_unpublished_snapshot(self, client, seeded_organization, path):
        response = await client.get(f"{PREFIX}/{seeded_organization}/{path}")

        assert response.status_code == 200
        assert response.json() == {"status": "calculating"}

    async def test_ready_after_rebuild(self, client, seeded_organization):
        rebuilt = await client.post(f"{PREFIX}/{seeded_organization}/inventory/rebuild")
        response = await client.get(f"{PREFIX}/{seeded_organization}/inventory/products")

        assert rebuilt.status_code == 200
        assert rebuilt.json()["generation"] == 1
        assert rebuilt.json()["rows"] == 3

        body = response.json()
        assert body["status"] == "ready"
        assert body["metadata"]["generation"] == 1
        assert body["total"] == 3
        assert [item["product_id"] for item in body["items"]] == ["prod-1", "prod-2", "prod-3"]


class TestRebuildTrigger:
    """Tests for the rebuild endpoints"""

    async def test_inverted_window(self, client, session_factory, seeded_organization):
        response = await client.post(
            f"{PREFIX}/{seeded_organization}/customers/rebuild",
            json={"window_start": "2025-06-30T00:00:00", "window_end": "2025-06-01T00:00:00"},
        )

        assert response.status_code == 422
        async with session_factory() as session:
            assert await SnapshotStore(session).get_snapshot_metadata(seeded_organization, "customers") is None

    async def test_lease_held(self, client, rebuild_lock, seeded_organization):
        async with rebuild_lock.hold(seeded_organization, "inventory"):
            response = await client.post(f"{PREFIX}/{seeded_organization}/inventory/rebuild")

        assert response.status_code == 409
        assert "already running" in response.json()["detail"]

    async def test_lease_backend_missing(self, api_app, client, seeded_organization):
        del api_app.state.rebuild_lock

        response = await client.post(f"{PREFIX}/{seeded_organization}/inventory/rebuild")

        assert response.status_code == 503
