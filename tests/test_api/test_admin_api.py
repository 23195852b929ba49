"""Tests for the admin sync trigger and health endpoints."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from repomirror.exceptions import SyncError
from repomirror.services.sync_service import SyncOrchestrator
from tests.conftest import FakeMirror, commit_id, create_test_client

if TYPE_CHECKING:
    from repomirror.config import Settings


@pytest.fixture
def fake_mirror(test_settings: Settings) -> FakeMirror:
    mirror = FakeMirror(test_settings.repos_dir)
    mirror.set_remote("A", commit_id("abc1234"), "v1")
    return mirror


class TestAdminSync:
    async def test_loopback_client_starts_sync(
        self, test_settings: Settings, fake_mirror: FakeMirror
    ) -> None:
        async with create_test_client(test_settings, fake_mirror) as ac:
            resp = await ac.post("/admin/sync")
            assert resp.status_code == 202
            assert resp.json()["status"] == "sync started"

            packages = await ac.get("/api/v1/packages")
            [package] = packages.json()
            assert package["versions"][0]["file"] == "A-abc1234.zip"
            version = await ac.get("/api/v1/package-list-version")
            assert version.json()["version"] == 2
        assert fake_mirror.update_calls == ["A"]

    async def test_ipv6_loopback_allowed(
        self, test_settings: Settings, fake_mirror: FakeMirror
    ) -> None:
        async with create_test_client(test_settings, fake_mirror, client=("::1", 4000)) as ac:
            resp = await ac.post("/admin/sync")
        assert resp.status_code == 202

    async def test_remote_client_forbidden(
        self, test_settings: Settings, fake_mirror: FakeMirror
    ) -> None:
        async with create_test_client(
            test_settings, fake_mirror, client=("203.0.113.5", 1234)
        ) as ac:
            resp = await ac.post("/admin/sync")
        assert resp.status_code == 403
        assert fake_mirror.update_calls == []

    async def test_get_not_allowed(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings) as ac:
            resp = await ac.get("/admin/sync")
        assert resp.status_code == 405

    async def test_sync_failure_is_only_logged(
        self,
        test_settings: Settings,
        fake_mirror: FakeMirror,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        fake_mirror.failing.add("A")
        with caplog.at_level(logging.ERROR, logger="repomirror.api.admin"):
            async with create_test_client(test_settings, fake_mirror) as ac:
                resp = await ac.post("/admin/sync")
        assert resp.status_code == 202
        assert any("Manual sync failed" in r.message for r in caplog.records)

    async def test_background_failure_keeps_accepted_status(self, test_settings: Settings) -> None:
        failure = SyncError({"A": RuntimeError("offline")})
        with patch.object(SyncOrchestrator, "sync_all", side_effect=failure) as sync_all:
            async with create_test_client(test_settings) as ac:
                resp = await ac.post("/admin/sync")
        assert resp.status_code == 202
        sync_all.assert_awaited_once()


class TestHealth:
    async def test_health_ok(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings) as ac:
            resp = await ac.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["database"] == "ok"
        assert data["catalog_initialized"] is True

    async def test_health_reports_uninitialized_cache(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings, rebuild=False) as ac:
            resp = await ac.get("/api/health")
        assert resp.json()["catalog_initialized"] is False

    async def test_health_degraded_when_database_fails(self, test_settings: Settings) -> None:
        failure = OperationalError("SELECT 1", {}, Exception("unable to open database file"))
        async with create_test_client(test_settings) as ac:
            with patch("sqlalchemy.ext.asyncio.AsyncSession.execute", side_effect=failure):
                resp = await ac.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "degraded"
        assert resp.json()["database"] == "error"
