"""Tests for application startup, storage layout and global exception handlers."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from repomirror.config import Settings, TrackedRepository
from repomirror.exceptions import InternalServerError
from repomirror.main import _configure_logging, cli_entry, create_app, ensure_storage_dirs

if TYPE_CHECKING:
    from pathlib import Path


def test_creates_storage_layout(tmp_path: Path) -> None:
    storage = tmp_path / "data"

    ensure_storage_dirs(storage)

    assert (storage / "repos").is_dir()
    assert (storage / "zips").is_dir()
    assert (storage / "assets").is_dir()


def test_keeps_existing_files(tmp_path: Path) -> None:
    storage = tmp_path / "data"
    (storage / "zips").mkdir(parents=True)
    (storage / "zips" / "A-abc1234.zip").write_bytes(b"zip")

    ensure_storage_dirs(storage)

    assert (storage / "zips" / "A-abc1234.zip").read_bytes() == b"zip"


def test_rejects_file_as_storage_dir(tmp_path: Path) -> None:
    storage = tmp_path / "data"
    storage.write_text("not a directory")

    with pytest.raises(NotADirectoryError):
        ensure_storage_dirs(storage)


def test_configure_logging_adds_rotating_file(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "repomirror.log"
    settings = Settings(_env_file=None, log_file=log_file, log_max_bytes=4096)
    root = logging.getLogger()
    saved = root.handlers[:], root.level
    try:
        _configure_logging(settings)
        rotating = [h for h in root.handlers if isinstance(h, RotatingFileHandler)]
        assert len(rotating) == 1
        assert rotating[0].maxBytes == 4096
        assert rotating[0].backupCount == 5
        logging.getLogger("repomirror.test").info("hello log file")
        rotating[0].flush()
        assert "hello log file" in log_file.read_text()
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers, level = saved
        root.setLevel(level)


async def test_lifespan_initializes_state(tmp_path: Path) -> None:
    settings = Settings(
        _env_file=None,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'db' / 'test.db'}",
        storage_dir=tmp_path / "data",
        repos=[TrackedRepository(name="A", url="https://git.example.com/A.git")],
        sync_interval_seconds=3600,
    )
    app = create_app(settings)

    with patch("repomirror.main._configure_logging"):
        async with app.router.lifespan_context(app):
            assert (tmp_path / "db" / "test.db").exists()
            assert (tmp_path / "data" / "zips").is_dir()
            assert [r.name for r in app.state.orchestrator.repositories] == ["A"]
            assert app.state.catalog_cache.is_initialized
            assert app.state.catalog_cache.get_catalog_version_number() == 1
            sync_task = app.state.sync_task
            assert not sync_task.done()

    assert sync_task.cancelled()


async def test_lifespan_rejects_duplicate_repositories(tmp_path: Path) -> None:
    settings = Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        storage_dir=tmp_path / "data",
        repos=[
            TrackedRepository(name="A", url="u1"),
            TrackedRepository(name="A", url="u2"),
        ],
    )
    app = create_app(settings)

    with patch("repomirror.main._configure_logging"):
        with pytest.raises(ValueError, match="Duplicate repository names"):
            async with app.router.lifespan_context(app):
                pass


class TestGlobalExceptionHandlers:
    """Global exception handlers return structured JSON instead of crashing."""

    async def test_operational_error_returns_503(self, tmp_path: Path) -> None:
        app = create_app(Settings(_env_file=None, storage_dir=tmp_path))

        @app.get("/test-operational-error")
        async def _raise() -> None:
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.get("/test-operational-error")
        assert resp.status_code == 503
        assert resp.json()["detail"] == "Database temporarily unavailable"

    async def test_internal_server_error_hides_details(self, tmp_path: Path) -> None:
        app = create_app(Settings(_env_file=None, storage_dir=tmp_path))

        @app.get("/test-internal-error")
        async def _raise() -> None:
            raise InternalServerError("catalog row vanished at /secret/path")

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.get("/test-internal-error")
        assert resp.status_code == 500
        assert resp.json() == {"detail": "Internal server error"}

    async def test_value_error_returns_422(self, tmp_path: Path) -> None:
        app = create_app(Settings(_env_file=None, storage_dir=tmp_path))

        @app.get("/test-value-error")
        async def _raise() -> None:
            raise ValueError("Unknown repository: nope")

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.get("/test-value-error")
        assert resp.status_code == 422
        assert resp.json()["detail"] == "Unknown repository: nope"


class TestCreateApp:
    def test_docs_disabled_outside_debug(self, tmp_path: Path) -> None:
        app = create_app(Settings(_env_file=None, storage_dir=tmp_path))
        assert app.docs_url is None

    def test_docs_enabled_in_debug(self, tmp_path: Path) -> None:
        app = create_app(Settings(_env_file=None, debug=True, storage_dir=tmp_path))
        assert app.docs_url == "/docs"

    def test_cli_entry_runs_uvicorn(self) -> None:
        with patch("uvicorn.run") as run:
            cli_entry()
        assert run.call_args.args == ("repomirror.main:app",)
        assert run.call_args.kwargs["port"] == 8000
