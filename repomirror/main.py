"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from repomirror import __version__
from repomirror.api.admin import router as admin_router
from repomirror.api.health import router as health_router
from repomirror.api.packages import router as packages_router
from repomirror.config import Settings
from repomirror.database import create_engine
from repomirror.exceptions import (
    CacheNotInitializedError,
    InternalServerError,
    PackageNotFoundError,
)
from repomirror.models.base import Base
from repomirror.services.catalog_cache import CatalogCache
from repomirror.services.metadata_store import MetadataStore
from repomirror.services.sync_service import SyncOrchestrator, run_periodic_sync

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _configure_logging(settings: Settings) -> None:
    """Configure application logging."""
    level = logging.DEBUG if settings.debug else settings.log_level.upper()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file is not None:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                settings.log_file,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backup_count,
                encoding="utf-8",
            )
        )
    logging.basicConfig(level=level, format=_LOG_FORMAT, handlers=handlers, force=True)
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


def ensure_storage_dirs(storage_dir: Path) -> None:
    """Create the storage layout (``repos``, ``zips``, ``assets``) if missing."""
    if storage_dir.exists() and not storage_dir.is_dir():
        msg = f"Storage path exists but is not a directory: {storage_dir}"
        raise NotADirectoryError(msg)

    for sub in ("repos", "zips", "assets"):
        path = storage_dir / sub
        if not path.exists():
            path.mkdir(parents=True)
            logger.info("Created storage directory: %s", path)


def _sqlite_path(database_url: str) -> Path | None:
    if not database_url.startswith("sqlite") or "///" not in database_url:
        return None
    db_path = database_url.split("///", 1)[-1]
    if not db_path or db_path == ":memory:":
        return None
    return Path(db_path)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    _configure_logging(settings)
    logger.info("Starting RepoMirror (debug=%s)", settings.debug)

    try:
        ensure_storage_dirs(settings.storage_dir)
    except Exception as exc:
        logger.critical(
            "Failed to initialize storage directory at %s: %s.", settings.storage_dir, exc
        )
        raise

    db_path = _sqlite_path(settings.database_url)
    if db_path is not None:
        db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    store = MetadataStore(session_factory)
    try:
        orchestrator = SyncOrchestrator.from_settings(settings, store)
    except ValueError as exc:
        logger.critical("Invalid repository configuration: %s", exc)
        raise
    logger.info("Tracking %d repositories", len(orchestrator.repositories))

    cache = CatalogCache(
        store,
        settings.download_base_url,
        versions_per_package=settings.retained_versions,
    )
    orchestrator.set_on_sync_callback(cache.rebuild)
    app.state.store = store
    app.state.orchestrator = orchestrator
    app.state.catalog_cache = cache

    try:
        await cache.rebuild()
    except SQLAlchemyError as exc:
        logger.error("Initial catalog cache build failed: %s", exc)

    sync_task = asyncio.create_task(
        run_periodic_sync(orchestrator, settings.sync_interval_seconds),
        name="periodic-sync",
    )
    app.state.sync_task = sync_task

    yield

    sync_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sync_task

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("RepoMirror stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="RepoMirror",
        description="Mirrors git repositories and serves versioned zip artifacts",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings

    app.include_router(health_router)
    app.include_router(packages_router)
    app.include_router(admin_router)

    # Global exception handlers

    @app.exception_handler(CacheNotInitializedError)
    async def cache_not_initialized_handler(
        request: Request, exc: CacheNotInitializedError
    ) -> JSONResponse:
        logger.error("Catalog cache not initialized in %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Cache not initialized"},
        )

    @app.exception_handler(PackageNotFoundError)
    async def package_not_found_handler(
        request: Request, exc: PackageNotFoundError
    ) -> JSONResponse:
        logger.info("Package not found in %s %s: %s", request.method, request.url.path, exc.name)
        return JSONResponse(
            status_code=404,
            content={"detail": "package not found"},
        )

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(
            status_code=422,
            content={"detail": message},
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable"},
        )

    # Directories are created in the lifespan, after the app is built.
    app.mount(
        "/zips",
        StaticFiles(directory=str(settings.zips_dir), check_dir=False),
        name="zips",
    )
    app.mount(
        "/assets",
        StaticFiles(directory=str(settings.assets_dir), check_dir=False),
        name="assets",
    )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "repomirror.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
