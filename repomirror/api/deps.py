"""Shared API dependencies: DB session, catalog cache, orchestrator."""

from __future__ import annotations

import ipaddress
from collections.abc import AsyncGenerator

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from repomirror.services.catalog_cache import CatalogCache
from repomirror.services.sync_service import SyncOrchestrator


def get_catalog_cache(request: Request) -> CatalogCache:
    """Get the catalog cache from app state."""
    cache: CatalogCache = request.app.state.catalog_cache
    return cache


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Get the sync orchestrator from app state."""
    orchestrator: SyncOrchestrator = request.app.state.orchestrator
    return orchestrator


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def _is_loopback(host: str | None) -> bool:
    if host is None:
        return False
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


async def require_local(request: Request) -> None:
    """Allow only loopback clients. Raises 403 otherwise."""
    host = request.client.host if request.client is not None else None
    if not _is_loopback(host):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin endpoints are only available from localhost",
        )
