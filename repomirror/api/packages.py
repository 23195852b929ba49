"""Package catalog endpoints, served from the catalog cache."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import RedirectResponse

from repomirror.api.deps import get_catalog_cache
from repomirror.services.catalog_cache import CatalogCache

router = APIRouter(prefix="/api/v1", tags=["packages"])

_JSON = "application/json"


@router.get("/packages")
async def list_packages(
    cache: Annotated[CatalogCache, Depends(get_catalog_cache)],
) -> Response:
    """List every package with its most recent versions."""
    return Response(content=cache.get_all_packages(), media_type=_JSON)


@router.get("/packages/{name}")
async def get_package_versions(
    name: str,
    cache: Annotated[CatalogCache, Depends(get_catalog_cache)],
) -> Response:
    """Return one package with its most recent versions."""
    return Response(content=cache.get_package(name), media_type=_JSON)


@router.get("/packages/{name}/latest")
async def get_latest_package(
    name: str,
    cache: Annotated[CatalogCache, Depends(get_catalog_cache)],
) -> RedirectResponse:
    """Redirect to the newest artifact of a package."""
    url = cache.get_latest_download_url(name)
    if url is None:
        raise HTTPException(status_code=404, detail="no versions found")
    return RedirectResponse(url, status_code=302)


@router.get("/package-list-version")
async def get_package_list_version(
    cache: Annotated[CatalogCache, Depends(get_catalog_cache)],
) -> Response:
    """Return the catalog version clients poll for changes."""
    return Response(content=cache.get_catalog_version(), media_type=_JSON)
