"""Catalog cache: serialized package documents served without touching the database."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic import TypeAdapter

from repomirror.exceptions import CacheNotInitializedError, PackageNotFoundError
from repomirror.models.version import Active
from repomirror.schemas.catalog import CatalogVersionResponse, PackageInfo, PackageVersion
from repomirror.services.datetime_service import epoch_seconds
from repomirror.services.retention_service import RETAINED_VERSIONS

if TYPE_CHECKING:
    from repomirror.models.version import ArtifactVersion
    from repomirror.services.metadata_store import MetadataStore

logger = logging.getLogger(__name__)

_PACKAGE_LIST = TypeAdapter(list[PackageInfo])


@dataclass(frozen=True)
class CatalogSnapshot:
    """Everything readers see, built in one pass."""

    packages: bytes
    package_documents: dict[str, bytes]
    latest_downloads: dict[str, str | None]
    version_document: bytes
    version: int


def download_url(base_url: str, zip_file: str) -> str:
    """Public URL of an artifact served from the ``/zips`` mount."""
    return f"{base_url.rstrip('/')}/zips/{zip_file}"


class CatalogCache:
    """Read-optimized catalog, replaced wholesale on every rebuild.

    Thread-safety: readers take a single reference to the current snapshot
    and never see a partially built one, because ``rebuild`` assembles the new
    snapshot completely before assigning it. Rebuilds are serialized with an
    asyncio lock. Readers must run on the event loop thread.
    """

    def __init__(
        self,
        store: MetadataStore,
        download_base_url: str,
        versions_per_package: int = RETAINED_VERSIONS,
    ) -> None:
        self._store = store
        self._download_base_url = download_base_url
        self._versions_per_package = versions_per_package
        self._snapshot: CatalogSnapshot | None = None
        self._rebuild_lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._snapshot is not None

    async def rebuild(self) -> None:
        """Rebuild every cached document from the metadata store."""
        async with self._rebuild_lock:
            packages: list[PackageInfo] = []
            for repo in await self._store.list_all_repositories():
                versions = await self._store.list_versions(
                    repo.id, self._versions_per_package, include_retired=False
                )
                packages.append(
                    PackageInfo(
                        name=repo.name,
                        url=repo.url,
                        versions=self._version_entries(versions),
                    )
                )

            catalog = await self._store.current_catalog_version()
            version_doc = CatalogVersionResponse(
                version=catalog.version,
                updated_at=epoch_seconds(catalog.updated_at),
            )

            self._snapshot = CatalogSnapshot(
                packages=_PACKAGE_LIST.dump_json(packages, by_alias=True),
                package_documents={
                    package.name: package.model_dump_json(by_alias=True).encode()
                    for package in packages
                },
                latest_downloads={
                    package.name: package.versions[0].download if package.versions else None
                    for package in packages
                },
                version_document=version_doc.model_dump_json(by_alias=True).encode(),
                version=catalog.version,
            )
        logger.info(
            "Catalog cache rebuilt: %d packages at version %d", len(packages), catalog.version
        )

    def _version_entries(self, versions: list[ArtifactVersion]) -> list[PackageVersion]:
        entries: list[PackageVersion] = []
        for version in versions:
            state = version.state
            if not isinstance(state, Active):
                continue
            entries.append(
                PackageVersion(
                    file=state.file,
                    size=version.size,
                    tag=version.tag,
                    commit=version.commit_hash,
                    download=download_url(self._download_base_url, state.file),
                    updated_at=epoch_seconds(version.created_at),
                )
            )
        return entries

    def _current(self) -> CatalogSnapshot:
        snapshot = self._snapshot
        if snapshot is None:
            raise CacheNotInitializedError("Cache not initialized")
        return snapshot

    def get_all_packages(self) -> bytes:
        """Serialized list of every package."""
        return self._current().packages

    def get_package(self, name: str) -> bytes:
        """Serialized document of one package. Raises PackageNotFoundError if unknown."""
        document = self._current().package_documents.get(name)
        if document is None:
            raise PackageNotFoundError(name)
        return document

    def get_latest_download_url(self, name: str) -> str | None:
        """Download URL of the newest artifact, or None if the package has none."""
        latest = self._current().latest_downloads
        if name not in latest:
            raise PackageNotFoundError(name)
        return latest[name]

    def get_catalog_version(self) -> bytes:
        """Serialized catalog version document."""
        return self._current().version_document

    def get_catalog_version_number(self) -> int:
        return self._current().version
