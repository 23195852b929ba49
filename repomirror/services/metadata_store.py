"""Metadata store: repository state, artifact version history and the catalog counter.

Every operation opens its own session and commits before returning, so
pipelines for different repositories can call into the store concurrently.
Upserts and the counter bump are single ``INSERT ... ON CONFLICT`` statements;
callers that write for the same repository are serialized by the orchestrator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from repomirror.exceptions import InternalServerError
from repomirror.models.catalog import CATALOG_VERSION_ROW_ID, CatalogVersion
from repomirror.models.repository import RepositoryState
from repomirror.models.version import ArtifactVersion
from repomirror.services.datetime_service import ensure_utc, now_utc
from repomirror.services.retention_service import RETAINED_VERSIONS, split_retained

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogVersionInfo:
    """Current catalog version and when it last changed."""

    version: int
    updated_at: datetime


class MetadataStore:
    """Query contract over the repos/versions/catalog_version tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ── Repository state ─────────────────────────────

    async def get_repository_state(self, name: str) -> RepositoryState | None:
        """Return the stored state for ``name``, or None if it was never synced."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(RepositoryState).where(RepositoryState.name == name)
            )
            return result.scalar_one_or_none()

    async def upsert_repository_state(self, state: RepositoryState) -> int:
        """Insert or update the row keyed by ``state.name``. Returns its id."""
        now = now_utc()
        stmt = sqlite_insert(RepositoryState).values(
            name=state.name,
            url=state.url,
            tag=state.tag,
            commit_hash=state.commit_hash,
            last_sync=state.last_sync,
            zip_file=state.zip_file,
            size=state.size,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["name"],
            set_={
                "url": stmt.excluded.url,
                "tag": stmt.excluded.tag,
                "commit_hash": stmt.excluded.commit_hash,
                "last_sync": stmt.excluded.last_sync,
                "zip_file": stmt.excluded.zip_file,
                "size": stmt.excluded.size,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(RepositoryState.id)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            repo_id = result.scalar_one()
            await session.commit()
        state.id = repo_id
        return repo_id

    async def list_all_repositories(self) -> list[RepositoryState]:
        """Return all repository rows ordered by name."""
        async with self._session_factory() as session:
            result = await session.execute(select(RepositoryState).order_by(RepositoryState.name))
            return list(result.scalars().all())

    # ── Version history ──────────────────────────────

    async def append_or_update_version(self, version: ArtifactVersion) -> int:
        """Record a packaged artifact for (repo_id, tag).

        An existing row for the same tag is re-pointed at the new commit, file
        and size, and becomes active again if retention had retired it. A row
        that moved to another commit or came back from retirement takes the new
        ``created_at`` so it ranks as the newest version; re-recording the same
        commit leaves ``created_at`` unchanged.
        """
        stmt = sqlite_insert(ArtifactVersion).values(
            repo_id=version.repo_id,
            tag=version.tag,
            commit_hash=version.commit_hash,
            zip_file=version.zip_file,
            size=version.size,
            created_at=version.created_at or now_utc(),
            deleted=False,
        )
        # SET expressions see the row as it was before the update.
        repackaged = or_(
            ArtifactVersion.commit_hash != stmt.excluded.commit_hash,
            ArtifactVersion.deleted.is_(True),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["repo_id", "tag"],
            set_={
                "created_at": case(
                    (repackaged, stmt.excluded.created_at), else_=ArtifactVersion.created_at
                ),
                "commit_hash": stmt.excluded.commit_hash,
                "zip_file": stmt.excluded.zip_file,
                "size": stmt.excluded.size,
                "deleted": False,
            },
        ).returning(ArtifactVersion.id)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            version_id = result.scalar_one()
            await session.commit()
        version.id = version_id
        return version_id

    async def list_versions(
        self,
        repo_id: int,
        limit: int | None = None,
        *,
        include_retired: bool = True,
    ) -> list[ArtifactVersion]:
        """Return versions of a repository, newest first."""
        stmt = select(ArtifactVersion).where(ArtifactVersion.repo_id == repo_id)
        if not include_retired:
            stmt = stmt.where(ArtifactVersion.deleted.is_(False))
        stmt = stmt.order_by(ArtifactVersion.created_at.desc(), ArtifactVersion.id.desc())
        if limit is not None and limit > 0:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_retirement_candidates(
        self, repo_id: int, keep: int = RETAINED_VERSIONS
    ) -> list[ArtifactVersion]:
        """Return active versions beyond the ``keep`` most recent ones."""
        active = await self.list_versions(repo_id, include_retired=False)
        _kept, candidates = split_retained(active, keep)
        return candidates

    async def mark_version_deleted(self, version_id: int) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(ArtifactVersion)
                .where(ArtifactVersion.id == version_id)
                .values(deleted=True)
            )
            await session.commit()

    async def is_artifact_referenced(
        self, repo_id: int, zip_file: str, *, exclude_tag: str | None = None
    ) -> bool:
        """Check whether an active version other than ``exclude_tag`` uses ``zip_file``."""
        stmt = (
            select(func.count())
            .select_from(ArtifactVersion)
            .where(
                ArtifactVersion.repo_id == repo_id,
                ArtifactVersion.zip_file == zip_file,
                ArtifactVersion.deleted.is_(False),
            )
        )
        if exclude_tag is not None:
            stmt = stmt.where(ArtifactVersion.tag != exclude_tag)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one() > 0

    # ── Catalog version ──────────────────────────────

    async def bump_catalog_version(self) -> int:
        """Increment the catalog version and return the new value.

        The first bump creates the counter at 1.
        """
        now = now_utc()
        stmt = sqlite_insert(CatalogVersion).values(
            id=CATALOG_VERSION_ROW_ID, version=1, updated_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={"version": CatalogVersion.version + 1, "updated_at": now},
        ).returning(CatalogVersion.version)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            version = result.scalar_one()
            await session.commit()
        logger.info("Catalog version is now %d", version)
        return version

    async def current_catalog_version(self) -> CatalogVersionInfo:
        """Return the catalog version, initializing the counter at 1 if absent."""
        init = (
            sqlite_insert(CatalogVersion)
            .values(id=CATALOG_VERSION_ROW_ID, version=1, updated_at=now_utc())
            .on_conflict_do_nothing(index_elements=["id"])
        )
        async with self._session_factory() as session:
            inserted = await session.execute(init)
            if inserted.rowcount:
                logger.info("Initialized catalog version at 1")
            row = await session.get(CatalogVersion, CATALOG_VERSION_ROW_ID)
            await session.commit()
        if row is None:
            raise InternalServerError("Catalog version row missing after initialization")
        return CatalogVersionInfo(version=row.version, updated_at=ensure_utc(row.updated_at))
