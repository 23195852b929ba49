"""Sync service: per-repository mirror -> package -> record -> retain pipeline."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from repomirror.exceptions import (
    MetadataError,
    PackagingError,
    SourceUnavailableError,
    SyncError,
)
from repomirror.models.repository import RepositoryState
from repomirror.models.version import ArtifactVersion
from repomirror.services.archive_service import DEFAULT_EXCLUDE_PREFIXES, ZipArchiveBuilder
from repomirror.services.datetime_service import now_utc
from repomirror.services.git_service import GitMirror
from repomirror.services.retention_service import (
    RETAINED_VERSIONS,
    enforce_retention,
    remove_artifact,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from pathlib import Path

    from repomirror.config import Settings, TrackedRepository
    from repomirror.services.archive_service import ArtifactBuilder
    from repomirror.services.git_service import SourceMirror
    from repomirror.services.metadata_store import MetadataStore

logger = logging.getLogger(__name__)

# Failure key for the catalog bump; repository names cannot start with "(".
CATALOG_FAILURE_KEY = "(catalog)"

_SHORT_COMMIT_LENGTH = 7


def artifact_name(repo_name: str, commit: str) -> str:
    """Return the artifact file name for a repository at a commit.

    Download URLs are derived from this name, so it must never change.
    """
    if len(commit) < _SHORT_COMMIT_LENGTH:
        msg = f"Commit id {commit!r} is shorter than {_SHORT_COMMIT_LENGTH} characters"
        raise ValueError(msg)
    return f"{repo_name}-{commit[:_SHORT_COMMIT_LENGTH]}.zip"


@dataclass
class RepoSyncResult:
    """Outcome of one successful repository pipeline."""

    name: str
    commit: str
    tag: str
    zip_file: str
    built: bool
    changed: bool
    retired: list[str] = field(default_factory=list)


@dataclass
class SyncReport:
    """Aggregated outcome of a sync run."""

    results: dict[str, RepoSyncResult] = field(default_factory=dict)
    failures: dict[str, BaseException] = field(default_factory=dict)
    catalog_version: int | None = None

    @property
    def changed(self) -> bool:
        return any(result.changed for result in self.results.values())


class NamedLocks:
    """Arena of asyncio locks keyed by repository name.

    Safe under asyncio's single-threaded cooperative model: lookup and
    creation happen without an await in between.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[name] = lock
        return lock


class SyncOrchestrator:
    """Drives the sync pipeline for every tracked repository.

    Pipelines for different repositories run concurrently; a per-name lock
    keeps two syncs of the same repository (even from overlapping
    ``sync_all`` calls) from interleaving their working-copy and store writes.
    """

    def __init__(
        self,
        repositories: Sequence[TrackedRepository],
        store: MetadataStore,
        mirror: SourceMirror,
        builder: ArtifactBuilder,
        zips_dir: Path,
        *,
        exclude_prefixes: Sequence[str] = DEFAULT_EXCLUDE_PREFIXES,
        retained_versions: int = RETAINED_VERSIONS,
    ) -> None:
        self._repos = {repo.name: repo for repo in repositories}
        self._store = store
        self._mirror = mirror
        self._builder = builder
        self._zips_dir = zips_dir
        self._exclude_prefixes = tuple(exclude_prefixes)
        self._retained_versions = retained_versions
        self._locks = NamedLocks()
        self._on_sync: Callable[[], Awaitable[None]] | None = None

    @classmethod
    def from_settings(cls, settings: Settings, store: MetadataStore) -> SyncOrchestrator:
        """Build an orchestrator backed by git and zip for the configured repositories."""
        return cls(
            settings.tracked_repositories(),
            store,
            GitMirror(settings.repos_dir, timeout_seconds=settings.git_timeout_seconds),
            ZipArchiveBuilder(),
            settings.zips_dir,
            exclude_prefixes=settings.archive_exclude,
            retained_versions=settings.retained_versions,
        )

    @property
    def repositories(self) -> list[TrackedRepository]:
        return list(self._repos.values())

    def set_on_sync_callback(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Register the coroutine run after a sync that changed the catalog."""
        self._on_sync = callback

    async def sync_all(self) -> SyncReport:
        """Sync every tracked repository concurrently.

        Bumps the catalog version at most once for the whole batch. Raises
        ``SyncError`` listing every failed repository after the successful ones
        have been published.
        """
        repos = self.repositories
        logger.info("Starting sync of %d repositories", len(repos))
        outcomes = await asyncio.gather(
            *(self._sync_repo(repo) for repo in repos), return_exceptions=True
        )

        report = SyncReport()
        for repo, outcome in zip(repos, outcomes, strict=True):
            if isinstance(outcome, RepoSyncResult):
                report.results[repo.name] = outcome
            elif isinstance(outcome, Exception):
                logger.error("Failed to sync repository %s: %s", repo.name, outcome)
                report.failures[repo.name] = outcome
            else:
                raise outcome

        return await self._finish(report)

    async def sync_repository(self, name: str) -> SyncReport:
        """Sync a single tracked repository, publishing the catalog if it changed."""
        repo = self._repos.get(name)
        if repo is None:
            msg = f"Unknown repository: {name}"
            raise ValueError(msg)

        report = SyncReport()
        try:
            report.results[name] = await self._sync_repo(repo)
        except Exception as exc:
            logger.error("Failed to sync repository %s: %s", name, exc)
            report.failures[name] = exc
        return await self._finish(report)

    async def _finish(self, report: SyncReport) -> SyncReport:
        if report.changed:
            await self._publish(report)
        else:
            logger.info("Sync finished with no catalog changes")
        if report.failures:
            raise SyncError(report.failures, report)
        return report

    async def _publish(self, report: SyncReport) -> None:
        """Bump the catalog version once and notify the post-sync callback."""
        try:
            report.catalog_version = await self._store.bump_catalog_version()
        except SQLAlchemyError as exc:
            logger.error("Failed to bump catalog version: %s", exc)
            report.failures[CATALOG_FAILURE_KEY] = exc

        if self._on_sync is None:
            return
        try:
            await self._on_sync()
        except Exception as exc:
            logger.error("Post-sync callback failed: %s", exc, exc_info=exc)
        else:
            logger.info("Post-sync callback completed")

    async def _sync_repo(self, repo: TrackedRepository) -> RepoSyncResult:
        async with self._locks.get(repo.name):
            return await self._run_pipeline(repo)

    async def _run_pipeline(self, repo: TrackedRepository) -> RepoSyncResult:
        try:
            prior = await self._store.get_repository_state(repo.name)
        except SQLAlchemyError as exc:
            raise MetadataError(repo.name, f"failed to read repository state: {exc}") from exc
        prior_commit = prior.commit_hash if prior is not None else ""
        prior_tag = prior.tag if prior is not None else ""
        last_sync = prior.last_sync if prior is not None else now_utc()

        try:
            await asyncio.to_thread(self._mirror.ensure_up_to_date, repo)
            commit, tag = await asyncio.to_thread(self._mirror.current_identity, repo)
            zip_name = artifact_name(repo.name, commit)
        except Exception as exc:
            raise SourceUnavailableError(repo.name, f"failed to update source: {exc}") from exc

        zip_path = self._zips_dir / zip_name
        built = False
        try:
            if zip_path.exists():
                logger.info("Artifact %s already exists for %s", zip_name, repo.name)
            else:
                await asyncio.to_thread(
                    self._builder.build,
                    self._mirror.working_copy(repo),
                    self._exclude_prefixes,
                    zip_path,
                )
                built = True
                last_sync = now_utc()
            size = await asyncio.to_thread(self._builder.size_of, zip_path)
        except Exception as exc:
            raise PackagingError(repo.name, f"failed to build {zip_name}: {exc}") from exc

        try:
            if prior is not None and prior_tag == tag and prior_commit != commit:
                await self._discard_moved_tag_artifact(prior, zip_name)

            repo_id = await self._store.upsert_repository_state(
                RepositoryState(
                    name=repo.name,
                    url=repo.url,
                    tag=tag,
                    commit_hash=commit,
                    last_sync=last_sync,
                    zip_file=zip_name,
                    size=size,
                )
            )
            await self._store.append_or_update_version(
                ArtifactVersion(
                    repo_id=repo_id,
                    tag=tag,
                    commit_hash=commit,
                    zip_file=zip_name,
                    size=size,
                    created_at=now_utc(),
                )
            )
            retired = await enforce_retention(
                self._store,
                repo_id,
                repo.name,
                self._zips_dir,
                keep=self._retained_versions,
                current_file=zip_name,
            )
        except SQLAlchemyError as exc:
            raise MetadataError(repo.name, f"failed to record {zip_name}: {exc}") from exc

        changed = built or prior is None or tag != prior_tag
        logger.info(
            "Repository %s synchronized at %s (tag %r, changed=%s)",
            repo.name,
            commit[:_SHORT_COMMIT_LENGTH],
            tag,
            changed,
        )
        return RepoSyncResult(
            name=repo.name,
            commit=commit,
            tag=tag,
            zip_file=zip_name,
            built=built,
            changed=changed,
            retired=[version.zip_file for version in retired],
        )

    async def _discard_moved_tag_artifact(self, prior: RepositoryState, zip_name: str) -> None:
        """Delete the artifact a moved tag pointed at before."""
        if len(prior.commit_hash) < _SHORT_COMMIT_LENGTH:
            return
        stale = artifact_name(prior.name, prior.commit_hash)
        if stale == zip_name:
            return
        if await self._store.is_artifact_referenced(prior.id, stale, exclude_tag=prior.tag):
            logger.info("Keeping %s: still referenced by another version", stale)
            return
        logger.info("Tag %r of %s moved; deleting %s", prior.tag, prior.name, stale)
        remove_artifact(self._zips_dir / stale, prior.name)


async def run_periodic_sync(orchestrator: SyncOrchestrator, interval_seconds: float) -> None:
    """Sync all repositories every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await orchestrator.sync_all()
        except SyncError as exc:
            logger.error("Periodic sync failed: %s", exc)
        else:
            logger.info("Periodic sync completed successfully")
