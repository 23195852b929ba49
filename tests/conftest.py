"""Shared test fixtures for RepoMirror."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from repomirror.config import Settings, TrackedRepository
from repomirror.database import create_engine
from repomirror.main import create_app, ensure_storage_dirs
from repomirror.models.base import Base
from repomirror.services.archive_service import ZipArchiveBuilder
from repomirror.services.catalog_cache import CatalogCache
from repomirror.services.metadata_store import MetadataStore
from repomirror.services.sync_service import SyncOrchestrator

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

LOOPBACK_CLIENT = ("127.0.0.1", 50000)


def commit_id(short: str) -> str:
    """Expand a short hex prefix into a full 40-character commit id."""
    return short.ljust(40, "0")


class FakeMirror:
    """In-memory source mirror whose remote identity is set by the test.

    ``ensure_up_to_date`` rewrites the working copy so that every commit has
    distinct content.
    """

    def __init__(self, repos_dir: Path) -> None:
        self.repos_dir = repos_dir
        self.identities: dict[str, tuple[str, str]] = {}
        self.failing: set[str] = set()
        self.update_calls: list[str] = []

    def set_remote(self, name: str, commit: str, tag: str = "") -> None:
        self.identities[name] = (commit, tag)

    def working_copy(self, repo: TrackedRepository) -> Path:
        return self.repos_dir / repo.name

    def ensure_up_to_date(self, repo: TrackedRepository) -> None:
        self.update_calls.append(repo.name)
        if repo.name in self.failing:
            raise RuntimeError(f"remote for {repo.name} is unreachable")
        commit, _tag = self.identities[repo.name]
        path = self.working_copy(repo)
        (path / ".git").mkdir(parents=True, exist_ok=True)
        (path / ".git" / "HEAD").write_text(commit)
        (path / "README.md").write_text(f"# {repo.name}\n\ncommit {commit}\n")
        (path / "src").mkdir(exist_ok=True)
        (path / "src" / "main.txt").write_text(repo.url)

    def current_identity(self, repo: TrackedRepository) -> tuple[str, str]:
        return self.identities[repo.name]


def make_orchestrator(
    settings: Settings,
    store: MetadataStore,
    mirror: FakeMirror,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        settings.tracked_repositories(),
        store,
        mirror,
        ZipArchiveBuilder(),
        settings.zips_dir,
        exclude_prefixes=settings.archive_exclude,
        retained_versions=settings.retained_versions,
    )


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    mirror: FakeMirror | None = None,
    *,
    rebuild: bool = True,
    sync: bool = False,
    client: tuple[str, int] = LOOPBACK_CLIENT,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (storage, DB,
    store, orchestrator, cache) because ASGITransport does not trigger it.
    The periodic sync task is not started; pass ``sync=True`` to run one
    sync of all repositories before the client is handed out.
    """
    app = create_app(settings)
    ensure_storage_dirs(settings.storage_dir)

    engine, session_factory = create_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    store = MetadataStore(session_factory)
    if mirror is None:
        mirror = FakeMirror(settings.repos_dir)
    orchestrator = make_orchestrator(settings, store, mirror)
    cache = CatalogCache(store, settings.download_base_url)
    orchestrator.set_on_sync_callback(cache.rebuild)
    app.state.store = store
    app.state.orchestrator = orchestrator
    app.state.catalog_cache = cache

    if rebuild:
        await cache.rebuild()
    if sync:
        await orchestrator.sync_all()

    async with AsyncClient(
        transport=ASGITransport(app=app, client=client),
        base_url="http://test",
    ) as ac:
        yield ac

    await engine.dispose()


@pytest.fixture
def storage_dir(tmp_path: Path) -> Path:
    """Temporary storage root with the repos/zips/assets layout."""
    root = tmp_path / "data"
    for sub in ("repos", "zips", "assets"):
        (root / sub).mkdir(parents=True)
    return root


@pytest.fixture
def test_settings(storage_dir: Path, tmp_path: Path) -> Settings:
    """Create test settings with temporary paths and one tracked repository."""
    db_path = tmp_path / "test.db"
    return Settings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        storage_dir=storage_dir,
        repos_file=tmp_path / "missing-repos.yaml",
        download_base_url="http://test",
        repos=[TrackedRepository(name="A", url="https://git.example.com/A.git")],
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine, _session_factory = create_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> MetadataStore:
    return MetadataStore(session_factory)


@pytest.fixture
def mirror(test_settings: Settings) -> FakeMirror:
    return FakeMirror(test_settings.repos_dir)


@pytest.fixture
def orchestrator(
    test_settings: Settings, store: MetadataStore, mirror: FakeMirror
) -> SyncOrchestrator:
    return make_orchestrator(test_settings, store, mirror)
