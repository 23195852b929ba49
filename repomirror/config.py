"""Application configuration loaded from environment variables and a repository list."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_REPO_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]*$"


class TrackedRepository(BaseModel):
    """A remote repository mirrored by the service."""

    model_config = {"frozen": True}

    name: str = Field(pattern=_REPO_NAME_PATTERN, max_length=100)
    url: str = Field(min_length=1)
    lfs: bool = False


class Settings(BaseSettings):
    """RepoMirror application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/repomirror.db"

    # Paths
    storage_dir: Path = Path("./data")
    repos_file: Path = Path("./config/repos.yaml")

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    download_base_url: str = "http://localhost:8000"

    # Sync
    sync_interval_seconds: int = Field(default=3600, ge=1)
    git_timeout_seconds: int = Field(default=600, ge=1)
    retained_versions: int = Field(default=3, ge=1)
    archive_exclude: list[str] = Field(default_factory=lambda: [".git", ".github"])
    repos: list[TrackedRepository] = Field(default_factory=list)

    # Logging
    log_level: str = "INFO"
    log_file: Path | None = None
    log_max_bytes: int = Field(default=10 * 1024 * 1024, ge=1024)
    log_backup_count: int = Field(default=5, ge=0)

    @property
    def zips_dir(self) -> Path:
        return self.storage_dir / "zips"

    @property
    def repos_dir(self) -> Path:
        return self.storage_dir / "repos"

    @property
    def assets_dir(self) -> Path:
        return self.storage_dir / "assets"

    def tracked_repositories(self) -> list[TrackedRepository]:
        """Return the configured repositories.

        Inline ``repos`` take precedence; otherwise ``repos_file`` is read if it
        exists. Duplicate names are rejected.
        """
        repos = list(self.repos)
        if not repos and self.repos_file.exists():
            repos = load_tracked_repositories(self.repos_file)

        seen: set[str] = set()
        duplicates: list[str] = []
        for repo in repos:
            if repo.name in seen:
                duplicates.append(repo.name)
            seen.add(repo.name)
        if duplicates:
            joined = ", ".join(sorted(set(duplicates)))
            raise ValueError(f"Duplicate repository names in configuration: {joined}")
        return repos


def load_tracked_repositories(path: Path) -> list[TrackedRepository]:
    """Load the ``repos:`` list from a YAML file."""
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Repository file {path} must contain a mapping")
    entries = data.get("repos") or []
    if not isinstance(entries, list):
        raise ValueError(f"'repos' in {path} must be a list")

    repos: list[TrackedRepository] = []
    for index, entry in enumerate(entries):
        try:
            repos.append(TrackedRepository.model_validate(entry))
        except ValidationError as exc:
            raise ValueError(f"Invalid repository entry #{index} in {path}: {exc}") from exc
    logger.debug("Loaded %d repositories from %s", len(repos), path)
    return repos
