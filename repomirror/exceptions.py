"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients.
  The global handler logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``RepositorySyncError`` subclasses: one repository's pipeline failed. They
  never abort sibling pipelines; ``sync_all`` collects them into ``SyncError``.
- ``CacheNotInitializedError`` / ``PackageNotFoundError``: catalog reads.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from repomirror.services.sync_service import SyncReport


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``repomirror/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class RepositorySyncError(Exception):
    """A single repository's sync pipeline failed."""

    def __init__(self, repo: str, message: str) -> None:
        super().__init__(message)
        self.repo = repo


class SourceUnavailableError(RepositorySyncError):
    """Clone, fetch or identity lookup failed. Nothing was written."""


class PackagingError(RepositorySyncError):
    """Building the artifact failed. Nothing was written."""


class MetadataError(RepositorySyncError):
    """A store read or write failed during the pipeline.

    Earlier writes of the same pipeline are not rolled back; the next sync
    reconciles them.
    """


class SyncError(Exception):
    """One or more repository pipelines failed during ``sync_all``."""

    def __init__(
        self,
        failures: dict[str, BaseException],
        report: SyncReport | None = None,
    ) -> None:
        details = "; ".join(f"{name}: {exc}" for name, exc in sorted(failures.items()))
        super().__init__(f"sync failed for {len(failures)} repositories: {details}")
        self.failures = failures
        self.report = report


class CacheNotInitializedError(Exception):
    """The catalog cache has not been built yet."""


class PackageNotFoundError(LookupError):
    """No package with the requested name is in the catalog."""

    def __init__(self, name: str) -> None:
        super().__init__(f"package not found: {name}")
        self.name = name
