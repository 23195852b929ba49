"""SQLAlchemy ORM models for RepoMirror."""

from repomirror.models.base import Base
from repomirror.models.catalog import CatalogVersion
from repomirror.models.repository import RepositoryState
from repomirror.models.version import Active, ArtifactVersion, Retired, VersionState

__all__ = [
    "Active",
    "ArtifactVersion",
    "Base",
    "CatalogVersion",
    "RepositoryState",
    "Retired",
    "VersionState",
]
