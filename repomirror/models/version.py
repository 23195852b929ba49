"""Artifact version history model."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from repomirror.models.base import Base
from repomirror.services.datetime_service import now_utc

if TYPE_CHECKING:
    from repomirror.models.repository import RepositoryState


@dataclass(frozen=True)
class Active:
    """The version's artifact file is published."""

    file: str


@dataclass(frozen=True)
class Retired:
    """The version was removed by retention; its file is gone."""


VersionState = Active | Retired


class ArtifactVersion(Base):
    """Append-only history entry for one (repository, tag) pair.

    Rows are never deleted. Retention flips ``deleted`` and removes the file;
    use ``state`` rather than reading ``zip_file`` directly.
    """

    __tablename__ = "versions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repo_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("repos.id", ondelete="CASCADE"), nullable=False
    )
    tag: Mapped[str] = mapped_column(Text, nullable=False, default="")
    commit_hash: Mapped[str] = mapped_column(Text, nullable=False)
    zip_file: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    repository: Mapped[RepositoryState] = relationship(back_populates="versions")

    __table_args__ = (
        UniqueConstraint("repo_id", "tag", name="uq_versions_repo_tag"),
        Index("idx_versions_repo_id", "repo_id"),
        Index("idx_versions_created_at", "created_at"),
    )

    @property
    def state(self) -> VersionState:
        if self.deleted:
            return Retired()
        return Active(file=self.zip_file)

    @property
    def is_placeholder(self) -> bool:
        """Untagged entry recorded before the repository had any tag."""
        return self.tag == ""
