"""Repository state model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from repomirror.models.base import Base
from repomirror.services.datetime_service import now_utc

if TYPE_CHECKING:
    from repomirror.models.version import ArtifactVersion


class RepositoryState(Base):
    """Last synchronized state of one tracked repository.

    ``commit_hash`` is always the content identifier of the artifact named in
    ``zip_file`` at the time of the last successful write.
    """

    __tablename__ = "repos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    tag: Mapped[str] = mapped_column(Text, nullable=False, default="")
    commit_hash: Mapped[str] = mapped_column(Text, nullable=False)
    last_sync: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    zip_file: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )

    versions: Mapped[list[ArtifactVersion]] = relationship(
        back_populates="repository", cascade="all, delete-orphan"
    )
