"""Catalog version counter model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from repomirror.models.base import Base
from repomirror.services.datetime_service import now_utc

# The counter lives in a single row.
CATALOG_VERSION_ROW_ID = 1


class CatalogVersion(Base):
    """Monotonic counter bumped whenever the published artifact set changes."""

    __tablename__ = "catalog_version"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )
