"""Catalog response schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class PackageVersion(BaseModel):
    """One downloadable artifact of a package."""

    model_config = ConfigDict(populate_by_name=True)

    file: str
    size: int
    tag: str
    commit: str
    download: str
    updated_at: int = Field(alias="updatedAt")


class PackageInfo(BaseModel):
    """A tracked repository and its most recent artifacts, newest first."""

    name: str
    url: str
    versions: list[PackageVersion] = Field(default_factory=list)


class CatalogVersionResponse(BaseModel):
    """Catalog version clients poll to decide whether to refetch the package list."""

    model_config = ConfigDict(populate_by_name=True)

    version: int
    updated_at: int = Field(alias="updatedAt")
