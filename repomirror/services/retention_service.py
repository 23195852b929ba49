"""Retention policy: bound the number of downloadable artifacts per repository."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, TypeVar

from repomirror.models.version import Active

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from pathlib import Path

    from repomirror.models.version import ArtifactVersion
    from repomirror.services.metadata_store import MetadataStore

logger = logging.getLogger(__name__)

RETAINED_VERSIONS = 3


class _Ordered(Protocol):
    id: int
    created_at: datetime


_V = TypeVar("_V", bound=_Ordered)


def split_retained(
    versions: Sequence[_V], keep: int = RETAINED_VERSIONS
) -> tuple[list[_V], list[_V]]:
    """Split versions into (kept, older) by recency.

    Recency is ``created_at`` descending with ties broken by insertion order
    (higher id is newer).
    """
    ordered = sorted(versions, key=lambda v: (v.created_at, v.id), reverse=True)
    return ordered[:keep], ordered[keep:]


def remove_artifact(path: Path, repo_name: str) -> bool:
    """Delete an artifact file, best-effort. Returns True if a file was removed."""
    try:
        path.unlink()
    except FileNotFoundError:
        logger.debug("Artifact %s for %s already absent", path.name, repo_name)
        return False
    except OSError as exc:
        logger.warning("Failed to delete artifact %s for %s: %s", path, repo_name, exc)
        return False
    logger.info("Deleted artifact %s for %s", path.name, repo_name)
    return True


async def enforce_retention(
    store: MetadataStore,
    repo_id: int,
    repo_name: str,
    zips_dir: Path,
    keep: int = RETAINED_VERSIONS,
    *,
    current_file: str | None = None,
) -> list[ArtifactVersion]:
    """Retire every active version beyond the ``keep`` most recent ones.

    A lone untagged placeholder left over is not a real release and is kept.
    Files still used by another active version of the repository stay on disk.
    A version whose file is ``current_file`` (the artifact the repository
    state points at) is never retired. Returns the retired versions.
    """
    candidates = await store.list_retirement_candidates(repo_id, keep)
    if len(candidates) == 1 and candidates[0].is_placeholder:
        logger.debug("Keeping untagged placeholder version of %s", repo_name)
        return []

    retired: list[ArtifactVersion] = []
    for version in candidates:
        state = version.state
        if isinstance(state, Active) and state.file == current_file:
            logger.warning(
                "Not retiring %s of %s: %s is the current artifact",
                version.tag or "<untagged>",
                repo_name,
                state.file,
            )
            continue
        if isinstance(state, Active) and not await store.is_artifact_referenced(
            repo_id, state.file, exclude_tag=version.tag
        ):
            remove_artifact(zips_dir / state.file, repo_name)
        await store.mark_version_deleted(version.id)
        retired.append(version)

    if retired:
        logger.info(
            "Retired %d old versions of %s: %s",
            len(retired),
            repo_name,
            ", ".join(v.tag or "<untagged>" for v in retired),
        )
    return retired
