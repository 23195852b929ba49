"""Archive service: package a working copy into a single zip artifact."""

from __future__ import annotations

import logging
import os
import zipfile
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_PREFIXES = (".git", ".github")


class ArtifactBuilder(Protocol):
    """Turns a directory tree into a single archive file."""

    def build(self, source_dir: Path, exclude_prefixes: Sequence[str], target: Path) -> None: ...

    def size_of(self, path: Path) -> int: ...


def is_excluded(rel_path: str, exclude_prefixes: Sequence[str]) -> bool:
    """Check whether a POSIX relative path lies under one of the excluded prefixes.

    Prefixes match whole path components: ``.git`` excludes ``.git/config``
    but not ``.gitignore``.
    """
    for prefix in exclude_prefixes:
        prefix = prefix.strip("/")
        if prefix and (rel_path == prefix or rel_path.startswith(prefix + "/")):
            return True
    return False


def iter_source_files(
    source_dir: Path, exclude_prefixes: Sequence[str]
) -> Iterator[tuple[Path, str]]:
    """Yield (absolute path, archive name) for every regular file, in sorted order."""
    for root, dirs, files in os.walk(source_dir):
        root_path = Path(root)
        rel_root = root_path.relative_to(source_dir).as_posix()
        prefix = "" if rel_root == "." else rel_root + "/"
        dirs[:] = sorted(d for d in dirs if not is_excluded(prefix + d, exclude_prefixes))
        for filename in sorted(files):
            rel = prefix + filename
            if is_excluded(rel, exclude_prefixes):
                continue
            full = root_path / filename
            if not full.is_file():
                logger.debug("Skipping non-regular file %s", full)
                continue
            yield full, rel


class ZipArchiveBuilder:
    """Writes deflate-compressed zip files.

    The archive is written to a temporary sibling and renamed into place, so
    ``target`` either does not exist or is complete.
    """

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED) -> None:
        self.compression = compression

    def build(self, source_dir: Path, exclude_prefixes: Sequence[str], target: Path) -> None:
        if not source_dir.is_dir():
            msg = f"Source directory does not exist: {source_dir}"
            raise NotADirectoryError(msg)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + f".tmp-{os.getpid()}")

        file_count = 0
        try:
            with zipfile.ZipFile(
                tmp, "w", compression=self.compression, strict_timestamps=False
            ) as zf:
                for full, rel in iter_source_files(source_dir, exclude_prefixes):
                    zf.write(full, rel)
                    file_count += 1
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

        os.replace(tmp, target)
        logger.info("Wrote %s (%d files)", target.name, file_count)

    def size_of(self, path: Path) -> int:
        return path.stat().st_size
