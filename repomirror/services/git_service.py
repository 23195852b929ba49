"""Git service: keeps local working copies of tracked repositories via the git CLI."""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from pathlib import Path

    from repomirror.config import TrackedRepository

logger = logging.getLogger(__name__)

_GIT_TIMEOUT_SECONDS = 600
_COMMIT_RE = re.compile(r"^[0-9a-f]{40}(?:[0-9a-f]{24})?$")


class SourceMirror(Protocol):
    """Keeps a working copy of a remote repository current."""

    def working_copy(self, repo: TrackedRepository) -> Path: ...

    def ensure_up_to_date(self, repo: TrackedRepository) -> None: ...

    def current_identity(self, repo: TrackedRepository) -> tuple[str, str]: ...


class GitMirror:
    """Wraps git CLI operations on working copies under ``repos_dir``.

    Every git invocation carries a timeout, so an unreachable remote fails the
    repository's pipeline instead of stalling the whole sync batch.
    """

    def __init__(self, repos_dir: Path, timeout_seconds: int = _GIT_TIMEOUT_SECONDS) -> None:
        self.repos_dir = repos_dir
        self.timeout_seconds = timeout_seconds

    def _run(
        self,
        *args: str,
        cwd: Path | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a git command, never prompting for credentials."""
        return subprocess.run(
            ["git", *args],
            cwd=cwd,
            check=True,
            capture_output=True,
            text=True,
            timeout=self.timeout_seconds,
            env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
        )

    def working_copy(self, repo: TrackedRepository) -> Path:
        return self.repos_dir / repo.name

    def ensure_up_to_date(self, repo: TrackedRepository) -> None:
        """Clone the repository if needed, otherwise fetch and hard-reset to upstream."""
        path = self.working_copy(repo)
        try:
            if (path / ".git").is_dir():
                self._update(repo, path)
            else:
                self._clone(repo, path)
        except subprocess.CalledProcessError as exc:
            logger.error(
                "Git command failed for %s (exit %d): %s",
                repo.name,
                exc.returncode,
                exc.stderr.strip() if exc.stderr else "no stderr",
            )
            raise

        if repo.lfs:
            self._lfs_pull(repo, path)

    def _clone(self, repo: TrackedRepository, path: Path) -> None:
        if path.exists():
            logger.warning("Removing incomplete working copy of %s at %s", repo.name, path)
            shutil.rmtree(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Cloning repository %s from %s", repo.name, repo.url)
        self._run("clone", "--", repo.url, str(path))

    def _update(self, repo: TrackedRepository, path: Path) -> None:
        self._run("remote", "set-url", "origin", repo.url, cwd=path)
        self._run("fetch", "--prune", "--tags", "--force", "origin", cwd=path)
        self._run("reset", "--hard", "@{upstream}", cwd=path)
        self._run("clean", "-ffdx", cwd=path)
        logger.debug("Updated working copy of %s", repo.name)

    def _lfs_pull(self, repo: TrackedRepository, path: Path) -> None:
        """Fetch LFS objects. Failure is logged and does not fail the sync."""
        try:
            self._run("lfs", "pull", cwd=path)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as exc:
            stderr = exc.stderr if isinstance(exc.stderr, str) else ""
            logger.warning("git lfs pull failed for %s: %s", repo.name, stderr.strip() or exc)
            return
        logger.info("git lfs pull succeeded for %s", repo.name)

    def current_identity(self, repo: TrackedRepository) -> tuple[str, str]:
        """Return (commit hash, tag) of the working copy's HEAD.

        The tag is the highest version-sorted tag pointing at HEAD, or "" if
        HEAD is untagged.
        """
        path = self.working_copy(repo)
        commit = self._run("rev-parse", "HEAD", cwd=path).stdout.strip()
        if not _COMMIT_RE.match(commit):
            msg = f"Unexpected commit id {commit!r} for {repo.name}"
            raise ValueError(msg)
        result = self._run("tag", "--points-at", "HEAD", "--sort=-v:refname", cwd=path)
        tags = result.stdout.split()
        return commit, tags[0] if tags else ""
