"""Upstream snapshot reads: bulk blob hashes and per-path content at a ref."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from .errors import FileOperationError, GitCommandError
from .git_backend import GitRepository
from .models import Project
from .paths import is_whole_project, normalize_rel_path

logger = logging.getLogger(__name__)

RepoFactory = Callable[[Path], GitRepository]


def watched_filters(project: Project) -> list[str]:
    """Pathspec filters for the project's watched directories (empty = whole tree)."""
    dirs = list(project.watch_directories)
    if is_whole_project(dirs):
        return []
    return [normalize_rel_path(item) for item in dirs if normalize_rel_path(item)]


class UpstreamSnapshotReader:
    """Reads ``upstream/<branch>`` and caches bulk hash maps per ``(root, branch, filters)``."""

    def __init__(self, repo_for: RepoFactory = GitRepository) -> None:
        self._repo_for = repo_for
        self._hashes: dict[tuple[Path, str, tuple[str, ...]], dict[str, str]] = {}

    def _key(self, project: Project, upstream_branch: str) -> tuple[Path, str, tuple[str, ...]]:
        return (project.root.resolve(), upstream_branch, tuple(watched_filters(project)))

    def is_cached(self, project: Project, upstream_branch: str) -> bool:
        return self._key(project, upstream_branch) in self._hashes

    async def bulk_hashes(self, project: Project, upstream_branch: str | None = None) -> dict[str, str]:
        """Return ``path -> blob hash`` for every blob upstream under the watched dirs.

        Backend failures degrade to an empty map, which is not cached so the
        next call retries.
        """
        branch = upstream_branch or project.upstream_branch
        key = self._key(project, branch)
        cached = self._hashes.get(key)
        if cached is not None:
            logger.debug("upstream hash cache hit for %s @ %s", key[0], branch)
            return cached

        ref = project.with_branches(upstream_branch=branch).upstream_ref
        try:
            entries = await self._repo_for(project.root).bulk_list_tree(ref, watched_filters(project))
        except GitCommandError as exc:
            logger.warning("bulk hash read of %s failed in %s: %s", ref, project.root, exc)
            return {}

        hashes = {path: blob for path, blob in entries}
        self._hashes[key] = hashes
        logger.info("loaded %d upstream hashes from %s", len(hashes), ref)
        return hashes

    async def read_at(self, project: Project, ref: str, path: str) -> str:
        """Return text of ``path`` at ``ref``; raises ``FileOperationError`` when unreadable."""
        canonical = normalize_rel_path(path)
        try:
            data = await self._repo_for(project.root).read_file_at(ref, canonical)
        except GitCommandError as exc:
            raise FileOperationError(f"cannot read {canonical} at {ref}: {exc}", canonical) from exc
        return data.decode("utf-8", errors="replace")

    async def exists_at(self, project: Project, ref: str, path: str) -> bool:
        try:
            return await self._repo_for(project.root).file_exists_at(ref, normalize_rel_path(path))
        except GitCommandError as exc:
            logger.warning("existence check of %s at %s failed: %s", path, ref, exc)
            return False

    async def file_hash(self, project: Project, path: str, ref: str) -> str | None:
        """Blob id of ``path`` at ``ref``; same identity as the bulk listing."""
        try:
            return await self._repo_for(project.root).blob_hash(ref, normalize_rel_path(path))
        except GitCommandError as exc:
            logger.warning("hash lookup of %s at %s failed: %s", path, ref, exc)
            return None

    async def last_commit(self, project: Project, path: str, ref: str) -> str | None:
        """Id of the last commit on ``ref`` that touched ``path``, or ``None``."""
        try:
            return await self._repo_for(project.root).last_commit_hash(ref, normalize_rel_path(path))
        except GitCommandError as exc:
            logger.warning("commit lookup of %s at %s failed: %s", path, ref, exc)
            return None

    def invalidate(self, root: Path, upstream_branch: str) -> None:
        resolved = root.resolve()
        for key in [key for key in self._hashes if key[0] == resolved and key[1] == upstream_branch]:
            del self._hashes[key]

    def invalidate_project(self, root: Path) -> None:
        resolved = root.resolve()
        for key in [key for key in self._hashes if key[0] == resolved]:
            del self._hashes[key]


__all__ = [
    "RepoFactory",
    "UpstreamSnapshotReader",
    "watched_filters",
]
