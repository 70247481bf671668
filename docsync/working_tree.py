"""Live working-tree probes. Nothing here is cached."""

from __future__ import annotations

import asyncio
import logging

from .errors import FileOperationError, GitCommandError
from .git_backend import GitRepository
from .models import Project
from .paths import local_path, normalize_rel_path
from .upstream import RepoFactory, watched_filters

logger = logging.getLogger(__name__)


def _read_text(project: Project, path: str) -> str:
    target = local_path(project.root, path)
    for encoding in ("utf-8", "utf-8-sig"):
        try:
            return target.read_text(encoding=encoding)
        except UnicodeDecodeError:
            continue
    return target.read_bytes().decode("utf-8", errors="replace")


def _write_text(project: Project, path: str, content: str) -> None:
    target = local_path(project.root, path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")


def _under_any(path: str, prefixes: list[str]) -> bool:
    if not prefixes:
        return True
    return any(path == prefix or path.startswith(f"{prefix}/") for prefix in prefixes)


class WorkingTreeProbe:
    """Answers "is this path modified" and reads/writes working-copy files."""

    def __init__(self, repo_for: RepoFactory = GitRepository) -> None:
        self._repo_for = repo_for

    async def is_modified(self, project: Project, path: str, working_branch: str | None = None) -> bool:
        """Whether ``path`` differs from the last commit; errors read as ``False``."""
        try:
            records = await self._repo_for(project.root).porcelain_records(normalize_rel_path(path))
        except GitCommandError as exc:
            logger.warning("modified check of %s failed: %s", path, exc)
            return False
        return bool(records)

    async def modified_paths(self, project: Project) -> set[str]:
        """All modified/untracked paths under the watched directories, in one call."""
        try:
            records = await self._repo_for(project.root).porcelain_records()
        except GitCommandError as exc:
            logger.warning("working tree status failed in %s: %s", project.root, exc)
            return set()
        prefixes = watched_filters(project)
        return {path for status, path in records if status != "!!" and _under_any(path, prefixes)}

    async def exists_locally(self, project: Project, path: str) -> bool:
        try:
            target = local_path(project.root, path)
        except FileOperationError:
            return False
        return await asyncio.to_thread(target.is_file)

    async def read_local(self, project: Project, path: str) -> str:
        canonical = normalize_rel_path(path)
        try:
            return await asyncio.to_thread(_read_text, project, canonical)
        except OSError as exc:
            raise FileOperationError(f"cannot read {canonical}: {exc}", canonical) from exc

    async def write_local(self, project: Project, path: str, content: str) -> None:
        """Write ``content`` to the working copy, creating parent directories."""
        canonical = normalize_rel_path(path)
        try:
            await asyncio.to_thread(_write_text, project, canonical, content)
        except OSError as exc:
            raise FileOperationError(f"cannot write {canonical}: {exc}", canonical) from exc
        logger.info("wrote %s", canonical)


__all__ = ["WorkingTreeProbe"]
