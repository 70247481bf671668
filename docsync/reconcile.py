"""Translation status reconciliation.

Combines ignore rules, directory scans, upstream blob hashes, working-tree
state, and the per-branch status records into ``FileStatus`` values.

Persistence differs per entry point:
- ``get_status`` only updates the in-memory records;
- ``get_file_tree`` writes the branch's status file once per batch;
- ``docsync.orchestrator.translate_file`` writes through immediately.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Mapping
from dataclasses import replace

from .errors import DocSyncError, FileOperationError
from .file_tree import build_file_tree
from .git_backend import GitRepository
from .gitignore import IgnoreRuleResolver
from .models import (
    STATUS_OUTDATED,
    STATUS_TRANSLATED,
    STATUS_UNTRANSLATED,
    FileContent,
    FileStatus,
    FileTreeNode,
    Project,
    StatusCacheEntry,
)
from .paths import normalize_rel_path
from .scanner import file_sizes, scan_directories
from .status_cache import StatusCacheStore
from .upstream import RepoFactory, UpstreamSnapshotReader
from .working_tree import WorkingTreeProbe

logger = logging.getLogger(__name__)

UNREADABLE_ORIGINAL_TEXT = "(upstream content unavailable)"


def classify_path(
    path: str,
    upstream_hashes: Mapping[str, str],
    recorded: StatusCacheEntry | None,
    modified_paths: Iterable[str] | set[str] = frozenset(),
) -> FileStatus:
    """Three-way status rule over bulk-read maps.

    - absent upstream, or no recorded hash: ``untranslated`` without hash;
    - recorded hash equals current upstream hash: ``translated``;
    - otherwise ``outdated``, keeping the recorded hash.
    """
    modified = path in modified_paths
    current = upstream_hashes.get(path)
    if current is None or recorded is None or not recorded.last_hash:
        return FileStatus(path=path, status=STATUS_UNTRANSLATED, modified=modified)
    if recorded.last_hash == current:
        return FileStatus(path=path, status=STATUS_TRANSLATED, modified=modified, last_hash=current)
    return FileStatus(path=path, status=STATUS_OUTDATED, modified=modified, last_hash=recorded.last_hash)


class ReconciliationService:
    """Owns every cache the engine uses; one instance per process is typical."""

    def __init__(
        self,
        repo_for: RepoFactory = GitRepository,
        *,
        ignore_resolver: IgnoreRuleResolver | None = None,
        upstream: UpstreamSnapshotReader | None = None,
        working_tree: WorkingTreeProbe | None = None,
        status_store: StatusCacheStore | None = None,
    ) -> None:
        self.repo_for = repo_for
        self.ignore_resolver = ignore_resolver or IgnoreRuleResolver()
        self.upstream = upstream or UpstreamSnapshotReader(repo_for)
        self.working_tree = working_tree or WorkingTreeProbe(repo_for)
        self.status_store = status_store or StatusCacheStore(self.upstream)
        self._loaded: set[tuple[object, str]] = set()

    # Status records

    async def load_branch(self, project: Project, working_branch: str | None = None) -> None:
        """Replace in-memory records for the branch with its persisted file."""
        branch = working_branch or project.working_branch
        self.status_store.load(project.root, branch)
        self._loaded.add((project.root.resolve(), branch))

    async def ensure_branch_loaded(self, project: Project, working_branch: str | None = None) -> None:
        branch = working_branch or project.working_branch
        if (project.root.resolve(), branch) not in self._loaded:
            await self.load_branch(project, branch)

    async def save_branch(self, project: Project, working_branch: str | None = None) -> None:
        branch = working_branch or project.working_branch
        self.status_store.save(project.root, branch)

    def record_translation(self, project: Project, path: str, upstream_hash: str, working_branch: str | None = None) -> None:
        branch = working_branch or project.working_branch
        self.status_store.put(
            project.root,
            branch,
            path,
            StatusCacheEntry(status=STATUS_TRANSLATED, last_hash=upstream_hash),
        )

    # Single path

    async def compute_status(
        self,
        project: Project,
        path: str,
        upstream_branch: str,
        last_known_hash: str | None,
    ) -> FileStatus:
        """Fresh status for one path against ``upstream/<upstream_branch>``.

        ``modified`` is left ``False``; callers merge the live value.
        """
        canonical = normalize_rel_path(path)
        ref = project.with_branches(upstream_branch=upstream_branch).upstream_ref
        if not await self.upstream.exists_at(project, ref, canonical):
            return FileStatus(path=canonical)
        if not last_known_hash:
            # A local file at this path is not evidence of a translation.
            return FileStatus(path=canonical)

        current = await self.upstream.file_hash(project, canonical, ref)
        if current is not None and current == last_known_hash:
            return FileStatus(path=canonical, status=STATUS_TRANSLATED, last_hash=current)
        return FileStatus(path=canonical, status=STATUS_OUTDATED, last_hash=last_known_hash)

    async def get_status(
        self,
        project: Project,
        path: str,
        upstream_branch: str | None = None,
        working_branch: str | None = None,
    ) -> FileStatus:
        """Status for one path; cached records are returned with live ``modified``."""
        upstream_branch = upstream_branch or project.upstream_branch
        working_branch = working_branch or project.working_branch
        canonical = normalize_rel_path(path)
        await self.ensure_branch_loaded(project, working_branch)

        modified = await self.working_tree.is_modified(project, canonical, working_branch)
        cached = self.status_store.get(project.root, working_branch, canonical)
        if cached is not None:
            return FileStatus(path=canonical, status=cached.status, modified=modified, last_hash=cached.last_hash)

        status = await self.compute_status(project, canonical, upstream_branch, None)
        entry = status.cache_entry()
        if entry is not None:
            self.status_store.put(project.root, working_branch, canonical, entry)
        return status.with_modified(modified)

    async def recompute_status(
        self,
        project: Project,
        path: str,
        upstream_branch: str | None = None,
        working_branch: str | None = None,
    ) -> FileStatus:
        """Bypass the fast path: re-check the recorded hash against upstream now."""
        upstream_branch = upstream_branch or project.upstream_branch
        working_branch = working_branch or project.working_branch
        canonical = normalize_rel_path(path)
        await self.ensure_branch_loaded(project, working_branch)

        recorded = self.status_store.get(project.root, working_branch, canonical)
        status = await self.compute_status(
            project,
            canonical,
            upstream_branch,
            recorded.last_hash if recorded is not None else None,
        )
        entry = status.cache_entry()
        if entry is not None:
            self.status_store.put(project.root, working_branch, canonical, entry)
        modified = await self.working_tree.is_modified(project, canonical, working_branch)
        return status.with_modified(modified)

    # Batch

    async def reconcile(
        self,
        project: Project,
        root_dirs: Iterable[str] | None = None,
        extensions: Iterable[str] | None = None,
        upstream_branch: str | None = None,
        working_branch: str | None = None,
    ) -> tuple[list[FileStatus], dict[str, int]]:
        """Compute statuses for every scanned path from three bulk reads.

        Returns ``(statuses, sizes)`` with statuses sorted by path. Persists the
        branch's status file once when any path is translated or outdated.
        """
        started = time.monotonic()
        upstream_branch = upstream_branch or project.upstream_branch
        working_branch = working_branch or project.working_branch
        scoped = replace(
            project,
            upstream_branch=upstream_branch,
            working_branch=working_branch,
            watch_directories=tuple(root_dirs) if root_dirs is not None else project.watch_directories,
            file_types=tuple(extensions) if extensions is not None else project.file_types,
        )

        await self.load_branch(scoped, working_branch)
        rules = self.ignore_resolver.rules_for(scoped.root)
        paths = await asyncio.to_thread(
            scan_directories,
            scoped.root,
            scoped.watch_directories,
            scoped.file_types,
            rules,
        )
        paths.sort()
        logger.info("scanned %d candidate files under %s", len(paths), scoped.root)

        upstream_hashes, modified_paths, sizes = await asyncio.gather(
            self.upstream.bulk_hashes(scoped, upstream_branch),
            self.working_tree.modified_paths(scoped),
            asyncio.to_thread(file_sizes, scoped.root, paths),
        )

        statuses: list[FileStatus] = []
        has_recorded = False
        for path in paths:
            recorded = self.status_store.get(scoped.root, working_branch, path)
            status = classify_path(path, upstream_hashes, recorded, modified_paths)
            entry = status.cache_entry()
            if entry is not None:
                self.status_store.put(scoped.root, working_branch, path, entry)
                has_recorded = True
            statuses.append(status)

        if has_recorded:
            await self.save_branch(scoped, working_branch)

        logger.info(
            "reconciled %d files for %s @ %s in %.0fms",
            len(statuses),
            scoped.root,
            working_branch,
            (time.monotonic() - started) * 1000.0,
        )
        return statuses, sizes

    async def get_file_tree(
        self,
        project: Project,
        root_dirs: Iterable[str] | None = None,
        extensions: Iterable[str] | None = None,
        upstream_branch: str | None = None,
        working_branch: str | None = None,
    ) -> list[FileTreeNode]:
        statuses, sizes = await self.reconcile(project, root_dirs, extensions, upstream_branch, working_branch)
        return build_file_tree(statuses, sizes)

    async def sync_file_statuses(
        self,
        project: Project,
        root_dirs: Iterable[str] | None = None,
        extensions: Iterable[str] | None = None,
        upstream_branch: str | None = None,
        working_branch: str | None = None,
    ) -> list[FileTreeNode]:
        """Drop this branch's records and upstream hashes, then rebuild the tree."""
        upstream_branch = upstream_branch or project.upstream_branch
        working_branch = working_branch or project.working_branch
        self.status_store.drop_branch_entries(project.root, working_branch)
        self.upstream.invalidate(project.root, upstream_branch)
        return await self.get_file_tree(project, root_dirs, extensions, upstream_branch, working_branch)

    # Cache management

    def clear_project_cache(self, project: Project) -> None:
        self.status_store.clear_project(project.root)
        self.upstream.invalidate_project(project.root)
        self.ignore_resolver.clear(project.root)
        resolved = project.root.resolve()
        self._loaded = {key for key in self._loaded if key[0] != resolved}

    def clear_branch_cache(
        self,
        project: Project,
        working_branch: str | None = None,
        upstream_branch: str | None = None,
    ) -> None:
        working_branch = working_branch or project.working_branch
        upstream_branch = upstream_branch or project.upstream_branch
        self.status_store.clear_branch(project.root, working_branch, upstream_branch)
        self._loaded.discard((project.root.resolve(), working_branch))

    # Content

    async def get_file_content(self, project: Project, path: str) -> FileContent:
        """Upstream original beside the local translation for the editor view."""
        canonical = normalize_rel_path(path)
        status = await self.get_status(project, canonical)
        try:
            original = await self.upstream.read_at(project, project.upstream_ref, canonical)
        except FileOperationError as exc:
            logger.warning("%s", exc)
            original = UNREADABLE_ORIGINAL_TEXT
        translated = ""
        if await self.working_tree.exists_locally(project, canonical):
            try:
                translated = await self.working_tree.read_local(project, canonical)
            except FileOperationError as exc:
                logger.warning("%s", exc)
        return FileContent(
            original=original,
            translated=translated,
            status=status.status,
            has_changes=status.modified,
        )

    async def save_file_content(self, project: Project, path: str, content: str) -> None:
        await self.working_tree.write_local(project, path, content)

    # Branch workflow

    async def fetch_upstream(self, project: Project, remote: str = "upstream") -> None:
        await self.repo_for(project.root).fetch(remote)
        self.upstream.invalidate_project(project.root)

    def switch_upstream_branch(self, project: Project, branch: str) -> Project:
        self.clear_branch_cache(project, project.working_branch, project.upstream_branch)
        return project.with_branches(upstream_branch=branch)

    async def switch_working_branch(self, project: Project, branch: str, force: bool = False) -> Project:
        """Check out ``branch``; refuses on uncommitted changes unless ``force``."""
        repo = self.repo_for(project.root)
        if not force and await repo.has_uncommitted_changes():
            raise DocSyncError(
                "working tree has uncommitted changes; commit or stash them, or switch with force"
            )
        self.clear_branch_cache(project, project.working_branch, project.upstream_branch)
        await repo.checkout(branch)
        return project.with_branches(working_branch=branch)


__all__ = [
    "UNREADABLE_ORIGINAL_TEXT",
    "classify_path",
    "ReconciliationService",
]
