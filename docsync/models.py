"""Domain datatypes for projects, file statuses, and persisted cache entries."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path

STATUS_TRANSLATED = "translated"
STATUS_OUTDATED = "outdated"
STATUS_UNTRANSLATED = "untranslated"

FILE_STATES = (STATUS_TRANSLATED, STATUS_OUTDATED, STATUS_UNTRANSLATED)
RECORDED_STATES = frozenset({STATUS_TRANSLATED, STATUS_OUTDATED})

UPSTREAM_REMOTE = "upstream"


def is_recorded_state(status: str) -> bool:
    """Return whether ``status`` is one the status cache persists."""
    return status in RECORDED_STATES


@dataclass(frozen=True)
class Project:
    """Immutable per-call view of one configured repository."""

    root: Path
    upstream_branch: str = "main"
    working_branch: str = "main"
    watch_directories: tuple[str, ...] = ()
    file_types: tuple[str, ...] = (".md",)
    custom_prompt: str | None = None

    @property
    def upstream_ref(self) -> str:
        return f"{UPSTREAM_REMOTE}/{self.upstream_branch}"

    def with_branches(
        self,
        *,
        upstream_branch: str | None = None,
        working_branch: str | None = None,
    ) -> "Project":
        return replace(
            self,
            upstream_branch=upstream_branch if upstream_branch is not None else self.upstream_branch,
            working_branch=working_branch if working_branch is not None else self.working_branch,
        )


@dataclass(frozen=True)
class StatusCacheEntry:
    """Persisted translation record: status plus the upstream hash translated against."""

    status: str
    last_hash: str


@dataclass(frozen=True)
class FileStatus:
    """Reconciled status of one tracked path.

    ``last_hash`` is absent exactly when ``status`` is ``untranslated``.
    ``modified`` reflects the live working tree and is never persisted.
    """

    path: str
    status: str = STATUS_UNTRANSLATED
    modified: bool = False
    last_hash: str | None = None

    def with_modified(self, modified: bool) -> "FileStatus":
        return replace(self, modified=modified)

    def cache_entry(self) -> StatusCacheEntry | None:
        if not is_recorded_state(self.status) or self.last_hash is None:
            return None
        return StatusCacheEntry(status=self.status, last_hash=self.last_hash)


@dataclass(frozen=True)
class FileContent:
    """Original upstream text beside the local translation for one path."""

    original: str
    translated: str
    status: str
    has_changes: bool


@dataclass
class FileTreeNode:
    """Display node: files carry real status, directories only children."""

    name: str
    path: str
    status: str = STATUS_UNTRANSLATED
    modified: bool = False
    last_hash: str | None = None
    size: int | None = None
    children: list["FileTreeNode"] | None = field(default=None)

    @property
    def is_dir(self) -> bool:
        return self.children is not None


__all__ = [
    "STATUS_TRANSLATED",
    "STATUS_OUTDATED",
    "STATUS_UNTRANSLATED",
    "FILE_STATES",
    "RECORDED_STATES",
    "UPSTREAM_REMOTE",
    "is_recorded_state",
    "Project",
    "StatusCacheEntry",
    "FileStatus",
    "FileContent",
    "FileTreeNode",
]
