"""Path normalization at the git/filesystem boundary.

Inside the engine every tracked path is a canonical relative POSIX string
(``docs/guide/a.md``). Paths are normalized here when they arrive from git or
from the user, and converted back only when touching the host filesystem.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath

from .errors import FileOperationError

WHOLE_PROJECT_SENTINELS = frozenset({"", ".", "/", "./"})


def normalize_rel_path(raw: str | Path) -> str:
    """Return canonical ``a/b/c`` form for a project-relative path.

    Backslashes become forward slashes, ``.`` segments and leading/trailing
    separators are dropped. Returns ``""`` for the project root itself.
    """
    text = str(raw).replace("\\", "/")
    parts = [part for part in text.split("/") if part not in ("", ".")]
    return "/".join(parts)


def to_git_path(rel_path: str) -> str:
    """Return the pathspec form git expects for a canonical path."""
    return normalize_rel_path(rel_path)


def escapes_root(rel_path: str | Path) -> bool:
    """Whether a relative path climbs above the project root via ``..``."""
    return ".." in normalize_rel_path(rel_path).split("/")


def local_path(root: Path, rel_path: str) -> Path:
    """Resolve a canonical relative path to a host filesystem path under ``root``.

    Raises ``FileOperationError`` for paths with a ``..`` segment.
    """
    canonical = normalize_rel_path(rel_path)
    if escapes_root(canonical):
        raise FileOperationError(f"path {canonical} is outside the project", canonical)
    if not canonical:
        return root
    return root.joinpath(*canonical.split("/"))


def path_depth(rel_path: str) -> int:
    """Number of segments in a canonical path (``a/b.md`` -> 2)."""
    canonical = normalize_rel_path(rel_path)
    return len(canonical.split("/")) if canonical else 0


def parent_path(rel_path: str) -> str:
    """Canonical parent of ``rel_path`` or ``""`` for top-level entries."""
    parent = PurePosixPath(normalize_rel_path(rel_path)).parent.as_posix()
    return "" if parent == "." else parent


def is_whole_project(root_dirs: list[str] | tuple[str, ...]) -> bool:
    """Return whether a watch-directory list means "scan the whole project"."""
    if not root_dirs:
        return True
    return len(root_dirs) == 1 and str(root_dirs[0]).strip() in WHOLE_PROJECT_SENTINELS


__all__ = [
    "WHOLE_PROJECT_SENTINELS",
    "normalize_rel_path",
    "to_git_path",
    "local_path",
    "escapes_root",
    "path_depth",
    "parent_path",
    "is_whole_project",
]
