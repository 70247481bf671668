"""Ignore-aware path filtering for project scans.

Builds a matcher from the project's ``.gitignore`` plus built-in patterns.
Scanners use this to skip version-control metadata, dependency caches, and
build output before extension filtering.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path

import pathspec

from .paths import normalize_rel_path

logger = logging.getLogger(__name__)

IGNORE_FILE_NAME = ".gitignore"
IGNORE_RULES_CACHE_MAX = 64

# Used when the project has no readable ignore file.
DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    ".git/",
    ".svn/",
    ".hg/",
    "node_modules/",
    "bower_components/",
    "__pycache__/",
    ".venv/",
    "venv/",
    ".DS_Store",
    "Thumbs.db",
    "*.swp",
    "*~",
    ".idea/",
    ".vscode/",
    "dist/",
    "build/",
    "out/",
    ".next/",
    "*.log",
    ".env",
    ".env.*",
)

# Applied on top of a user-supplied ignore file.
ALWAYS_IGNORED_PATTERNS: tuple[str, ...] = (
    ".git/",
    "node_modules/",
    "__pycache__/",
    ".DS_Store",
    "Thumbs.db",
    ".idea/",
    ".vscode/",
)


@dataclass(frozen=True)
class IgnoreRules:
    """Resolved ignore patterns for one project root."""

    root: Path
    patterns: tuple[str, ...]
    from_file: bool
    spec: pathspec.PathSpec

    def is_ignored(self, rel_path: str, is_dir: bool = False) -> bool:
        """Return whether project-relative ``rel_path`` is excluded.

        Directory-only patterns (``build/``) match only when ``is_dir`` is set
        or when the path lies below such a directory.
        """
        canonical = normalize_rel_path(rel_path)
        if not canonical:
            return False
        if is_dir and self.spec.match_file(f"{canonical}/"):
            return True
        return self.spec.match_file(canonical)


def _build_rules(root: Path, patterns: list[str], from_file: bool) -> IgnoreRules:
    return IgnoreRules(
        root=root,
        patterns=tuple(patterns),
        from_file=from_file,
        spec=pathspec.PathSpec.from_lines("gitwildmatch", patterns),
    )


def _read_ignore_file(path: Path) -> list[str] | None:
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    lines: list[str] = []
    for raw in text.splitlines():
        line = raw.rstrip()
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        lines.append(line)
    return lines


def load_rules(root: Path) -> IgnoreRules:
    """Load ignore rules for ``root`` without caching.

    A missing or unreadable ignore file falls back to
    ``DEFAULT_IGNORE_PATTERNS``; otherwise the file's patterns are combined
    with ``ALWAYS_IGNORED_PATTERNS``.
    """
    root = root.resolve()
    file_patterns = _read_ignore_file(root / IGNORE_FILE_NAME)
    if file_patterns is None:
        logger.debug("no readable %s under %s, using default rules", IGNORE_FILE_NAME, root)
        return _build_rules(root, list(DEFAULT_IGNORE_PATTERNS), from_file=False)

    patterns = [*ALWAYS_IGNORED_PATTERNS, *file_patterns]
    return _build_rules(root, patterns, from_file=True)


class IgnoreRuleResolver:
    """Per-root cache of ``IgnoreRules``; entries live until explicitly cleared."""

    def __init__(self, max_entries: int = IGNORE_RULES_CACHE_MAX) -> None:
        self._max_entries = max(1, max_entries)
        self._cache: OrderedDict[Path, IgnoreRules] = OrderedDict()

    def rules_for(self, root: Path) -> IgnoreRules:
        key = root.resolve()
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return cached

        rules = load_rules(key)
        self._cache[key] = rules
        self._cache.move_to_end(key)
        while len(self._cache) > self._max_entries:
            self._cache.popitem(last=False)
        return rules

    def clear(self, root: Path | None = None) -> None:
        """Forget cached rules for ``root``, or for every project when omitted."""
        if root is None:
            self._cache.clear()
            return
        self._cache.pop(root.resolve(), None)

    def __contains__(self, root: Path) -> bool:
        return root.resolve() in self._cache


__all__ = [
    "IGNORE_FILE_NAME",
    "DEFAULT_IGNORE_PATTERNS",
    "ALWAYS_IGNORED_PATTERNS",
    "IgnoreRules",
    "IgnoreRuleResolver",
    "load_rules",
]
