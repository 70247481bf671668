"""Filesystem scanning for candidate documentation files."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from .gitignore import IgnoreRules
from .paths import escapes_root, is_whole_project, local_path, normalize_rel_path
from .status_cache import is_status_file_name

logger = logging.getLogger(__name__)


def normalize_extensions(extensions: Iterable[str]) -> frozenset[str]:
    """Lowercase extensions and ensure each has a leading dot."""
    normalized: set[str] = set()
    for raw in extensions:
        ext = str(raw).strip().lower()
        if not ext:
            continue
        normalized.add(ext if ext.startswith(".") else f".{ext}")
    return frozenset(normalized)


def _has_accepted_extension(name: str, extensions: frozenset[str]) -> bool:
    suffix = os.path.splitext(name)[1].lower()
    return bool(suffix) and suffix in extensions


def _scan_directory(
    root: Path,
    rel_dir: str,
    extensions: frozenset[str],
    rules: IgnoreRules | None,
    out: list[str],
) -> None:
    """Depth-first walk appending accepted files below ``rel_dir``."""
    directory = local_path(root, rel_dir)
    try:
        with os.scandir(directory) as entries:
            children = list(entries)
    except OSError as exc:
        logger.warning("cannot scan directory %s: %s", rel_dir or ".", exc)
        return

    for child in children:
        rel_child = f"{rel_dir}/{child.name}" if rel_dir else child.name
        try:
            is_dir = child.is_dir(follow_symlinks=False)
        except OSError:
            is_dir = False

        if rules is not None and rules.is_ignored(rel_child, is_dir=is_dir):
            continue
        if is_dir:
            _scan_directory(root, rel_child, extensions, rules, out)
            continue

        try:
            is_file = child.is_file()
        except OSError:
            is_file = False
        if not rel_dir and is_status_file_name(child.name):
            continue
        if is_file and _has_accepted_extension(child.name, extensions):
            out.append(rel_child)


def scan_directories(
    root: Path,
    root_dirs: Iterable[str],
    extensions: Iterable[str],
    rules: IgnoreRules | None = None,
) -> list[str]:
    """Return project-relative paths of accepted files under ``root_dirs``.

    An empty ``root_dirs`` (or a single whole-project sentinel) scans from
    ``root``. Unreadable directories contribute no files, and the status files
    docsync keeps at the project root are never listed. The result carries no
    ordering guarantee; a path reachable from two overlapping roots is listed
    once.
    """
    root = root.resolve()
    accepted = normalize_extensions(extensions)
    dirs = [str(item) for item in root_dirs]
    if is_whole_project(dirs):
        start_dirs = [""]
    else:
        start_dirs = [normalize_rel_path(item) for item in dirs]

    found: list[str] = []
    for rel_dir in start_dirs:
        if escapes_root(rel_dir):
            logger.warning("skipping watched directory outside the project: %s", rel_dir)
            continue
        if rel_dir and rules is not None and rules.is_ignored(rel_dir, is_dir=True):
            continue
        _scan_directory(root, rel_dir, accepted, rules, found)

    return list(dict.fromkeys(found))


def file_sizes(root: Path, rel_paths: Iterable[str]) -> dict[str, int]:
    """Bulk ``stat`` of working-copy files; paths that fail are omitted."""
    sizes: dict[str, int] = {}
    for rel_path in rel_paths:
        try:
            sizes[rel_path] = int(local_path(root, rel_path).stat().st_size)
        except OSError:
            continue
    return sizes


__all__ = [
    "normalize_extensions",
    "scan_directories",
    "file_sizes",
]
