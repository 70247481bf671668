"""Pure construction of the display tree from flat file statuses."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Iterator, Mapping
from pathlib import PurePosixPath

from .models import FILE_STATES, STATUS_UNTRANSLATED, FileStatus, FileTreeNode
from .paths import normalize_rel_path, parent_path, path_depth


def _sort_nodes(nodes: list[FileTreeNode]) -> None:
    """Sort directories before files and then by lowercase name, recursively."""
    nodes.sort(key=lambda node: (not node.is_dir, node.name.lower(), node.name))
    for node in nodes:
        if node.children:
            _sort_nodes(node.children)


def build_file_tree(
    statuses: Iterable[FileStatus],
    sizes: Mapping[str, int] | None = None,
) -> list[FileTreeNode]:
    """Turn flat ``FileStatus`` records into a forest of ``FileTreeNode``.

    Records are inserted shallowest first so parents exist before children.
    Missing ancestors at any depth are synthesized as directory nodes whose
    ``status`` is always ``untranslated``.
    """
    records = sorted(
        ((normalize_rel_path(status.path), status) for status in statuses),
        key=lambda item: (path_depth(item[0]), item[0]),
    )
    forest: list[FileTreeNode] = []
    directories: dict[str, FileTreeNode] = {}

    def ensure_directory(rel_dir: str) -> list[FileTreeNode]:
        """Return the child list for ``rel_dir``, creating ancestors as needed."""
        if not rel_dir:
            return forest
        existing = directories.get(rel_dir)
        if existing is not None:
            assert existing.children is not None
            return existing.children
        siblings = ensure_directory(parent_path(rel_dir))
        node = FileTreeNode(
            name=PurePosixPath(rel_dir).name,
            path=rel_dir,
            status=STATUS_UNTRANSLATED,
            children=[],
        )
        siblings.append(node)
        directories[rel_dir] = node
        return node.children

    seen: set[str] = set()
    for rel_path, status in records:
        if not rel_path or rel_path in seen:
            continue
        seen.add(rel_path)
        siblings = ensure_directory(parent_path(rel_path))
        siblings.append(
            FileTreeNode(
                name=PurePosixPath(rel_path).name,
                path=rel_path,
                status=status.status,
                modified=status.modified,
                last_hash=status.last_hash,
                size=sizes.get(rel_path) if sizes is not None else None,
            )
        )

    _sort_nodes(forest)
    return forest


def iter_files(nodes: Iterable[FileTreeNode]) -> Iterator[FileTreeNode]:
    """Yield file (leaf) nodes depth-first."""
    for node in nodes:
        if node.is_dir:
            yield from iter_files(node.children or [])
        else:
            yield node


def count_statuses(nodes: Iterable[FileTreeNode]) -> dict[str, int]:
    """Count leaf statuses; every known state is present in the result."""
    counts = Counter(node.status for node in iter_files(nodes))
    return {state: counts.get(state, 0) for state in FILE_STATES}


__all__ = [
    "build_file_tree",
    "iter_files",
    "count_statuses",
]
