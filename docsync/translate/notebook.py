"""Jupyter notebook translation: only markdown cells are sent to the backend."""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from ..errors import NotebookFormatError, TranslationError
from . import Translator

logger = logging.getLogger(__name__)

NOTEBOOK_SUFFIX = ".ipynb"
CELL_TYPES = ("markdown", "code", "raw")


@dataclass(frozen=True)
class CellError:
    cell_index: int  # 1-based
    error: str


@dataclass
class NotebookTranslationResult:
    notebook: dict[str, Any]
    translated_cells: int
    total_markdown_cells: int
    errors: list[CellError] = field(default_factory=list)


def is_notebook_file(path: str) -> bool:
    return path.lower().endswith(NOTEBOOK_SUFFIX)


def parse_notebook(content: str) -> dict[str, Any]:
    """Parse notebook JSON; requires a ``cells`` list and numeric ``nbformat``."""
    try:
        notebook = json.loads(content)
    except ValueError as exc:
        raise NotebookFormatError(f"cannot parse notebook: {exc}") from exc
    if not isinstance(notebook, dict):
        raise NotebookFormatError("cannot parse notebook: top level is not an object")
    if not isinstance(notebook.get("cells"), list):
        raise NotebookFormatError("cannot parse notebook: missing cells array")
    nbformat = notebook.get("nbformat")
    if isinstance(nbformat, bool) or not isinstance(nbformat, int):
        raise NotebookFormatError("cannot parse notebook: missing nbformat")
    return notebook


def merge_cell_source(source: object) -> str:
    if isinstance(source, list):
        return "".join(part for part in source if isinstance(part, str))
    return source if isinstance(source, str) else ""


def split_cell_source(content: str) -> list[str]:
    """Split into notebook source lines, each but the last keeping its ``\\n``."""
    if not content:
        return [""]
    lines = content.split("\n")
    return [line + "\n" for line in lines[:-1]] + [lines[-1]]


async def translate_notebook(
    content: str,
    translator: Translator,
    prompt: str | None = None,
) -> NotebookTranslationResult:
    """Translate markdown cells one by one, collecting per-cell failures."""
    notebook = parse_notebook(content)
    markdown_indices = [
        index
        for index, cell in enumerate(notebook["cells"])
        if isinstance(cell, dict) and cell.get("cell_type") == "markdown"
    ]
    translated = copy.deepcopy(notebook)
    result = NotebookTranslationResult(
        notebook=translated,
        translated_cells=0,
        total_markdown_cells=len(markdown_indices),
    )

    for index in markdown_indices:
        text = merge_cell_source(notebook["cells"][index].get("source"))
        if not text.strip():
            result.translated_cells += 1
            continue
        try:
            output = await translator.translate(text, prompt)
        except TranslationError as exc:
            logger.warning("notebook cell %d failed: %s", index + 1, exc)
            result.errors.append(CellError(cell_index=index + 1, error=str(exc)))
            continue
        translated["cells"][index]["source"] = split_cell_source(output)
        result.translated_cells += 1

    logger.info(
        "translated %d/%d markdown cells",
        result.translated_cells,
        result.total_markdown_cells,
    )
    return result


def dump_notebook(notebook: dict[str, Any]) -> str:
    return json.dumps(notebook, indent=2, ensure_ascii=False)


def validate_notebook(notebook: dict[str, Any]) -> list[str]:
    """Return structural problems; an empty list means the notebook is valid."""
    problems: list[str] = []
    cells = notebook.get("cells")
    if not isinstance(cells, list):
        problems.append("missing cells array")
    for key in ("nbformat", "nbformat_minor"):
        value = notebook.get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            problems.append(f"missing {key}")
    if not isinstance(notebook.get("metadata"), dict):
        problems.append("missing metadata")

    for number, cell in enumerate(cells if isinstance(cells, list) else [], start=1):
        if not isinstance(cell, dict) or cell.get("cell_type") not in CELL_TYPES:
            problems.append(f"cell {number} has an invalid cell_type")
            continue
        source = cell.get("source")
        if source is None:
            problems.append(f"cell {number} has no source")
        elif not isinstance(source, (list, str)):
            problems.append(f"cell {number} has an invalid source")
    return problems


__all__ = [
    "CellError",
    "NotebookTranslationResult",
    "is_notebook_file",
    "parse_notebook",
    "merge_cell_source",
    "split_cell_source",
    "translate_notebook",
    "dump_notebook",
    "validate_notebook",
]
