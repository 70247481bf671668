"""Tests for cell-wise notebook translation."""

from __future__ import annotations

import json
import unittest

from docsync.errors import NotebookFormatError
from docsync.translate.notebook import (
    dump_notebook,
    is_notebook_file,
    parse_notebook,
    split_cell_source,
    translate_notebook,
    validate_notebook,
)
from tests.fakes import FakeTranslator


def _notebook(*cells: dict) -> str:
    return json.dumps({"cells": list(cells), "metadata": {}, "nbformat": 4, "nbformat_minor": 5})


class NotebookParsingTests(unittest.TestCase):
    def test_notebook_suffix_is_case_insensitive(self) -> None:
        self.assertTrue(is_notebook_file("docs/Intro.IPYNB"))
        self.assertFalse(is_notebook_file("docs/intro.md"))

    def test_structure_is_required(self) -> None:
        for content in ("{oops", "[]", json.dumps({"nbformat": 4}), json.dumps({"cells": []})):
            with self.subTest(content=content), self.assertRaises(NotebookFormatError):
                parse_notebook(content)

    def test_split_keeps_newlines_except_last(self) -> None:
        self.assertEqual(split_cell_source("a\nb\n"), ["a\n", "b\n", ""])
        self.assertEqual(split_cell_source("a\nb"), ["a\n", "b"])
        self.assertEqual(split_cell_source(""), [""])

    def test_validate_reports_problems(self) -> None:
        problems = validate_notebook({"cells": [{"cell_type": "widget", "source": []}, {"cell_type": "code"}]})

        self.assertIn("missing nbformat", problems)
        self.assertIn("missing metadata", problems)
        self.assertIn("cell 1 has an invalid cell_type", problems)
        self.assertIn("cell 2 has no source", problems)
        self.assertEqual(validate_notebook(json.loads(_notebook())), [])


class TranslateNotebookTests(unittest.IsolatedAsyncioTestCase):
    async def test_only_non_empty_markdown_cells_are_sent(self) -> None:
        translator = FakeTranslator()
        content = _notebook(
            {"cell_type": "markdown", "metadata": {}, "source": ["Hello\n", "world"]},
            {"cell_type": "code", "metadata": {}, "source": "x = 1", "outputs": []},
            {"cell_type": "markdown", "metadata": {}, "source": ["   "]},
        )

        result = await translate_notebook(content, translator, "prompt")

        self.assertEqual(translator.calls, [("Hello\nworld", "prompt")])
        self.assertEqual(result.total_markdown_cells, 2)
        self.assertEqual(result.translated_cells, 2)
        self.assertEqual(result.notebook["cells"][0]["source"], ["HELLO\n", "WORLD"])
        self.assertEqual(result.notebook["cells"][1]["source"], "x = 1")
        self.assertEqual(result.notebook["cells"][2]["source"], ["   "])

    async def test_cell_failures_are_collected_with_one_based_index(self) -> None:
        translator = FakeTranslator(fail_on=("bad",))
        content = _notebook(
            {"cell_type": "code", "metadata": {}, "source": []},
            {"cell_type": "markdown", "metadata": {}, "source": ["bad cell"]},
            {"cell_type": "markdown", "metadata": {}, "source": ["good cell"]},
        )

        result = await translate_notebook(content, translator)

        self.assertEqual([(error.cell_index, error.error) for error in result.errors], [(2, "backend unavailable")])
        self.assertEqual(result.translated_cells, 1)
        self.assertEqual(result.notebook["cells"][1]["source"], ["bad cell"])
        self.assertEqual(validate_notebook(json.loads(dump_notebook(result.notebook))), [])

    async def test_original_notebook_is_not_mutated(self) -> None:
        content = _notebook({"cell_type": "markdown", "metadata": {}, "source": ["hi"]})
        result = await translate_notebook(content, FakeTranslator())

        self.assertEqual(json.loads(content)["cells"][0]["source"], ["hi"])
        self.assertEqual(result.notebook["cells"][0]["source"], ["HI"])


if __name__ == "__main__":
    unittest.main()
