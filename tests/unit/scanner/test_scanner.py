"""Tests for candidate-file discovery under watched directories."""

from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from docsync.gitignore import load_rules
from docsync.scanner import file_sizes, normalize_extensions, scan_directories


def _touch(root: Path, rel_path: str, content: str = "x") -> None:
    target = root / rel_path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")


class ScanDirectoriesTests(unittest.TestCase):
    def test_extensions_are_normalized(self) -> None:
        self.assertEqual(normalize_extensions(["MD", ".Txt", " ", "mdx"]), frozenset({".md", ".txt", ".mdx"}))

    def test_scan_filters_extensions_and_ignored_paths(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / ".gitignore").write_text("docs/private/\n", encoding="utf-8")
            for rel_path in ("docs/a.md", "docs/B.MD", "docs/c.py", "docs/private/p.md", "docs/node_modules/n.md", "top.md"):
                _touch(root, rel_path)

            found = scan_directories(root, ["docs"], [".md"], load_rules(root))

            self.assertEqual(sorted(found), ["docs/B.MD", "docs/a.md"])

    def test_whole_project_sentinel_scans_from_root(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            _touch(root, "top.md")
            _touch(root, "guides/g.md")

            self.assertEqual(sorted(scan_directories(root, ["."], ["md"])), ["guides/g.md", "top.md"])
            self.assertEqual(sorted(scan_directories(root, [], ["md"])), ["guides/g.md", "top.md"])

    def test_overlapping_roots_list_each_path_once(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            _touch(root, "docs/sub/a.md")

            found = scan_directories(root, ["docs", "docs/sub", "docs\\sub"], [".md"])

            self.assertEqual(found, ["docs/sub/a.md"])

    def test_missing_or_ignored_start_directory_contributes_nothing(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            _touch(root, "build/out.md")

            self.assertEqual(scan_directories(root, ["nope"], [".md"]), [])
            self.assertEqual(scan_directories(root, ["build"], [".md"], load_rules(root)), [])

    def test_unreadable_subdirectory_does_not_stop_siblings(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            for rel_path in ("docs/a.md", "docs/locked/hidden.md", "docs/open/b.md", "docs/z/c.md"):
                _touch(root, rel_path)
            real_scandir = os.scandir

            def scandir(path):
                if Path(path).name == "locked":
                    raise PermissionError(13, "Permission denied", str(path))
                return real_scandir(path)

            with (
                mock.patch("docsync.scanner.os.scandir", side_effect=scandir),
                self.assertLogs("docsync.scanner", level="WARNING") as logs,
            ):
                found = scan_directories(root, ["docs"], [".md"])

            self.assertEqual(sorted(found), ["docs/a.md", "docs/open/b.md", "docs/z/c.md"])
            self.assertIn("docs/locked", "\n".join(logs.output))

    def test_status_files_are_never_candidates(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            _touch(root, ".docsync-main.json", "{}")
            _touch(root, ".docsync-feature%2Fx.json", "{}")
            _touch(root, "data.json")
            _touch(root, "docs/.docsync-notes.json")

            found = scan_directories(root, [], [".json"])

            self.assertEqual(sorted(found), ["data.json", "docs/.docsync-notes.json"])

    def test_watched_directory_outside_the_project_is_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp) / "proj"
            _touch(root, "docs/a.md")
            _touch(Path(tmp), "outside/o.md")

            self.assertEqual(scan_directories(root, ["docs", "../outside"], [".md"]), ["docs/a.md"])

    @unittest.skipIf(not hasattr(os, "symlink"), "symlinks are required")
    def test_directory_symlinks_are_not_followed(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            _touch(root, "real/a.md")
            try:
                (root / "docs").mkdir()
                (root / "docs" / "link").symlink_to(root / "real", target_is_directory=True)
            except OSError:
                self.skipTest("cannot create symlinks here")

            self.assertEqual(scan_directories(root, ["docs"], [".md"]), [])

    def test_file_sizes_skip_missing_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            _touch(root, "docs/a.md", "12345")

            self.assertEqual(file_sizes(root, ["docs/a.md", "docs/gone.md"]), {"docs/a.md": 5})


if __name__ == "__main__":
    unittest.main()
