"""Tests for status reconciliation: single-path, batch, and cache lifecycle.

Runs the engine against an in-memory git oracle so every upstream hash,
working-tree state, and persisted status file is under test control.
"""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from docsync.errors import DocSyncError, FileOperationError, GitCommandError
from docsync.file_tree import iter_files
from docsync.models import Project, StatusCacheEntry
from docsync.reconcile import UNREADABLE_ORIGINAL_TEXT, ReconciliationService, classify_path
from docsync.status_cache import read_status_file, status_file_path, write_status_file
from tests.fakes import FakeRepository, blob_id

UPSTREAM = "upstream/main"


class ClassifyPathTests(unittest.TestCase):
    def test_absent_upstream_is_untranslated_even_with_record(self) -> None:
        status = classify_path("docs/a.md", {}, StatusCacheEntry("translated", "h1"))
        self.assertEqual(status.status, "untranslated")
        self.assertIsNone(status.last_hash)

    def test_missing_record_is_untranslated(self) -> None:
        status = classify_path("docs/a.md", {"docs/a.md": "h1"}, None, {"docs/a.md"})
        self.assertEqual(status.status, "untranslated")
        self.assertIsNone(status.last_hash)
        self.assertTrue(status.modified)

    def test_matching_hash_is_translated(self) -> None:
        status = classify_path("docs/a.md", {"docs/a.md": "h1"}, StatusCacheEntry("outdated", "h1"))
        self.assertEqual(status.status, "translated")
        self.assertEqual(status.last_hash, "h1")

    def test_differing_hash_is_outdated_and_keeps_recorded_hash(self) -> None:
        status = classify_path("docs/a.md", {"docs/a.md": "h2"}, StatusCacheEntry("translated", "h1"))
        self.assertEqual(status.status, "outdated")
        self.assertEqual(status.last_hash, "h1")


class ReconcileTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name).resolve()
        self.repo = FakeRepository()
        self.service = ReconciliationService(repo_for=self.repo)
        self.project = Project(
            root=self.root,
            watch_directories=("docs",),
            file_types=(".md",),
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def write_local(self, rel_path: str, content: str = "translated\n") -> None:
        target = self.root / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    def record(self, branch: str, entries: dict[str, StatusCacheEntry]) -> None:
        write_status_file(status_file_path(self.root, branch), entries)


class GetStatusTests(ReconcileTestCase):
    async def test_upstream_file_without_record_is_untranslated_even_when_local_exists(self) -> None:
        self.repo.set_file(UPSTREAM, "docs/a.md", "hello\n")
        self.write_local("docs/a.md")

        status = await self.service.get_status(self.project, "docs/a.md")

        self.assertEqual(status.status, "untranslated")
        self.assertIsNone(status.last_hash)
        self.assertFalse(status_file_path(self.root, "main").exists())

    async def test_missing_upstream_file_is_untranslated(self) -> None:
        status = await self.service.get_status(self.project, "docs/missing.md")
        self.assertEqual(status.status, "untranslated")

    async def test_cached_entry_is_returned_without_upstream_calls(self) -> None:
        h1 = self.repo.set_file(UPSTREAM, "docs/a.md", "hello\n")
        self.record("main", {"docs/a.md": StatusCacheEntry("translated", h1)})
        self.repo.dirty = [(" M", "docs/a.md")]

        status = await self.service.get_status(self.project, "docs/a.md")

        self.assertEqual(status.status, "translated")
        self.assertEqual(status.last_hash, h1)
        self.assertTrue(status.modified)
        self.assertEqual(self.repo.count("file_exists_at"), 0)
        self.assertEqual(self.repo.count("blob_hash"), 0)

    async def test_backslash_paths_resolve_to_the_same_entry(self) -> None:
        h1 = self.repo.set_file(UPSTREAM, "docs/a.md", "hello\n")
        self.record("main", {"docs/a.md": StatusCacheEntry("translated", h1)})

        status = await self.service.get_status(self.project, "docs\\a.md")

        self.assertEqual(status.path, "docs/a.md")
        self.assertEqual(status.status, "translated")

    async def test_recompute_keeps_recorded_hash_when_upstream_moves(self) -> None:
        h1 = self.repo.set_file(UPSTREAM, "docs/a.md", "v1\n")
        self.record("main", {"docs/a.md": StatusCacheEntry("translated", h1)})

        unchanged = await self.service.recompute_status(self.project, "docs/a.md")
        self.assertEqual(unchanged.status, "translated")

        h2 = self.repo.set_file(UPSTREAM, "docs/a.md", "v2\n")
        changed = await self.service.recompute_status(self.project, "docs/a.md")

        self.assertEqual(changed.status, "outdated")
        self.assertEqual(changed.last_hash, h1)
        self.assertNotEqual(changed.last_hash, h2)
        cached = await self.service.get_status(self.project, "docs/a.md")
        self.assertEqual(cached.status, "outdated")

    async def test_modified_check_failure_reads_as_unmodified(self) -> None:
        self.repo.fail_status = True
        status = await self.service.get_status(self.project, "docs/a.md")
        self.assertFalse(status.modified)


class BatchReconcileTests(ReconcileTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.h_a = self.repo.set_file(UPSTREAM, "docs/a.md", "A\n")
        self.repo.set_file(UPSTREAM, "docs/b.md", "B\n")
        self.repo.set_file(UPSTREAM, "docs/sub/c.md", "C\n")
        self.repo.set_file(UPSTREAM, "other/x.md", "X\n")
        for rel_path in ("docs/a.md", "docs/b.md", "docs/sub/c.md", "docs/d.md", "other/x.md", "docs/notes.txt"):
            self.write_local(rel_path)
        self.h_old_b = blob_id("old B\n")
        self.record(
            "main",
            {
                "docs/a.md": StatusCacheEntry("translated", self.h_a),
                "docs/b.md": StatusCacheEntry("translated", self.h_old_b),
            },
        )
        self.repo.dirty = [(" M", "docs/a.md"), ("??", "other/x.md")]

    async def test_three_way_rule_from_bulk_reads(self) -> None:
        statuses, sizes = await self.service.reconcile(self.project)
        by_path = {status.path: status for status in statuses}

        self.assertEqual(sorted(by_path), ["docs/a.md", "docs/b.md", "docs/d.md", "docs/sub/c.md"])
        self.assertEqual(by_path["docs/a.md"].status, "translated")
        self.assertTrue(by_path["docs/a.md"].modified)
        self.assertEqual(by_path["docs/b.md"].status, "outdated")
        self.assertEqual(by_path["docs/b.md"].last_hash, self.h_old_b)
        self.assertEqual(by_path["docs/sub/c.md"].status, "untranslated")
        self.assertEqual(by_path["docs/d.md"].status, "untranslated")
        self.assertEqual(sizes["docs/a.md"], len("translated\n"))

    async def test_batch_issues_no_per_file_backend_calls(self) -> None:
        await self.service.get_file_tree(self.project)

        self.assertEqual(self.repo.count("bulk_list_tree"), 1)
        self.assertEqual(self.repo.count("porcelain_records"), 1)
        self.assertEqual(self.repo.count("blob_hash"), 0)
        self.assertEqual(self.repo.count("file_exists_at"), 0)

    async def test_batch_persists_recorded_entries_once(self) -> None:
        await self.service.get_file_tree(self.project)

        persisted = read_status_file(status_file_path(self.root, "main"))
        self.assertEqual(
            persisted,
            {
                "docs/a.md": StatusCacheEntry("translated", self.h_a),
                "docs/b.md": StatusCacheEntry("outdated", self.h_old_b),
            },
        )

    async def test_batch_without_recorded_entries_writes_nothing(self) -> None:
        status_file_path(self.root, "main").unlink()

        await self.service.get_file_tree(self.project)

        self.assertFalse(status_file_path(self.root, "main").exists())

    async def test_get_file_tree_twice_is_idempotent(self) -> None:
        first = [(node.path, node.status, node.last_hash) for node in iter_files(await self.service.get_file_tree(self.project))]
        second = [(node.path, node.status, node.last_hash) for node in iter_files(await self.service.get_file_tree(self.project))]
        self.assertEqual(first, second)

    async def test_tree_has_synthesized_directories(self) -> None:
        tree = await self.service.get_file_tree(self.project)

        self.assertEqual([node.name for node in tree], ["docs"])
        docs = tree[0]
        assert docs.children is not None
        self.assertEqual([node.name for node in docs.children], ["sub", "a.md", "b.md", "d.md"])
        self.assertEqual(docs.status, "untranslated")

    async def test_bulk_hash_failure_degrades_and_keeps_status_file(self) -> None:
        self.repo.fail_bulk = True
        self.repo.fail_status = True

        statuses, _sizes = await self.service.reconcile(self.project)

        self.assertEqual({status.status for status in statuses}, {"untranslated"})
        self.assertFalse(any(status.modified for status in statuses))
        persisted = read_status_file(status_file_path(self.root, "main"))
        self.assertEqual(set(persisted), {"docs/a.md", "docs/b.md"})

    async def test_upstream_hashes_are_cached_until_sync(self) -> None:
        await self.service.get_file_tree(self.project)
        self.repo.set_file(UPSTREAM, "docs/a.md", "A changed\n")

        cached, _sizes = await self.service.reconcile(self.project)
        self.assertEqual({s.path: s.status for s in cached}["docs/a.md"], "translated")

        tree = await self.service.sync_file_statuses(self.project)
        by_path = {node.path: node for node in iter_files(tree)}
        self.assertEqual(by_path["docs/a.md"].status, "outdated")
        self.assertEqual(by_path["docs/a.md"].last_hash, self.h_a)
        self.assertEqual(self.repo.count("bulk_list_tree"), 2)

    async def test_whole_project_scan_respects_ignore_file(self) -> None:
        (self.root / ".gitignore").write_text("other/\n", encoding="utf-8")
        self.write_local("README.md")
        project = Project(root=self.root, watch_directories=(".",), file_types=("md",))

        statuses, _sizes = await self.service.reconcile(project)

        paths = [status.path for status in statuses]
        self.assertIn("README.md", paths)
        self.assertNotIn("other/x.md", paths)

    async def test_branches_keep_separate_records(self) -> None:
        await self.service.get_file_tree(self.project)

        feature = self.project.with_branches(working_branch="feature/x")
        statuses, _sizes = await self.service.reconcile(feature)

        self.assertEqual({status.status for status in statuses}, {"untranslated"})
        self.assertFalse(status_file_path(self.root, "feature/x").exists())
        self.assertEqual(len(read_status_file(status_file_path(self.root, "main"))), 2)


class CacheManagementTests(ReconcileTestCase):
    async def test_clear_branch_cache_drops_records_and_upstream_hashes(self) -> None:
        h1 = self.repo.set_file(UPSTREAM, "docs/a.md", "A\n")
        self.write_local("docs/a.md")
        self.record("main", {"docs/a.md": StatusCacheEntry("translated", h1)})
        await self.service.get_file_tree(self.project)
        self.assertTrue(self.service.upstream.is_cached(self.project, "main"))

        self.service.clear_branch_cache(self.project)

        self.assertEqual(self.service.status_store.entries(self.root, "main"), {})
        self.assertFalse(self.service.upstream.is_cached(self.project, "main"))

    async def test_clear_project_cache_forgets_ignore_rules(self) -> None:
        await self.service.get_file_tree(self.project)
        self.assertIn(self.root, self.service.ignore_resolver)

        self.service.clear_project_cache(self.project)

        self.assertNotIn(self.root, self.service.ignore_resolver)

    async def test_fetch_invalidates_upstream_hashes(self) -> None:
        await self.service.get_file_tree(self.project)

        await self.service.fetch_upstream(self.project)

        self.assertEqual(self.repo.count("fetch"), 1)
        self.assertFalse(self.service.upstream.is_cached(self.project, "main"))

    async def test_fetch_failure_is_raised(self) -> None:
        self.repo.fail_fetch = True
        with self.assertRaises(GitCommandError):
            await self.service.fetch_upstream(self.project)


class BranchSwitchTests(ReconcileTestCase):
    async def test_switch_upstream_returns_new_project(self) -> None:
        switched = self.service.switch_upstream_branch(self.project, "next")
        self.assertEqual(switched.upstream_ref, "upstream/next")
        self.assertEqual(self.project.upstream_branch, "main")

    async def test_switch_working_refuses_with_uncommitted_changes(self) -> None:
        self.repo.local_branches = ["main", "zh"]
        self.repo.dirty = [(" M", "docs/a.md")]

        with self.assertRaises(DocSyncError):
            await self.service.switch_working_branch(self.project, "zh")
        self.assertEqual(self.repo.current, "main")

        switched = await self.service.switch_working_branch(self.project, "zh", force=True)
        self.assertEqual(switched.working_branch, "zh")
        self.assertEqual(self.repo.current, "zh")

    async def test_switch_to_unknown_branch_fails(self) -> None:
        with self.assertRaises(GitCommandError):
            await self.service.switch_working_branch(self.project, "nope")


class FileContentTests(ReconcileTestCase):
    async def test_content_pairs_original_with_translation(self) -> None:
        self.repo.set_file(UPSTREAM, "docs/a.md", "Hello\n")
        self.write_local("docs/a.md", "Bonjour\n")
        self.repo.dirty = [("??", "docs/a.md")]

        content = await self.service.get_file_content(self.project, "docs/a.md")

        self.assertEqual(content.original, "Hello\n")
        self.assertEqual(content.translated, "Bonjour\n")
        self.assertEqual(content.status, "untranslated")
        self.assertTrue(content.has_changes)

    async def test_missing_sides_degrade(self) -> None:
        content = await self.service.get_file_content(self.project, "docs/none.md")
        self.assertEqual(content.original, UNREADABLE_ORIGINAL_TEXT)
        self.assertEqual(content.translated, "")

    async def test_save_creates_parent_directories(self) -> None:
        await self.service.save_file_content(self.project, "docs/deep/new.md", "text\n")
        self.assertEqual((self.root / "docs/deep/new.md").read_text(encoding="utf-8"), "text\n")

    async def test_save_outside_the_project_is_refused(self) -> None:
        project = Project(root=self.root / "proj")
        project.root.mkdir()

        with self.assertRaises(FileOperationError):
            await self.service.save_file_content(project, "../escaped.md", "text\n")
        with self.assertRaises(FileOperationError):
            await self.service.save_file_content(project, "docs/../../escaped.md", "text\n")

        self.assertFalse((self.root / "escaped.md").exists())

    async def test_content_outside_the_project_reads_as_missing(self) -> None:
        project = Project(root=self.root / "proj")
        project.root.mkdir()
        (self.root / "secret.md").write_text("secret\n", encoding="utf-8")

        content = await self.service.get_file_content(project, "../secret.md")

        self.assertEqual(content.translated, "")


if __name__ == "__main__":
    unittest.main()
