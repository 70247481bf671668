"""Translate-and-record for single files and bounded batches."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .errors import DocSyncError, NotebookFormatError, TranslationError
from .models import Project
from .paths import normalize_rel_path
from .reconcile import ReconciliationService
from .translate import Translator, fallback_translate
from .translate.notebook import (
    CellError,
    dump_notebook,
    is_notebook_file,
    translate_notebook,
    validate_notebook,
)

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3


@dataclass(frozen=True)
class TranslationOutcome:
    """What ``translate_file`` wrote.

    ``fallback`` marks content produced by the phrase-substitution fallback
    rather than the translate backend.
    """

    path: str
    upstream_hash: str | None
    fallback: bool = False
    cell_errors: tuple[CellError, ...] = ()


@dataclass(frozen=True)
class BatchResult:
    path: str
    ok: bool
    error: str | None = None
    outcome: TranslationOutcome | None = None


ProgressCallback = Callable[[str, BatchResult], None]


class TranslationOrchestrator:
    def __init__(
        self,
        service: ReconciliationService,
        translator: Translator,
        *,
        allow_fallback: bool = True,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self.service = service
        self.translator = translator
        self.allow_fallback = allow_fallback
        self.concurrency = max(1, concurrency)

    async def _translate_content(
        self,
        project: Project,
        path: str,
        original: str,
    ) -> tuple[str, bool, tuple[CellError, ...]]:
        prompt = project.custom_prompt
        try:
            if is_notebook_file(path):
                result = await translate_notebook(original, self.translator, prompt)
                problems = validate_notebook(result.notebook)
                if problems:
                    raise NotebookFormatError(f"{path}: " + "; ".join(problems))
                return dump_notebook(result.notebook), False, tuple(result.errors)
            return await self.translator.translate(original, prompt), False, ()
        except NotebookFormatError:
            raise
        except TranslationError as exc:
            if not self.allow_fallback:
                raise
            logger.warning("translate backend failed for %s, writing fallback text: %s", path, exc)
            return fallback_translate(original), True, ()

    async def translate_file(
        self,
        project: Project,
        path: str,
        upstream_branch: str | None = None,
        working_branch: str | None = None,
    ) -> TranslationOutcome:
        """Translate ``path`` from upstream, write it, and record it as translated.

        The branch's status file is written immediately. Unreadable upstream
        content raises ``FileOperationError``.
        """
        upstream_branch = upstream_branch or project.upstream_branch
        working_branch = working_branch or project.working_branch
        canonical = normalize_rel_path(path)
        ref = project.with_branches(upstream_branch=upstream_branch).upstream_ref

        original = await self.service.upstream.read_at(project, ref, canonical)
        content, fallback, cell_errors = await self._translate_content(project, canonical, original)
        await self.service.working_tree.write_local(project, canonical, content)

        upstream_hash = await self.service.upstream.file_hash(project, canonical, ref)
        if upstream_hash:
            await self.service.ensure_branch_loaded(project, working_branch)
            self.service.record_translation(project, canonical, upstream_hash, working_branch)
            await self.service.save_branch(project, working_branch)
        else:
            logger.warning("no upstream hash for %s at %s; status not recorded", canonical, ref)

        logger.info("translated %s%s", canonical, " (fallback)" if fallback else "")
        return TranslationOutcome(
            path=canonical,
            upstream_hash=upstream_hash,
            fallback=fallback,
            cell_errors=cell_errors,
        )

    async def translate_batch(
        self,
        project: Project,
        paths: Iterable[str],
        concurrency: int | None = None,
        on_progress: ProgressCallback | None = None,
        upstream_branch: str | None = None,
        working_branch: str | None = None,
    ) -> dict[str, BatchResult]:
        """Translate every distinct path once with at most ``concurrency`` in flight.

        Failures are recorded per path and never stop sibling workers.
        """
        pending = list(dict.fromkeys(normalize_rel_path(path) for path in paths))
        queue: asyncio.Queue[str] = asyncio.Queue()
        for path in pending:
            queue.put_nowait(path)
        results: dict[str, BatchResult] = {}

        async def worker() -> None:
            while True:
                try:
                    path = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    outcome = await self.translate_file(project, path, upstream_branch, working_branch)
                    result = BatchResult(path=path, ok=True, outcome=outcome)
                except DocSyncError as exc:
                    logger.warning("translating %s failed: %s", path, exc)
                    result = BatchResult(path=path, ok=False, error=str(exc))
                except Exception as exc:
                    logger.exception("unexpected failure translating %s", path)
                    result = BatchResult(path=path, ok=False, error=f"{type(exc).__name__}: {exc}")
                results[path] = result
                if on_progress is not None:
                    on_progress(path, result)

        limit = max(1, concurrency if concurrency is not None else self.concurrency)
        workers = [asyncio.create_task(worker()) for _ in range(min(limit, len(pending)))]
        await asyncio.gather(*workers)
        logger.info(
            "batch translated %d/%d files",
            sum(1 for result in results.values() if result.ok),
            len(pending),
        )
        return results


__all__ = [
    "DEFAULT_CONCURRENCY",
    "TranslationOutcome",
    "BatchResult",
    "TranslationOrchestrator",
]
