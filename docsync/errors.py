"""Exception hierarchy shared across docsync modules.

Degradable reads never raise these past the reconciliation engine. Hard
single-operation failures (reading upstream content to translate, writing a
local file, committing, checking out) do.
"""

from __future__ import annotations

from collections.abc import Sequence


class DocSyncError(Exception):
    """Base class for every error docsync raises on purpose."""


class GitCommandError(DocSyncError):
    """A git invocation failed, timed out, or could not be started."""

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] = (),
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = tuple(command)
        self.returncode = returncode
        self.stderr = stderr

    def __str__(self) -> str:
        base = super().__str__()
        detail = self.stderr.strip()
        if detail and detail not in base:
            return f"{base}: {detail}"
        return base


class TranslationError(DocSyncError):
    """The translate backend failed or returned an unusable response."""


class NotebookFormatError(TranslationError):
    """A cell-structured document could not be parsed."""


class FileOperationError(DocSyncError):
    """Reading upstream content or writing a working-copy file failed."""

    def __init__(self, message: str, path: str) -> None:
        super().__init__(message)
        self.path = path


class ConfigError(DocSyncError):
    """Project configuration lookup or mutation was invalid."""


__all__ = [
    "DocSyncError",
    "GitCommandError",
    "TranslationError",
    "NotebookFormatError",
    "FileOperationError",
    "ConfigError",
]
