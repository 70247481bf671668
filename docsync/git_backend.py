"""Async command-line git oracle.

Every call runs ``git -C <root> ...`` as a subprocess with a timeout. Callers
decide per operation whether a failure is degradable or fatal; this module only
reports it as ``GitCommandError``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from .errors import GitCommandError
from .paths import normalize_rel_path, to_git_path

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 30.0
GIT_NETWORK_TIMEOUT_SECONDS = 300.0
_FIELD_SEP = "\x1f"


@dataclass(frozen=True)
class GitResult:
    returncode: int
    stdout: bytes
    stderr: str

    @property
    def text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class GitFileStatus:
    """One row of ``git status``: index or worktree side of a path."""

    path: str
    status: str
    staged: bool


@dataclass(frozen=True)
class GitCommit:
    hash: str
    message: str
    author: str
    date: str
    short_hash: str


@dataclass(frozen=True)
class GitRemote:
    name: str
    url: str


def iter_porcelain_records(output: str) -> list[tuple[str, str]]:
    """Parse ``git status --porcelain=v1 -z`` output into ``(XY, path)`` pairs."""
    records: list[tuple[str, str]] = []
    tokens = output.split("\0")
    index = 0
    while index < len(tokens):
        token = tokens[index]
        index += 1
        if not token:
            continue
        if len(token) < 4 or token[2] != " ":
            continue

        status = token[:2]
        path_text = normalize_rel_path(token[3:])
        records.append((status, path_text))

        # Renames/copies carry the source path as an extra token.
        if "R" in status or "C" in status:
            index += 1

    return records


def status_rows(records: list[tuple[str, str]]) -> list[GitFileStatus]:
    """Split porcelain records into staged, unstaged, and untracked rows."""
    rows: list[GitFileStatus] = []
    for status, path in records:
        staged_code, worktree_code = status[0], status[1]
        if status == "??":
            rows.append(GitFileStatus(path=path, status="??", staged=False))
            continue
        if status == "!!":
            continue
        if staged_code not in (" ", "?"):
            rows.append(GitFileStatus(path=path, status=staged_code, staged=True))
        if worktree_code not in (" ", "?"):
            rows.append(GitFileStatus(path=path, status=worktree_code, staged=False))
    return rows


def parse_ls_tree(output: bytes) -> list[tuple[str, str]]:
    """Parse ``git ls-tree -r -z`` output into ``(path, blob_hash)`` pairs."""
    entries: list[tuple[str, str]] = []
    for raw in output.split(b"\0"):
        if not raw:
            continue
        header, sep, raw_path = raw.partition(b"\t")
        if not sep:
            continue
        fields = header.split()
        if len(fields) < 3 or fields[1] != b"blob":
            continue
        path = normalize_rel_path(raw_path.decode("utf-8", errors="replace"))
        if path:
            entries.append((path, fields[2].decode("ascii", errors="replace")))
    return entries


class GitRepository:
    """Version-control oracle bound to one working tree."""

    def __init__(self, root: Path, timeout_seconds: float = GIT_TIMEOUT_SECONDS) -> None:
        self.root = Path(root).resolve()
        self.timeout_seconds = timeout_seconds

    async def run(
        self,
        args: list[str],
        *,
        check: bool = True,
        timeout_seconds: float | None = None,
    ) -> GitResult:
        """Run ``git`` with ``args`` and return its captured output.

        Raises ``GitCommandError`` when git cannot start, times out, or (with
        ``check``) exits non-zero.
        """
        command = ["git", "-C", str(self.root), *args]
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise GitCommandError(f"failed to run git: {exc}", command=command) from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise GitCommandError(
                f"git {args[0] if args else ''} timed out after {timeout:g}s",
                command=command,
            ) from exc

        result = GitResult(
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout,
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        if check and result.returncode != 0:
            raise GitCommandError(
                f"git {' '.join(args[:2])} failed with exit code {result.returncode}",
                command=command,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    # Branches and remotes

    async def list_local_branches(self) -> list[str]:
        result = await self.run(["for-each-ref", "--format=%(refname:short)", "refs/heads"])
        return [line.strip() for line in result.text.splitlines() if line.strip()]

    async def list_remote_branches(self, remote: str) -> list[str]:
        """Branch names under ``refs/remotes/<remote>`` without the remote prefix."""
        result = await self.run(["for-each-ref", "--format=%(refname:short)", f"refs/remotes/{remote}"])
        prefix = f"{remote}/"
        branches: list[str] = []
        for line in result.text.splitlines():
            name = line.strip()
            if not name or name == remote:
                continue
            if name.startswith(prefix):
                name = name[len(prefix):]
            if name == "HEAD":
                continue
            branches.append(name)
        return branches

    async def current_branch(self) -> str:
        result = await self.run(["branch", "--show-current"])
        return result.text.strip()

    async def fetch(self, remote: str = "upstream") -> None:
        await self.run(["fetch", remote], timeout_seconds=GIT_NETWORK_TIMEOUT_SECONDS)
        logger.info("fetched remote %s in %s", remote, self.root)

    async def checkout(self, branch: str) -> None:
        await self.run(["checkout", branch])
        logger.info("checked out %s in %s", branch, self.root)

    async def remote_url(self, remote: str = "origin") -> str:
        result = await self.run(["remote", "get-url", remote])
        return result.text.strip()

    async def list_remotes(self) -> list[GitRemote]:
        result = await self.run(["remote", "-v"])
        remotes: list[GitRemote] = []
        for line in result.text.splitlines():
            parts = line.split()
            if len(parts) == 3 and parts[2] == "(fetch)":
                remotes.append(GitRemote(name=parts[0], url=parts[1]))
        return remotes

    async def has_remote(self, name: str) -> bool:
        result = await self.run(["remote"])
        return name in {line.strip() for line in result.text.splitlines()}

    async def add_remote(self, name: str, url: str) -> None:
        if not url.strip():
            raise GitCommandError("remote URL must not be empty")
        if await self.has_remote(name):
            raise GitCommandError(f"remote {name} already exists")
        await self.run(["remote", "add", name, url.strip()])

    async def set_remote_url(self, name: str, url: str) -> None:
        if not url.strip():
            raise GitCommandError("remote URL must not be empty")
        await self.run(["remote", "set-url", name, url.strip()])

    async def remove_remote(self, name: str) -> None:
        await self.run(["remote", "remove", name])

    # Content at a ref

    async def read_file_at(self, ref: str, path: str) -> bytes:
        result = await self.run(["show", f"{ref}:{to_git_path(path)}"])
        return result.stdout

    async def file_exists_at(self, ref: str, path: str) -> bool:
        result = await self.run(["cat-file", "-e", f"{ref}:{to_git_path(path)}"], check=False)
        return result.returncode == 0

    async def bulk_list_tree(self, ref: str, path_filters: list[str] | None = None) -> list[tuple[str, str]]:
        args = ["ls-tree", "-r", "-z", "--full-tree", ref]
        filters = [to_git_path(item) for item in (path_filters or []) if to_git_path(item)]
        if filters:
            args.extend(["--", *filters])
        result = await self.run(args)
        return parse_ls_tree(result.stdout)

    async def blob_hash(self, ref: str, path: str) -> str | None:
        """Object id of ``path`` as stored at ``ref``, or ``None`` when absent."""
        result = await self.run(
            ["rev-parse", "--verify", "--quiet", f"{ref}:{to_git_path(path)}"],
            check=False,
        )
        if result.returncode != 0:
            return None
        return result.text.strip() or None

    async def last_commit_hash(self, ref: str, path: str) -> str | None:
        result = await self.run(["log", "-1", "--format=%H", ref, "--", to_git_path(path)])
        return result.text.strip() or None

    # Working tree

    async def porcelain_records(self, path_filter: str | None = None) -> list[tuple[str, str]]:
        args = ["status", "--porcelain=v1", "-z", "--untracked-files=all"]
        if path_filter:
            args.extend(["--", to_git_path(path_filter)])
        result = await self.run(args)
        return iter_porcelain_records(result.text)

    async def working_tree_status(self, path_filter: str | None = None) -> list[GitFileStatus]:
        return status_rows(await self.porcelain_records(path_filter))

    async def has_uncommitted_changes(self) -> bool:
        return bool(await self.porcelain_records())

    async def stage(self, path: str) -> None:
        await self.run(["add", "--", to_git_path(path)])

    async def stage_all(self) -> None:
        await self.run(["add", "-A"])

    async def unstage(self, path: str) -> None:
        await self.run(["reset", "-q", "HEAD", "--", to_git_path(path)])

    async def commit(self, message: str) -> None:
        if not message.strip():
            raise GitCommandError("commit message must not be empty")
        await self.run(["commit", "-m", message])

    async def push(self, remote: str = "origin", branch: str | None = None) -> None:
        args = ["push", remote]
        if branch:
            args.append(branch)
        await self.run(args, timeout_seconds=GIT_NETWORK_TIMEOUT_SECONDS)

    async def commit_and_push(self, message: str, remote: str = "origin", branch: str | None = None) -> None:
        await self.commit(message)
        await self.push(remote, branch)

    async def commit_history(self, limit: int = 20) -> list[GitCommit]:
        fmt = _FIELD_SEP.join(["%H", "%s", "%an", "%ad", "%h"])
        result = await self.run(["log", f"-n{max(1, limit)}", "--date=short", f"--format={fmt}"])
        commits: list[GitCommit] = []
        for line in result.text.splitlines():
            parts = line.split(_FIELD_SEP)
            if len(parts) != 5 or not all(parts):
                continue
            commits.append(GitCommit(*parts))
        return commits


__all__ = [
    "GIT_TIMEOUT_SECONDS",
    "GitResult",
    "GitFileStatus",
    "GitCommit",
    "GitRemote",
    "GitRepository",
    "iter_porcelain_records",
    "status_rows",
    "parse_ls_tree",
]
