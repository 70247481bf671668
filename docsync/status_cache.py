"""Per-branch persisted translation status records.

One JSON file per ``(project root, working branch)`` lives at the project root
as ``.docsync-<branch>.json`` and maps ``path -> {"status", "lastHash"}``.
Only ``translated`` and ``outdated`` entries are ever stored; an untranslated
path is the absence of a record. Missing or corrupt files load as empty.
"""

from __future__ import annotations

import json
import logging
import os
import re
import stat
import tempfile
from pathlib import Path

from .models import StatusCacheEntry, is_recorded_state
from .paths import escapes_root, normalize_rel_path
from .upstream import UpstreamSnapshotReader

logger = logging.getLogger(__name__)

STATUS_FILE_PREFIX = ".docsync-"
STATUS_FILE_SUFFIX = ".json"
_UNSAFE_FILENAME_RE = re.compile(r'[%\\/:*?"<>|\x00-\x1f]')

BranchKey = tuple[Path, str]


def safe_branch_name(branch: str) -> str:
    """Percent-encode characters that cannot appear in a file name.

    ``%`` is encoded as well, so two distinct branch names never share a file
    (``feature/x`` -> ``feature%2Fx``, ``feature_x`` stays as is).
    """
    return _UNSAFE_FILENAME_RE.sub(lambda match: f"%{ord(match.group()):02X}", branch)


def status_file_path(root: Path, working_branch: str) -> Path:
    return root / f"{STATUS_FILE_PREFIX}{safe_branch_name(working_branch)}{STATUS_FILE_SUFFIX}"


def is_status_file_name(name: str) -> bool:
    return name.startswith(STATUS_FILE_PREFIX) and name.endswith(STATUS_FILE_SUFFIX)


def _default_file_mode() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def _coerce_entry(raw: object) -> StatusCacheEntry | None:
    """Validate one persisted record; malformed records are dropped."""
    if not isinstance(raw, dict):
        return None
    status = raw.get("status")
    last_hash = raw.get("lastHash")
    if not isinstance(status, str) or not is_recorded_state(status):
        return None
    if not isinstance(last_hash, str) or not last_hash:
        return None
    return StatusCacheEntry(status=status, last_hash=last_hash)


def read_status_file(path: Path) -> dict[str, StatusCacheEntry]:
    """Read a persisted status file; any read/parse failure yields ``{}``."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as exc:
        logger.warning("ignoring unreadable status file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("ignoring status file %s: top level is not an object", path)
        return {}

    entries: dict[str, StatusCacheEntry] = {}
    for raw_path, raw_entry in data.items():
        if not isinstance(raw_path, str):
            continue
        entry = _coerce_entry(raw_entry)
        canonical = normalize_rel_path(raw_path)
        if entry is not None and canonical and not escapes_root(canonical):
            entries[canonical] = entry
    return entries


def write_status_file(path: Path, entries: dict[str, StatusCacheEntry]) -> None:
    """Atomically replace ``path`` with the serialized ``entries``.

    An existing file keeps its permission bits; a new one gets the umask default.
    """
    payload = {
        rel_path: {"status": entry.status, "lastHash": entry.last_hash}
        for rel_path, entry in sorted(entries.items())
    }
    try:
        mode = stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        mode = _default_file_mode()
    fd, tmp_name = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, indent=2, ensure_ascii=False) + "\n")
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class StatusCacheStore:
    """In-memory status records per ``(root, working branch)`` plus their files.

    Entries for one branch never leak into another branch's file. Clearing a
    branch also drops the upstream hash view for its upstream branch.
    """

    def __init__(self, upstream: UpstreamSnapshotReader | None = None) -> None:
        self._upstream = upstream
        self._entries: dict[BranchKey, dict[str, StatusCacheEntry]] = {}

    @staticmethod
    def _key(root: Path, working_branch: str) -> BranchKey:
        return (root.resolve(), working_branch)

    def load(self, root: Path, working_branch: str) -> dict[str, StatusCacheEntry]:
        """Replace the in-memory records for this branch with the persisted file."""
        key = self._key(root, working_branch)
        entries = read_status_file(status_file_path(key[0], working_branch))
        self._entries[key] = entries
        logger.debug("loaded %d status records for %s @ %s", len(entries), key[0], working_branch)
        return dict(entries)

    def get(self, root: Path, working_branch: str, path: str) -> StatusCacheEntry | None:
        branch_entries = self._entries.get(self._key(root, working_branch))
        if branch_entries is None:
            return None
        return branch_entries.get(normalize_rel_path(path))

    def put(self, root: Path, working_branch: str, path: str, entry: StatusCacheEntry) -> bool:
        """Store ``entry``; untranslated (or hashless) entries are ignored.

        Returns whether the entry was stored.
        """
        if not is_recorded_state(entry.status) or not entry.last_hash:
            logger.debug("not caching %s entry for %s", entry.status, path)
            return False
        key = self._key(root, working_branch)
        self._entries.setdefault(key, {})[normalize_rel_path(path)] = entry
        return True

    def entries(self, root: Path, working_branch: str) -> dict[str, StatusCacheEntry]:
        return dict(self._entries.get(self._key(root, working_branch), {}))

    def save(self, root: Path, working_branch: str) -> Path | None:
        """Persist this branch's records; delete the file when none remain.

        Returns the written path, or ``None`` when the file was removed.
        """
        key = self._key(root, working_branch)
        target = status_file_path(key[0], working_branch)
        to_persist = {
            rel_path: entry
            for rel_path, entry in self._entries.get(key, {}).items()
            if is_recorded_state(entry.status)
        }

        if not to_persist:
            try:
                target.unlink()
                logger.info("removed empty status file %s", target)
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning("cannot remove status file %s: %s", target, exc)
            return None

        try:
            write_status_file(target, to_persist)
        except OSError as exc:
            logger.error("saving status file %s failed: %s", target, exc)
            return None
        logger.info("saved %d status records to %s", len(to_persist), target)
        return target

    def drop_branch_entries(self, root: Path, working_branch: str) -> None:
        """Forget in-memory records for one branch without touching disk."""
        self._entries.pop(self._key(root, working_branch), None)

    def clear_project(self, root: Path) -> None:
        resolved = root.resolve()
        for key in [key for key in self._entries if key[0] == resolved]:
            del self._entries[key]

    def clear_branch(self, root: Path, working_branch: str, upstream_branch: str) -> None:
        self.drop_branch_entries(root, working_branch)
        if self._upstream is not None:
            self._upstream.invalidate(root, upstream_branch)


__all__ = [
    "STATUS_FILE_PREFIX",
    "STATUS_FILE_SUFFIX",
    "StatusCacheStore",
    "safe_branch_name",
    "status_file_path",
    "is_status_file_name",
    "read_status_file",
    "write_status_file",
]
