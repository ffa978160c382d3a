"""
Named groups of key-store keys, stored one per line as ``group=k1,k2,...``.
"""
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .audit import AuditLogger
from .errors import (
    ConfFileNotFoundError,
    CorruptValueError,
    GroupExistsError,
    GroupNotFoundError,
    InvalidNameError,
    KeyNotFoundError,
    StorageError,
    ValidationError,
)
from .keystore import KeyStore
from .models import GroupReadResult, SyncReport
from .text import trim
from .utils import atomic_write_lines, ensure_dir, ensure_file, read_lines


@dataclass
class _GroupLine:
    raw: str
    name: Optional[str] = None
    keys: Optional[List[str]] = None

    @classmethod
    def parse(cls, raw: str) -> "_GroupLine":
        stripped = trim(raw)
        if stripped and not stripped.startswith("#") and "=" in stripped:
            name, _, csv = stripped.partition("=")
            name = trim(name)
            if name:
                keys = [trim(k) for k in csv.split(",") if trim(k)]
                return cls(raw, name, keys)
        return cls(raw)

    @classmethod
    def group(cls, name: str, keys: List[str]) -> "_GroupLine":
        return cls(f"{name}={','.join(keys)}", name, list(keys))


class GroupStore:
    """Group file bound to the KeyStore its keys resolve through."""

    def __init__(self, path: Path, key_store: KeyStore, backup_path: Optional[Path] = None, audit: Optional[AuditLogger] = None):
        self.path = Path(path)
        self.key_store = key_store
        self.backup_path = backup_path
        self.audit = audit or AuditLogger(None)

    def _lines(self) -> List[_GroupLine]:
        if not self.path.is_file():
            return []
        return [_GroupLine.parse(raw) for raw in read_lines(self.path)]

    def _save(self, lines: List[_GroupLine]) -> None:
        atomic_write_lines(self.path, [line.raw for line in lines])

    def _index(self, lines: List[_GroupLine], name: str) -> Optional[int]:
        for i, line in enumerate(lines):
            if line.name == name:
                return i
        return None

    def _require(self, lines: List[_GroupLine], name: str) -> int:
        i = self._index(lines, name)
        if i is None:
            raise GroupNotFoundError(f"Group '{name}' not found.")
        return i

    @staticmethod
    def _check_name(name: str) -> str:
        name = trim(name)
        if not name:
            raise InvalidNameError("Group name cannot be empty")
        if any(ch in name for ch in "=,") or any(ch.isspace() for ch in name):
            raise InvalidNameError(f"Group name contains illegal characters: {name}")
        return name

    def _check_keys(self, keys: List[str]) -> List[str]:
        keys = list(dict.fromkeys(trim(k) for k in keys if trim(k)))
        if not keys:
            raise ValidationError("A group needs at least one key.")
        missing = [k for k in keys if not self.key_store.exists(k)]
        if missing:
            raise KeyNotFoundError(f"Keys not found in configuration: {', '.join(missing)}")
        return keys

    # -- reads ------------------------------------------------------------

    def names(self) -> List[str]:
        return [line.name for line in self._lines() if line.name]

    def exists(self, name: str) -> bool:
        return self._index(self._lines(), name) is not None

    def keys_of(self, name: str) -> List[str]:
        lines = self._lines()
        return list(lines[self._require(lines, name)].keys or [])

    def read(self, name: str) -> GroupReadResult:
        """
        Resolve every key of a group through the key store.

        Keys that no longer resolve are listed in ``missing`` instead of
        failing the whole read.
        """
        if not self.path.is_file():
            raise ConfFileNotFoundError(f"Group configuration file '{self.path}' not found.")
        values: Dict[str, str] = {}
        missing: List[str] = []
        for key in self.keys_of(name):
            try:
                values[key] = self.key_store.get(key)
            except (KeyNotFoundError, ConfFileNotFoundError, CorruptValueError):
                missing.append(key)
        return GroupReadResult(name=name, values=values, missing=missing)

    # -- writes -----------------------------------------------------------

    def add(self, name: str, keys: List[str]) -> bool:
        """Create a group or replace its key list. Returns True when created."""
        name = self._check_name(name)
        keys = self._check_keys(keys)
        ensure_file(self.path)
        lines = self._lines()
        i = self._index(lines, name)
        if i is None:
            lines.append(_GroupLine.group(name, keys))
        else:
            lines[i] = _GroupLine.group(name, keys)
        self._save(lines)
        self.audit.log("group.add" if i is None else "group.update", group=name, keys=keys)
        return i is None

    def update(self, name: str, keys: List[str]) -> None:
        """Replace the key list of an existing group."""
        if not self.exists(name):
            raise GroupNotFoundError(f"Group '{name}' not found.")
        self.add(name, keys)

    def remove(self, name: str) -> None:
        lines = self._lines()
        del lines[self._require(lines, name)]
        self._save(lines)
        self.audit.log("group.remove", group=name)

    def rename(self, old: str, new: str) -> None:
        new = self._check_name(new)
        lines = self._lines()
        i = self._require(lines, old)
        if self._index(lines, new) is not None:
            raise GroupExistsError(f"Group '{new}' already exists.")
        lines[i] = _GroupLine.group(new, lines[i].keys or [])
        self._save(lines)
        self.audit.log("group.rename", old=old, new=new)

    def clone(self, src: str, dst: str) -> None:
        dst = self._check_name(dst)
        lines = self._lines()
        i = self._require(lines, src)
        if self._index(lines, dst) is not None:
            raise GroupExistsError(f"Group '{dst}' already exists.")
        lines.append(_GroupLine.group(dst, lines[i].keys or []))
        self._save(lines)
        self.audit.log("group.clone", src=src, dst=dst)

    def sync(self) -> SyncReport:
        """
        Drop keys that no longer exist in the key store, and groups left empty.

        The file is only rewritten (after a backup copy) when something
        changed, so running it twice in a row is a no-op the second time.
        """
        if not self.path.is_file():
            raise ConfFileNotFoundError(f"Group configuration file '{self.path}' not found.")
        existing = set(self.key_store.keys())
        changed: Dict[str, List[str]] = {}
        removed: List[str] = []
        result: List[_GroupLine] = []

        for line in self._lines():
            if line.name is None:
                if trim(line.raw):
                    result.append(line)
                continue
            kept = [k for k in line.keys or [] if k in existing]
            dropped = [k for k in line.keys or [] if k not in existing]
            if not kept:
                removed.append(line.name)
                continue
            if dropped:
                changed[line.name] = dropped
                result.append(_GroupLine.group(line.name, kept))
            else:
                result.append(line)

        report = SyncReport(changed=changed, removed=removed)
        if report.is_noop:
            return report

        if self.backup_path is not None:
            ensure_dir(self.backup_path.parent)
            try:
                shutil.copy2(self.path, self.backup_path)
            except OSError as e:
                raise StorageError(f"Could not back up {self.path}: {e}") from e
        self._save(result)
        self.audit.log("group.sync", changed=list(changed), removed=removed)
        return report
