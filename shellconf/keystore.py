"""
Flat key/value configuration store.

One ``KEY=base64(value)`` entry per line, optionally preceded by a single
``# comment`` line that belongs to it. A parallel ProtectedKeys set blocks
remove/rename/update of selected keys.
"""
import base64
import binascii
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .audit import AuditLogger
from .errors import (
    ConfFileNotFoundError,
    CorruptValueError,
    InvalidNameError,
    KeyExistsError,
    KeyNotFoundError,
    ProtectedKeyError,
)
from .text import escape_for_regex, sanitize_upper_var_name, trim
from .utils import atomic_write_lines, ensure_file, read_lines

DEFAULT_PROTECTED_KEYS = (
    "SHELL_SHIELD_ENCRYPTION_KEY",
    "SHELL_SHIELD_ENCRYPTION_IV",
    "HOST",
    "PORT",
    "SHELL_DEVELOPER",
    "SHELL_HISTORICAL_GH_TELEGRAM_BOT_TOKEN",
    "SHELL_HISTORICAL_GH_TELEGRAM_CHAT_ID",
)


def encode_value(value: str) -> str:
    """Base64-encode UTF-8 text into a single line."""
    return base64.b64encode(value.encode("utf-8")).decode("ascii").replace("\n", "")

def decode_value(encoded: str) -> str:
    """Decode a value written by encode_value."""
    try:
        return base64.b64decode(trim(encoded), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise CorruptValueError(f"Stored value is not valid base64 text: {e}") from e


@dataclass
class _ConfLine:
    raw: str
    key: Optional[str] = None
    encoded: str = ""

    @property
    def is_comment(self) -> bool:
        return trim(self.raw).startswith("#")

    @classmethod
    def parse(cls, raw: str) -> "_ConfLine":
        stripped = trim(raw)
        if stripped and not stripped.startswith("#") and "=" in stripped:
            key, _, encoded = stripped.partition("=")
            key = trim(key)
            if key:
                return cls(raw, key, trim(encoded))
        return cls(raw)

    @classmethod
    def entry(cls, key: str, encoded: str) -> "_ConfLine":
        return cls(f"{key}={encoded}", key, encoded)


class ProtectedKeys:
    """Built-in protected keys plus a user-managed newline-separated file."""

    def __init__(self, path: Path, builtin: Iterable[str] = DEFAULT_PROTECTED_KEYS, audit: Optional[AuditLogger] = None):
        self.path = Path(path)
        self.builtin = tuple(builtin)
        self.audit = audit or AuditLogger(None)

    def user_keys(self) -> List[str]:
        if not self.path.is_file():
            return []
        keys = []
        for raw in read_lines(self.path):
            key = trim(raw)
            if key and not key.startswith("#") and key not in keys:
                keys.append(key)
        return keys

    def list(self) -> List[str]:
        return list(dict.fromkeys([*self.builtin, *self.user_keys()]))

    def is_protected(self, key: str) -> bool:
        return key in self.builtin or key in self.user_keys()

    def add(self, key: str) -> bool:
        """Protect a key. Returns False when it was already in the user file."""
        key = trim(key)
        if not key:
            raise InvalidNameError("Key name cannot be empty")
        current = self.user_keys()
        if key in current:
            return False
        ensure_file(self.path)
        atomic_write_lines(self.path, [*current, key])
        self.audit.log("protected.add", key=key)
        return True

    def remove(self, key: str) -> None:
        current = self.user_keys()
        if key not in current:
            if key in self.builtin:
                raise ProtectedKeyError(key)
            raise KeyNotFoundError(f"Key '{key}' is not in the protected list.")
        atomic_write_lines(self.path, [k for k in current if k != key])
        self.audit.log("protected.remove", key=key)

    def sync(self, store: "KeyStore") -> List[str]:
        """Drop protection records for keys no longer in the store. Returns the dropped keys."""
        current = self.user_keys()
        kept = [k for k in current if store.exists(k)]
        stale = [k for k in current if k not in kept]
        if stale:
            atomic_write_lines(self.path, kept)
            self.audit.log("protected.sync", removed=stale)
        return stale


class KeyStore:
    """
    A ``KEY=base64(value)`` file.

    Keys are normalised with sanitize_upper_var_name on add and rename.
    When a ProtectedKeys set is attached, update/remove/rename refuse
    protected keys with ProtectedKeyError and leave the file untouched.
    """

    def __init__(self, path: Path, protected: Optional[ProtectedKeys] = None, audit: Optional[AuditLogger] = None):
        self.path = Path(path)
        self.protected = protected
        self.audit = audit or AuditLogger(None)

    def _lines(self) -> List[_ConfLine]:
        if not self.path.is_file():
            return []
        return [_ConfLine.parse(raw) for raw in read_lines(self.path)]

    def _save(self, lines: List[_ConfLine]) -> None:
        atomic_write_lines(self.path, [line.raw for line in lines])

    def _index(self, lines: List[_ConfLine], key: str) -> Optional[int]:
        for i, line in enumerate(lines):
            if line.key == key:
                return i
        return None

    def _guard(self, key: str) -> None:
        if self.protected is not None and self.protected.is_protected(key):
            raise ProtectedKeyError(key)

    @staticmethod
    def _normalise(key: str) -> str:
        key = sanitize_upper_var_name(trim(key))
        if not key:
            raise InvalidNameError("Key name cannot be empty")
        return key

    # -- reads ------------------------------------------------------------

    def keys(self) -> List[str]:
        return list(dict.fromkeys(line.key for line in self._lines() if line.key))

    def exists(self, key: str) -> bool:
        return any(line.key == key for line in self._lines())

    def get(self, key: str) -> str:
        """Return the decoded value of key."""
        if not self.path.is_file():
            raise ConfFileNotFoundError(f"Configuration file '{self.path}' not found.")
        for line in self._lines():
            if line.key == key:
                return decode_value(line.encoded)
        raise KeyNotFoundError(f"Key '{key}' not found in configuration.")

    def comment_for(self, key: str) -> Optional[str]:
        """The comment attached to key, if any."""
        lines = self._lines()
        i = self._index(lines, key)
        if i is None:
            raise KeyNotFoundError(f"Key '{key}' not found in configuration.")
        if i > 0 and lines[i - 1].is_comment:
            return trim(trim(lines[i - 1].raw)[1:])
        return None

    def as_dict(self) -> Dict[str, str]:
        result: Dict[str, str] = {}
        for line in self._lines():
            if line.key and line.key not in result:
                result[line.key] = decode_value(line.encoded)
        return result

    def search(self, term: str) -> List[str]:
        """Keys containing term, case-insensitive, term taken literally."""
        pattern = re.compile(escape_for_regex(term), re.IGNORECASE)
        return [key for key in self.keys() if pattern.search(key)]

    # -- writes -----------------------------------------------------------

    def add(self, key: str, value: str, comment: Optional[str] = None) -> str:
        """Append a new entry. Returns the normalised key."""
        key = self._normalise(key)
        ensure_file(self.path)
        lines = self._lines()
        if self._index(lines, key) is not None:
            raise KeyExistsError(f"The key '{key}' exists. Update or rename it instead.")
        if comment:
            lines.append(_ConfLine(f"# {trim(comment)}"))
        lines.append(_ConfLine.entry(key, encode_value(value)))
        self._save(lines)
        self.audit.log("key.add", file=str(self.path), key=key)
        return key

    def update(self, key: str, value: str) -> None:
        self._guard(key)
        lines = self._lines()
        i = self._index(lines, key)
        if i is None:
            raise KeyNotFoundError(f"Key '{key}' not found in configuration.")
        lines[i] = _ConfLine.entry(key, encode_value(value))
        self._save(lines)
        self.audit.log("key.update", file=str(self.path), key=key)

    def remove(self, key: str) -> None:
        self._guard(key)
        lines = self._lines()
        i = self._index(lines, key)
        if i is None:
            raise KeyNotFoundError(f"Key '{key}' not found in configuration.")
        start = i - 1 if i > 0 and lines[i - 1].is_comment else i
        del lines[start:i + 1]
        self._save(lines)
        self.audit.log("key.remove", file=str(self.path), key=key)

    def rename(self, old: str, new: str) -> str:
        """Rename a key, keeping its value and comment. Returns the normalised new key."""
        self._guard(old)
        new = self._normalise(new)
        lines = self._lines()
        i = self._index(lines, old)
        if i is None:
            raise KeyNotFoundError(f"Key '{old}' not found in configuration.")
        if new != old and self._index(lines, new) is not None:
            raise KeyExistsError(f"Key '{new}' already exists.")
        lines[i] = _ConfLine.entry(new, lines[i].encoded)
        self._save(lines)
        self.audit.log("key.rename", file=str(self.path), old=old, new=new)
        return new
