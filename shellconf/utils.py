"""
Filesystem utilities for shellconf.

Every structural edit goes through atomic_write_text: the new content is
written to a temp file in the same directory and swapped in with os.replace,
so a crash leaves either the old or the new file, never half of one.
"""
import os
import stat
import sys
import tempfile
from pathlib import Path
from typing import List

from .errors import ConfFileNotFoundError, StorageError


def is_windows() -> bool:
    """Return True if running on Windows."""
    return sys.platform == "win32"

def mask_value(value: str) -> str:
    """Mask a secret, returning only the last 4 characters visible."""
    if not value or len(value) < 8:
        return "****"
    return "*" * (len(value) - 4) + value[-4:]

def apply_secure_permissions(path: Path) -> None:
    """Apply chmod 600 equivalent permissions to a file."""
    if not is_windows():
        # Owner read/write only
        path.chmod(stat.S_IRUSR | stat.S_IWUSR)

def ensure_dir(path: Path) -> Path:
    """Create a directory (and parents) if missing."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(f"Could not create directory: {path}: {e}") from e
    return path

def ensure_file(path: Path) -> Path:
    """Create an empty file (and its parent directories) if missing."""
    if path.is_file():
        return path
    ensure_dir(path.parent)
    try:
        path.touch()
        apply_secure_permissions(path)
    except OSError as e:
        raise StorageError(f"Could not create file: {path}: {e}") from e
    return path

def read_lines(path: Path) -> List[str]:
    """Read a text file as a list of lines without line terminators."""
    if not path.is_file():
        raise ConfFileNotFoundError(f"File not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise StorageError(f"Could not read file: {path}: {e}") from e
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines

def render_lines(lines: List[str]) -> str:
    """Join lines back into file content with a trailing newline."""
    return "\n".join(lines) + "\n" if lines else ""

def atomic_write_text(path: Path, text: str) -> None:
    """Write text to a temp file next to path, then atomically replace path."""
    ensure_dir(path.parent)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        apply_secure_permissions(tmp_path)
        os.replace(tmp_path, path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise StorageError(f"Could not write file: {path}: {e}") from e

def atomic_write_lines(path: Path, lines: List[str]) -> None:
    """Atomically replace path with the given lines."""
    atomic_write_text(path, render_lines(lines))

def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Binary counterpart of atomic_write_text."""
    ensure_dir(path.parent)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        apply_secure_permissions(tmp_path)
        os.replace(tmp_path, path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise StorageError(f"Could not write file: {path}: {e}") from e
