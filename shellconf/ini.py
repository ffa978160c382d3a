"""
INI document model: parse -> in-memory lines -> re-serialize.

Every line of the file is kept as an IniLine so untouched lines are written
back byte-for-byte. Lookups only look at entry lines; comments (``#``/``;``),
blank lines and malformed lines (no ``=``) are carried along but never match.

A section name may appear more than once; each later header re-opens the same
section, so every block carrying that name is part of it.
"""
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, MutableMapping, Optional, Tuple

from .audit import AuditLogger
from .errors import (
    ConfFileNotFoundError,
    EmptyValueError,
    KeyNotFoundError,
    NotFoundError,
    SectionExistsError,
    SectionNotFoundError,
    ValidationError,
)
from .models import IniSettings
from .text import (
    derive_var_name,
    format_value,
    join_array,
    split_array,
    trim,
    unquote_value,
    validate_key_name,
    validate_section_name,
)
from .utils import atomic_write_lines, ensure_file, read_lines

_HEADER = re.compile(r"^\[([^\]]+)\]")


class LineKind(Enum):
    BLANK = "blank"
    COMMENT = "comment"
    SECTION = "section"
    ENTRY = "entry"
    OTHER = "other"

@dataclass
class IniLine:
    raw: str
    kind: LineKind
    name: str = ""   # section name for headers, key for entries
    value: str = ""  # stored value text, still quoted

    @classmethod
    def parse(cls, raw: str) -> "IniLine":
        stripped = trim(raw)
        if not stripped:
            return cls(raw, LineKind.BLANK)
        if stripped[0] in "#;":
            return cls(raw, LineKind.COMMENT)
        header = _HEADER.match(stripped)
        if header:
            return cls(raw, LineKind.SECTION, name=trim(header.group(1)))
        if "=" in stripped:
            key, _, value = stripped.partition("=")
            key = trim(key)
            if key:
                return cls(raw, LineKind.ENTRY, name=key, value=trim(value))
        return cls(raw, LineKind.OTHER)

    @classmethod
    def header(cls, section: str) -> "IniLine":
        return cls(f"[{section}]", LineKind.SECTION, name=section)

    @classmethod
    def entry(cls, key: str, stored: str) -> "IniLine":
        return cls(f"{key}={stored}", LineKind.ENTRY, name=key, value=stored)

    @property
    def decoded(self) -> str:
        return unquote_value(self.value)


class IniDocument:
    """In-memory INI file. Mutations only touch the lines they target."""

    def __init__(self, lines: Optional[List[IniLine]] = None):
        self.lines: List[IniLine] = lines or []

    @classmethod
    def from_lines(cls, raw_lines: List[str]) -> "IniDocument":
        return cls([IniLine.parse(raw) for raw in raw_lines])

    @classmethod
    def load(cls, path: Path) -> "IniDocument":
        return cls.from_lines(read_lines(path))

    def to_lines(self) -> List[str]:
        return [line.raw for line in self.lines]

    # -- queries ----------------------------------------------------------

    def sections(self) -> List[str]:
        """Section names in file order, duplicates included."""
        return [line.name for line in self.lines if line.kind is LineKind.SECTION]

    def has_section(self, section: str) -> bool:
        return any(line.kind is LineKind.SECTION and line.name == section for line in self.lines)

    def _blocks(self, section: str) -> List[Tuple[int, int]]:
        """(header index, end index) for every block of the section."""
        blocks = []
        start: Optional[int] = None
        for i, line in enumerate(self.lines):
            if line.kind is not LineKind.SECTION:
                continue
            if start is not None:
                blocks.append((start, i))
                start = None
            if line.name == section:
                start = i
        if start is not None:
            blocks.append((start, len(self.lines)))
        return blocks

    def _entry_indices(self, section: str) -> List[int]:
        blocks = self._blocks(section)
        if not blocks:
            raise SectionNotFoundError(f"Section not found: {section}")
        return [
            i
            for start, end in blocks
            for i in range(start + 1, end)
            if self.lines[i].kind is LineKind.ENTRY
        ]

    def entries(self, section: str) -> List[IniLine]:
        """Entry lines of a section, first occurrence of each key only."""
        seen = set()
        result = []
        for i in self._entry_indices(section):
            line = self.lines[i]
            if line.name not in seen:
                seen.add(line.name)
                result.append(line)
        return result

    def keys(self, section: str) -> List[str]:
        return [line.name for line in self.entries(section)]

    def get(self, section: str, key: str) -> str:
        for line in self.entries(section):
            if line.name == key:
                return line.decoded
        raise KeyNotFoundError(f"Key not found: {key} in section: {section}")

    def items(self, section: str) -> Dict[str, str]:
        return {line.name: line.decoded for line in self.entries(section)}

    # -- mutations --------------------------------------------------------

    def add_section(self, section: str) -> bool:
        """Append a header unless the section exists. Returns True when added."""
        if self.has_section(section):
            return False
        if self.lines and self.lines[-1].kind is not LineKind.BLANK:
            self.lines.append(IniLine("", LineKind.BLANK))
        self.lines.append(IniLine.header(section))
        return True

    def set(self, section: str, key: str, value: str) -> None:
        """Upsert a key; the first occurrence is replaced in place, later duplicates dropped."""
        self.add_section(section)
        new_line = IniLine.entry(key, format_value(value))
        matches = [i for i in self._entry_indices(section) if self.lines[i].name == key]
        if matches:
            self.lines[matches[0]] = new_line
            for i in reversed(matches[1:]):
                del self.lines[i]
            return

        start, end = self._blocks(section)[-1]
        insert_at = end
        while insert_at - 1 > start and self.lines[insert_at - 1].kind is LineKind.BLANK:
            insert_at -= 1
        self.lines.insert(insert_at, new_line)

    def remove_section(self, section: str) -> None:
        blocks = self._blocks(section)
        if not blocks:
            raise SectionNotFoundError(f"Section not found: {section}")
        for start, end in reversed(blocks):
            del self.lines[start:end]

    def remove_key(self, section: str, key: str) -> None:
        matches = [i for i in self._entry_indices(section) if self.lines[i].name == key]
        if not matches:
            raise KeyNotFoundError(f"Key not found: {key} in section: {section}")
        for i in reversed(matches):
            del self.lines[i]

    def rename_section(self, old: str, new: str) -> None:
        if not self.has_section(old):
            raise SectionNotFoundError(f"Section not found: {old}")
        if self.has_section(new):
            raise SectionExistsError(f"Section already exists: {new}")
        for i, line in enumerate(self.lines):
            if line.kind is LineKind.SECTION and line.name == old:
                self.lines[i] = IniLine.header(new)

    def clone_section(self, src: str, dst: str) -> None:
        source = self.entries(src)
        if self.has_section(dst):
            raise SectionExistsError(f"Section already exists: {dst}")
        self.add_section(dst)
        for line in source:
            self.lines.append(IniLine.entry(line.name, line.value))


def iter_sections(path: Path) -> Iterator[str]:
    """Lazily yield section names in file order. Each call starts a fresh pass."""
    if not path.is_file():
        raise ConfFileNotFoundError(f"File not found: {path}")

    def _scan() -> Iterator[str]:
        with path.open("r", encoding="utf-8") as f:
            for raw in f:
                line = IniLine.parse(raw.rstrip("\n"))
                if line.kind is LineKind.SECTION:
                    yield line.name

    return _scan()


class IniFile:
    """
    Path-bound INI operations.

    Read-type operations fail with ConfFileNotFoundError when the file is
    missing; write-type operations create it. Names are validated against
    the IniSettings flags before the file is touched.
    """

    def __init__(self, path: Path, settings: Optional[IniSettings] = None, audit: Optional[AuditLogger] = None):
        self.path = Path(path)
        self.settings = settings or IniSettings()
        self.audit = audit or AuditLogger(None)

    def _check_section(self, section: str) -> str:
        return validate_section_name(section, self.settings.strict, self.settings.allow_spaces_in_names)

    def _check_key(self, key: str) -> str:
        return validate_key_name(key, self.settings.strict, self.settings.allow_spaces_in_names)

    def _load(self) -> IniDocument:
        return IniDocument.load(self.path)

    def _load_or_create(self) -> IniDocument:
        ensure_file(self.path)
        return self._load()

    def _save(self, doc: IniDocument) -> None:
        atomic_write_lines(self.path, doc.to_lines())

    # -- reads ------------------------------------------------------------

    def read(self, section: str, key: str) -> str:
        """Return the unquoted value of key in section."""
        self._check_section(section)
        self._check_key(key)
        return self._load().get(section, key)

    def get_or_default(self, section: str, key: str, default: str = "") -> str:
        try:
            return self.read(section, key)
        except (NotFoundError, ValidationError):
            return default

    def list_sections(self) -> Iterator[str]:
        return iter_sections(self.path)

    def list_keys(self, section: str) -> List[str]:
        self._check_section(section)
        return self._load().keys(section)

    def items(self, section: str) -> Dict[str, str]:
        """All decoded key/value pairs of a section, in occurrence order."""
        self._check_section(section)
        return self._load().items(section)

    def section_exists(self, section: str) -> bool:
        try:
            self._check_section(section)
            return self._load().has_section(section)
        except (NotFoundError, ValidationError):
            return False

    def key_exists(self, section: str, key: str) -> bool:
        try:
            self.read(section, key)
            return True
        except (NotFoundError, ValidationError):
            return False

    def get_array_value(self, section: str, key: str) -> List[str]:
        return split_array(self.read(section, key))

    # -- writes -----------------------------------------------------------

    def add_section(self, section: str) -> bool:
        self._check_section(section)
        doc = self._load_or_create()
        if not doc.add_section(section):
            return False
        self._save(doc)
        self.audit.log("ini.section.add", file=str(self.path), section=section)
        return True

    def write(self, section: str, key: str, value: str) -> None:
        """Upsert key=value in section, creating the file and section when needed."""
        self._check_section(section)
        self._check_key(key)
        if value == "" and not self.settings.allow_empty_values:
            raise EmptyValueError(f"Empty values are not allowed: {section}.{key}")
        doc = self._load_or_create()
        doc.set(section, key, value)
        self._save(doc)
        self.audit.log("ini.write", file=str(self.path), section=section, key=key)

    def write_many(self, section: str, values: Dict[str, str]) -> None:
        """Upsert several keys of one section in a single file swap."""
        self._check_section(section)
        for key, value in values.items():
            self._check_key(key)
            if value == "" and not self.settings.allow_empty_values:
                raise EmptyValueError(f"Empty values are not allowed: {section}.{key}")
        doc = self._load_or_create()
        for key, value in values.items():
            doc.set(section, key, value)
        self._save(doc)
        self.audit.log("ini.write", file=str(self.path), section=section, keys=list(values))

    def set_array_value(self, section: str, key: str, items: List[str]) -> None:
        self.write(section, key, join_array(items))

    def remove_section(self, section: str) -> None:
        self._check_section(section)
        doc = self._load()
        doc.remove_section(section)
        self._save(doc)
        self.audit.log("ini.section.remove", file=str(self.path), section=section)

    def remove_key(self, section: str, key: str) -> None:
        self._check_section(section)
        self._check_key(key)
        doc = self._load()
        doc.remove_key(section, key)
        self._save(doc)
        self.audit.log("ini.key.remove", file=str(self.path), section=section, key=key)

    def rename_section(self, old: str, new: str) -> None:
        self._check_section(old)
        self._check_section(new)
        doc = self._load()
        doc.rename_section(old, new)
        self._save(doc)
        self.audit.log("ini.section.rename", file=str(self.path), old=old, new=new)

    def clone_section(self, src: str, dst: str) -> None:
        self._check_section(src)
        self._check_section(dst)
        doc = self._load()
        doc.clone_section(src, dst)
        self._save(doc)
        self.audit.log("ini.section.clone", file=str(self.path), src=src, dst=dst)

    # -- environment ------------------------------------------------------

    def _env_pairs(self, prefix: Optional[str], section: Optional[str]) -> List[Tuple[str, str]]:
        doc = self._load()
        if section is not None:
            self._check_section(section)
            sections = [section]
        else:
            sections = list(dict.fromkeys(doc.sections()))
        pairs = []
        for sec in sections:
            for key, value in doc.items(sec).items():
                pairs.append((derive_var_name(prefix, sec, key), value))
        return pairs

    def expose_env(
        self,
        prefix: Optional[str] = None,
        section: Optional[str] = None,
        environ: Optional[MutableMapping[str, str]] = None,
    ) -> Dict[str, str]:
        """Bind every entry to ``[PREFIX_]SECTION_KEY`` in the environment."""
        env = os.environ if environ is None else environ
        exposed = dict(self._env_pairs(prefix, section))
        env.update(exposed)
        return exposed

    def destroy_env(
        self,
        prefix: Optional[str] = None,
        section: Optional[str] = None,
        environ: Optional[MutableMapping[str, str]] = None,
    ) -> List[str]:
        """Unbind the names expose_env would have bound."""
        env = os.environ if environ is None else environ
        names = [name for name, _ in self._env_pairs(prefix, section)]
        for name in names:
            env.pop(name, None)
        return names
