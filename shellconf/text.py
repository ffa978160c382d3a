"""
Pure text primitives shared by the INI model and the flat key stores.

Nothing in here touches the filesystem: name validation, value quoting,
the quote-aware array splitter and environment-variable name derivation.
"""
import re
from typing import Iterable, List, Optional

from .errors import InvalidNameError

_REGEX_SPECIALS = frozenset("]\\/()$*.^|[+?{}")
_ILLEGAL_STRICT = ("[", "]", "=")
_KEY_LEADERS = "[#;"

_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r"}
_UNESCAPES = {"\\": "\\", '"': '"', "n": "\n", "r": "\r"}

_NON_UPPER_VAR = re.compile(r"[^A-Z0-9_]")
_NON_LOWER_VAR = re.compile(r"[^a-z0-9_]")


def trim(value: str) -> str:
    """Strip leading and trailing whitespace."""
    return value.strip()

def escape_for_regex(value: str) -> str:
    """Backslash-escape every character that is meaningful to a regex or sed pattern."""
    return "".join("\\" + ch if ch in _REGEX_SPECIALS else ch for ch in value)

def _validate_name(kind: str, name: str, strict: bool, allow_spaces: bool) -> str:
    if not name:
        raise InvalidNameError(f"{kind} name cannot be empty")
    if name != trim(name):
        raise InvalidNameError(f"{kind} name has leading or trailing whitespace: {name!r}")
    if "\n" in name or "\r" in name:
        raise InvalidNameError(f"{kind} name contains a line break: {name!r}")
    if strict and any(ch in name for ch in _ILLEGAL_STRICT):
        raise InvalidNameError(f"{kind} name contains illegal characters: {name}")
    if not allow_spaces and any(ch.isspace() for ch in name):
        raise InvalidNameError(f"{kind} name contains spaces: {name}")
    return name

def validate_section_name(name: str, strict: bool = False, allow_spaces: bool = True) -> str:
    """
    Return the section name unchanged or raise InvalidNameError.

    ``]`` is refused in every mode since it would end the header early.
    """
    name = _validate_name("Section", name, strict, allow_spaces)
    if "]" in name:
        raise InvalidNameError(f"Section name contains ']': {name}")
    return name

def validate_key_name(name: str, strict: bool = False, allow_spaces: bool = True) -> str:
    """
    Return the key name unchanged or raise InvalidNameError.

    In every mode a key may not contain ``=`` or start with ``[``, ``#`` or
    ``;``, as the line would no longer parse back as the same entry.
    """
    name = _validate_name("Key", name, strict, allow_spaces)
    if "=" in name:
        raise InvalidNameError(f"Key name contains '=': {name}")
    if name[0] in _KEY_LEADERS:
        raise InvalidNameError(f"Key name cannot start with {name[0]!r}: {name}")
    return name

def sanitize_upper_var_name(value: str) -> str:
    """Upper-case a name and replace anything outside [A-Z0-9_] with '_'."""
    return _NON_UPPER_VAR.sub("_", value.upper())

def sanitize_lower_var_name(value: str) -> str:
    """Lower-case a name and replace anything outside [a-z0-9_] with '_'."""
    return _NON_LOWER_VAR.sub("_", value.lower())

def derive_var_name(prefix: Optional[str], section: Optional[str], key: str) -> str:
    """
    Build the environment variable name for an INI entry.

    Shape is ``[PREFIX_][SECTION_]KEY``, upper-cased, with every
    non-alphanumeric character replaced by ``_``. Both expose and destroy
    paths go through here so the names always agree.
    """
    parts = [part for part in (prefix, section, key) if part]
    return sanitize_upper_var_name("_".join(parts))

def needs_quoting(value: str) -> bool:
    """True when a value must be double-quote wrapped to survive a round trip."""
    return any(ch.isspace() or ch in ',"' for ch in value)

def quote_value(value: str) -> str:
    """Wrap a value in double quotes, escaping backslashes, quotes and line breaks."""
    return '"' + "".join(_ESCAPES.get(ch, ch) for ch in value) + '"'

def _unescape(body: str) -> str:
    out: List[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body) and body[i + 1] in _UNESCAPES:
            out.append(_UNESCAPES[body[i + 1]])
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)

def unquote_value(raw: str) -> str:
    """Trim a raw value and, if it is quote-wrapped, strip the quotes and unescape it."""
    value = trim(raw)
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        return _unescape(value[1:-1])
    return value

def format_value(value: str) -> str:
    """Render a value the way it is stored on an INI line."""
    return quote_value(value) if needs_quoting(value) else value

def join_array(items: Iterable[str]) -> str:
    """
    Encode a sequence of strings as one comma-separated value.

    Elements with whitespace, commas or quotes are quoted individually;
    empty elements are written as ``""`` so they are not lost.
    """
    formatted = []
    for item in items:
        if item == "" or needs_quoting(item):
            formatted.append(quote_value(item))
        else:
            formatted.append(item)
    return ",".join(formatted)

def split_array(raw: str) -> List[str]:
    """
    Split a value produced by join_array back into its elements.

    Small state machine: commas only separate elements outside quotes,
    a backslash inside quotes escapes the next character.
    """
    if not raw.strip():
        return []

    items: List[str] = []
    buf: List[str] = []
    in_quotes = False
    escaped = False

    for ch in raw:
        if in_quotes:
            if escaped:
                buf.append(_UNESCAPES.get(ch, "\\" + ch))
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_quotes = False
            else:
                buf.append(ch)
        elif ch == '"':
            in_quotes = True
        elif ch == ",":
            items.append("".join(buf))
            buf = []
        elif ch.isspace():
            continue
        else:
            buf.append(ch)

    if escaped:
        buf.append("\\")
    items.append("".join(buf))
    return items
