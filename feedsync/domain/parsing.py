# feedsync/domain/parsing.py
from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any

_NUMERIC_RE = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?\s*$")
_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")
_UNICODE_ESCAPE_RE = re.compile(r"\\u(d[89ab][0-9a-f]{2})\\u(d[c-f][0-9a-f]{2})|\\u([0-9a-f]{4})", re.IGNORECASE)
_CAMEL_RE = re.compile(r"([a-z])([A-Z])")
_NON_WORD_RE = re.compile(r"[^A-Za-z0-9]+")

_TRUE = {"1", "true", "yes", "y", "t"}
_FALSE = {"0", "false", "no", "n", "f"}

# escapes whose backslash was eaten somewhere upstream
_BARE_ESCAPES = {
    "u00a3": "£",
    "u00a0": " ",
    "u2019": "'",
    "u2018": "'",
    "u201c": '"',
    "u201d": '"',
}

_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
)


def is_numeric(v: Any) -> bool:
    if isinstance(v, bool):
        return False
    if isinstance(v, (int, float)):
        return True
    return isinstance(v, str) and bool(_NUMERIC_RE.match(v))


def parse_number(v: Any) -> float | None:
    """
    Lenient numeric parse for feed values like "£1,250.50" or "1200 sq ft".
    Returns None for empty or ambiguous input (a bare "-" or ".").
    """
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v)
    if not isinstance(v, str):
        return None
    if v == "":
        return None
    if _NUMERIC_RE.match(v):
        return float(v)

    clean = _NON_NUMERIC_RE.sub("", v)
    if clean in ("", "-", "."):
        return None
    try:
        return float(clean)
    except ValueError:
        return None


def parse_int(v: Any) -> int | None:
    num = parse_number(v)
    if num is None or math.isnan(num) or math.isinf(num):
        return None
    # half away from zero, not banker's rounding
    return int(math.copysign(math.floor(abs(num) + 0.5), num))


def tri_state_bool(v: Any) -> bool | None:
    if isinstance(v, bool):
        return v
    if v is None or v == "":
        return None
    s = str(v).strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    return None


def _escape_char(m: re.Match) -> str:
    if m.group(1):
        hi, lo = int(m.group(1), 16), int(m.group(2), 16)
        return chr(0x10000 + ((hi - 0xD800) << 10) + (lo - 0xDC00))
    code = int(m.group(3), 16)
    # a lone surrogate cannot be encoded as utf-8
    if 0xD800 <= code <= 0xDFFF:
        return "\ufffd"
    return chr(code)


def decode_unicode_escapes(s: str) -> str:
    """Turn literal \\u00a3 style sequences (the feed emits these inside text nodes) into characters."""
    if not s or "\\u" not in s:
        return s
    return _UNICODE_ESCAPE_RE.sub(_escape_char, s)


def clean_unicode_string(s: str) -> str:
    if not s:
        return s
    out = decode_unicode_escapes(s)
    for bare, char in _BARE_ESCAPES.items():
        out = out.replace(bare, char)
    return out


def snake_case(key: Any) -> str:
    s = _CAMEL_RE.sub(r"\1_\2", str(key))
    return _NON_WORD_RE.sub("_", s).lower()


def to_snake_case_keys(data: Any) -> Any:
    """Recursively rename mapping keys to snake_case. Lists keep their order and shape."""
    if isinstance(data, dict):
        return {snake_case(k): to_snake_case_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [to_snake_case_keys(v) for v in data]
    return data


def get_first(payload: dict[str, Any], *keys: str) -> Any:
    """Return first non-empty key from payload."""
    for k in keys:
        v = payload.get(k)
        if v is None:
            continue
        if isinstance(v, str) and not v.strip():
            continue
        if isinstance(v, (list, dict)) and not v:
            continue
        return v
    return None


def get_nested(payload: dict[str, Any], path: str) -> Any:
    """Tiny dot-path getter: 'rent_components.from' or 'street_view_data.lat'."""
    cur: Any = payload
    for part in path.split("."):
        if not isinstance(cur, dict):
            return None
        cur = cur.get(part)
        if cur is None:
            return None
    return cur


def ensure_aware_utc(dt: datetime) -> datetime:
    """
    SQLite + SQLAlchemy hands back naive datetimes even when we stored UTC.
    If naive, assume it's UTC and attach tzinfo so comparisons don't explode.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(v: Any) -> datetime | None:
    """
    Parse feed/stored modification stamps into aware UTC datetimes so they can be
    compared regardless of the string format each side used.
    """
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, datetime):
        return ensure_aware_utc(v)
    if isinstance(v, (int, float)):
        try:
            return datetime.fromtimestamp(float(v), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    s = str(v).strip()
    if not s:
        return None
    if s.isdigit() and len(s) >= 9:
        try:
            return datetime.fromtimestamp(int(s), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    iso = s[:-1] + "+00:00" if s.endswith(("Z", "z")) else s
    try:
        return ensure_aware_utc(datetime.fromisoformat(iso))
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
