# feedsync/domain/address.py
from __future__ import annotations

import re
import unicodedata
from typing import Any

from .parsing import get_first

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9\s-]")
_SLUG_DASH_RE = re.compile(r"[\s_-]+")


def outward_postcode(postcode: Any) -> str | None:
    """UK outward code: everything before the first space ("EC1A 1BB" -> "EC1A")."""
    if not isinstance(postcode, str):
        return None
    pc = postcode.strip()
    if not pc:
        return None
    return pc.split(" ", 1)[0]


def build_title(payload: dict[str, Any]) -> str:
    """
    Display title: name + address1 + postcode (whatever is present).
    Falls back to the external id so a stored property always has a title.
    """
    parts = [
        str(payload.get(k)).strip()
        for k in ("name", "address1", "postcode")
        if isinstance(payload.get(k), str) and payload.get(k).strip()
    ]
    if parts:
        return " ".join(parts)
    ident = get_first(payload, "id", "external_id")
    return f"Property {ident}" if ident else "Property"


def slugify(title: str) -> str:
    s = unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode("ascii").lower()
    s = _SLUG_STRIP_RE.sub("", s)
    return _SLUG_DASH_RE.sub("-", s).strip("-")
