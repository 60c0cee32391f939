# feedsync/adapters/storage.py
from __future__ import annotations

import os
import re
from typing import Protocol

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_name(name: str, fallback: str = "image") -> str:
    base = os.path.basename(name.replace("\\", "/")).strip()
    base = _UNSAFE_RE.sub("-", base).strip(".-")
    return base[:200] or fallback


def _ensure_dir(p: str) -> None:
    os.makedirs(p, exist_ok=True)


class ImageStorage(Protocol):
    def save(self, data: bytes, suggested_name: str, entity_id: str) -> str: ...

    def list_entities(self) -> list[str]: ...


class LocalImageStorage:
    """
    Writes images under <root>/<entity>/<name>. The returned asset id is the path
    relative to root. Existing files are never overwritten: foo.jpg, foo-1.jpg, ...
    """

    def __init__(self, root: str):
        self.root = root

    def _unique_path(self, folder: str, name: str) -> str:
        stem, ext = os.path.splitext(name)
        candidate = os.path.join(folder, name)
        n = 1
        while os.path.exists(candidate):
            candidate = os.path.join(folder, f"{stem}-{n}{ext}")
            n += 1
        return candidate

    def save(self, data: bytes, suggested_name: str, entity_id: str) -> str:
        folder = os.path.join(self.root, sanitize_name(entity_id, fallback="unknown"))
        _ensure_dir(folder)
        path = self._unique_path(folder, sanitize_name(suggested_name))
        with open(path, "wb") as f:
            f.write(data)
        return os.path.relpath(path, self.root).replace(os.sep, "/")

    def list_entities(self) -> list[str]:
        if not os.path.isdir(self.root):
            return []
        return sorted(d for d in os.listdir(self.root) if os.path.isdir(os.path.join(self.root, d)))
