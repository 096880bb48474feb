"""String key-value stores backing the local adapter.

The local adapter only needs get/set/remove of whole string values, the same
surface a browser's localStorage offers.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Protocol

import redis


_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStore(Protocol):
    def get_item(self, key: str) -> str | None:  # pragma: no cover
        ...

    def set_item(self, key: str, value: str) -> None:  # pragma: no cover
        ...

    def remove_item(self, key: str) -> None:  # pragma: no cover
        ...


class FileKeyValueStore:
    """One UTF-8 file per key under `root`.

    Writes go to a sibling temp file first and are moved into place, so a
    crash mid-write leaves the previous value intact.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _path_for(self, key: str) -> Path:
        safe = _UNSAFE_KEY_CHARS.sub("_", key).strip(".")
        if not safe:
            raise ValueError(f"unusable storage key: {key!r}")
        return self.root / f"{safe}.json"

    def get_item(self, key: str) -> str | None:
        p = self._path_for(key)
        if not p.exists():
            return None
        return p.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        p = self._path_for(key)
        self.root.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(p.suffix + ".tmp")
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, p)

    def remove_item(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)


class RedisKeyValueStore:
    """Plain redis strings; handy when the "device" is a server process."""

    def __init__(self, *, r: redis.Redis, namespace: str = "gamestore:local") -> None:
        self._r = r
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def get_item(self, key: str) -> str | None:
        raw = self._r.get(self._key(key))
        if raw is None:
            return None
        return raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)

    def set_item(self, key: str, value: str) -> None:
        self._r.set(self._key(key), value)

    def remove_item(self, key: str) -> None:
        self._r.delete(self._key(key))
