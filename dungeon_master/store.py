"""Key-value substrate.

A durable string-keyed store with synchronous get/set. The only guarantee is
single-key atomicity: a `set` either fully replaces the value or leaves the
old one in place.

Two implementations are provided:

    FileStore    — one file per key under a base directory. Survives restarts.
    MemoryStore  — a dict. Used by tests and throwaway runs.

Both accept an optional byte quota, the way browser local storage caps each
origin. A write that would exceed the quota raises QuotaExceededError and
leaves the store unchanged.
"""

from __future__ import annotations

import hashlib
import json
import os
import re
import unicodedata
from pathlib import Path
from typing import Protocol

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024


class StorageError(RuntimeError):
    """Raised when the substrate cannot persist a value."""


class QuotaExceededError(StorageError):
    """Raised when a write would push the store past its byte quota."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


def _entry_size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


# ---------------------------------------------------------------------------
# MemoryStore
# ---------------------------------------------------------------------------

class MemoryStore:
    def __init__(self, quota_bytes: int | None = None) -> None:
        self._data: dict[str, str] = {}
        self._quota = quota_bytes

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self._quota is not None:
            used = sum(_entry_size(k, v) for k, v in self._data.items() if k != key)
            if used + _entry_size(key, value) > self._quota:
                raise QuotaExceededError(
                    f"Writing {key!r} would exceed the {self._quota}-byte quota"
                )
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


# ---------------------------------------------------------------------------
# FileStore
# ---------------------------------------------------------------------------

def key_filename(key: str) -> str:
    """Map a key to a filesystem-safe filename.

    "dnd_chat_CAMPAIGN-1" → "dnd_chat_campaign-1-<hash>.json"

    The short hash keeps keys distinct that slug to the same text
    (room codes differing only in punctuation or case).
    """
    text = unicodedata.normalize("NFKD", key)
    text = text.encode("ascii", "ignore").decode("ascii").lower()
    text = re.sub(r"[^a-z0-9_]+", "-", text).strip("-") or "key"
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:8]
    return f"{text}-{digest}.json"


class FileStore:
    """One JSON file per key: {"key": <original key>, "value": <string>}."""

    def __init__(self, base_path: Path, quota_bytes: int | None = None) -> None:
        self._base = base_path
        self._base.mkdir(parents=True, exist_ok=True)
        self._quota = quota_bytes

    def _path(self, key: str) -> Path:
        return self._base / key_filename(key)

    def _read_entry(self, path: Path) -> dict:
        return json.loads(path.read_text(encoding="utf-8"))

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.is_file():
            return None
        try:
            raw = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise StorageError(f"Cannot read {key!r}: {e}") from e
        try:
            entry = json.loads(raw)
        except json.JSONDecodeError:
            # Damaged wrapper: hand back the raw text and let the caller's
            # parser reject it.
            return raw
        value = entry.get("value") if isinstance(entry, dict) else None
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        if self._quota is not None:
            used = self._used_bytes(exclude=key)
            if used + _entry_size(key, value) > self._quota:
                raise QuotaExceededError(
                    f"Writing {key!r} would exceed the {self._quota}-byte quota"
                )
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps({"key": key, "value": value}), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise StorageError(f"Cannot write {key!r}: {e}") from e

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def keys(self) -> list[str]:
        result = []
        for path in sorted(self._base.glob("*.json")):
            try:
                entry = self._read_entry(path)
            except (OSError, json.JSONDecodeError):
                continue
            if isinstance(entry, dict) and isinstance(entry.get("key"), str):
                result.append(entry["key"])
        return result

    def _used_bytes(self, exclude: str) -> int:
        total = 0
        for key in self.keys():
            if key == exclude:
                continue
            value = self.get(key)
            if value is not None:
                total += _entry_size(key, value)
        return total
