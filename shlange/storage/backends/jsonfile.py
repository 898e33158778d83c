"""
Single-file JSON backend.
The whole keyspace is one JSON object on disk. Every write rewrites the
file through a temp file + rename so a crash never leaves half a document.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from shlange.errors import StorageError
from shlange.storage.backends.base import KeyValueBackend

logger = logging.getLogger(__name__)


class JsonFileBackend(KeyValueBackend):
    """Durable key-value storage in one portable JSON file."""

    def __init__(self, path: str, quota_bytes: int = 0):
        self.path = Path(path)
        self.quota_bytes = quota_bytes
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create storage directory {self.path.parent}: {e}") from e

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"{self.path} does not hold a JSON object")
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _dump(self, data: dict[str, str]) -> None:
        payload = json.dumps(data, ensure_ascii=False, indent=2)
        if self.quota_bytes and len(payload.encode()) > self.quota_bytes:
            raise StorageError(f"Storage quota exceeded ({self.quota_bytes} bytes)")
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, self.path)
        except OSError as e:
            raise StorageError(f"Cannot write {self.path}: {e}") from e

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._dump(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._dump(data)

    def clear(self) -> None:
        self._dump({})
        logger.debug("Cleared %s", self.path)

    def keys(self) -> list[str]:
        return list(self._load())

    def __repr__(self) -> str:
        return f"<JsonFileBackend path={str(self.path)!r}>"
