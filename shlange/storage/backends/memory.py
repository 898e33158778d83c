"""In-process backend. Backs the session substrate and most tests."""

from __future__ import annotations

from shlange.errors import StorageError
from shlange.storage.backends.base import KeyValueBackend


class MemoryBackend(KeyValueBackend):
    """
    Dict-backed storage that disappears with the process.
    quota_bytes > 0 caps the total size of keys + values, mimicking a
    browser storage quota.
    """

    def __init__(self, quota_bytes: int = 0):
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}

    def _size_with(self, key: str, value: str) -> int:
        total = len(key.encode()) + len(value.encode())
        for k, v in self._data.items():
            if k != key:
                total += len(k.encode()) + len(v.encode())
        return total

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"Value for '{key}' must be a string")
        if self.quota_bytes and self._size_with(key, value) > self.quota_bytes:
            raise StorageError(f"Storage quota exceeded ({self.quota_bytes} bytes)")
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def keys(self) -> list[str]:
        return list(self._data)
