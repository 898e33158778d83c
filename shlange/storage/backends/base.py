"""
KeyValueBackend — abstract base for the durable/session substrate.

Values are plain strings; the store decides how to encode them (JSON blobs
for conversations and personas, bare strings for flags and tokens).
Backends only move strings around and raise StorageError on any failure.
There is no field-level update: callers read the whole value, change it
and write it back.
"""

from abc import ABC, abstractmethod


class KeyValueBackend(ABC):
    """Abstract string key-value storage."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing anything already there."""
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete key. Removing a missing key is not an error."""
        ...

    @abstractmethod
    def clear(self) -> None:
        """Delete every key."""
        ...

    @abstractmethod
    def keys(self) -> list[str]:
        """Return all stored keys."""
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"
