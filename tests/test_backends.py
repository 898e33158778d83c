"""
Tests for the key-value storage backends.
Run with: pytest tests/test_backends.py
"""

import pytest

from shlange.errors import StorageError
from shlange.storage.backends import KeyValueBackend, make_backend
from shlange.storage.backends.jsonfile import JsonFileBackend
from shlange.storage.backends.memory import MemoryBackend
from shlange.storage.backends.sqlite import SQLiteBackend


@pytest.fixture(params=["memory", "jsonfile", "sqlite"])
def backend(request, tmp_path):
    """Each backend type, freshly created."""
    if request.param == "memory":
        return MemoryBackend()
    if request.param == "jsonfile":
        return JsonFileBackend(str(tmp_path / "kv.json"))
    return SQLiteBackend(str(tmp_path / "kv.db"))


# ---------------------------------------------------------------------------
# Shared contract
# ---------------------------------------------------------------------------

def test_get_missing_is_none(backend):
    assert backend.get("nope") is None


def test_set_get_overwrite(backend):
    backend.set("k", "v1")
    backend.set("k", "v2")
    assert backend.get("k") == "v2"


def test_remove(backend):
    backend.set("k", "v")
    backend.remove("k")
    backend.remove("k")  # removing twice is fine
    assert backend.get("k") is None


def test_clear_and_keys(backend):
    backend.set("a", "1")
    backend.set("b", "2")
    assert sorted(backend.keys()) == ["a", "b"]
    backend.clear()
    assert backend.keys() == []


def test_unicode_values(backend):
    backend.set("emoji", "💬 héllo")
    assert backend.get("emoji") == "💬 héllo"


# ---------------------------------------------------------------------------
# Per-backend behaviour
# ---------------------------------------------------------------------------

def test_memory_quota():
    b = MemoryBackend(quota_bytes=20)
    b.set("k", "small")
    with pytest.raises(StorageError, match="quota"):
        b.set("k2", "x" * 50)
    assert b.get("k2") is None


def test_jsonfile_survives_reopen(tmp_path):
    path = str(tmp_path / "nested" / "kv.json")
    JsonFileBackend(path).set("k", "v")
    assert JsonFileBackend(path).get("k") == "v"


def test_jsonfile_corrupt_file_raises_storage_error(tmp_path):
    path = tmp_path / "kv.json"
    path.write_text("{oops")
    with pytest.raises(StorageError):
        JsonFileBackend(str(path)).get("k")


def test_jsonfile_quota(tmp_path):
    b = JsonFileBackend(str(tmp_path / "kv.json"), quota_bytes=30)
    with pytest.raises(StorageError, match="quota"):
        b.set("k", "x" * 100)
    assert b.get("k") is None


def test_sqlite_survives_reopen(tmp_path):
    path = str(tmp_path / "kv.db")
    SQLiteBackend(path).set("k", "v")
    assert SQLiteBackend(path).get("k") == "v"


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def test_make_backend_by_name(tmp_path):
    assert isinstance(make_backend("memory"), MemoryBackend)
    b = make_backend("sqlite", path=str(tmp_path / "x.db"))
    assert isinstance(b, SQLiteBackend)
    assert isinstance(b, KeyValueBackend)


def test_make_backend_unknown():
    with pytest.raises(ValueError, match="Unknown storage backend"):
        make_backend("redis")
