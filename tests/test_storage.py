"""
Tests for the persona-scoped conversation store.
Run with: pytest tests/test_storage.py
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from shlange.errors import StorageError
from shlange.personas import KNOWN_PERSONA_IDS
from shlange.storage.backends.memory import MemoryBackend
from shlange.storage.conversation_store import ConversationStore
from shlange.storage.models import Message, PersonaConfig, Snapshot


@pytest.fixture
def store():
    """A fresh in-memory store for each test."""
    return ConversationStore(MemoryBackend())


class BrokenBackend(MemoryBackend):
    """Reads work, every write fails."""

    def set(self, key, value):
        raise StorageError("disk on fire")

    def remove(self, key):
        raise StorageError("disk on fire")

    def clear(self):
        raise StorageError("disk on fire")


# ---------------------------------------------------------------------------
# Conversation logs
# ---------------------------------------------------------------------------

def test_empty_log_for_new_persona(store):
    assert store.get_log("companion") == []
    assert store.get_log("never-heard-of-it") == []


def test_append_preserves_call_order(store):
    """Sequential appends come back in call order."""
    texts = ["one", "two", "three", "four"]
    for i, text in enumerate(texts):
        role = "user" if i % 2 == 0 else "assistant"
        assert store.append_message("code", Message(role=role, text=text))

    log = store.get_log("code")
    assert [m.text for m in log] == texts
    assert [m.role for m in log] == ["user", "assistant", "user", "assistant"]


def test_append_fills_missing_timestamp(store):
    store.append_message("study", {"role": "user", "text": "hi"})
    (msg,) = store.get_log("study")
    assert msg.timestamp
    datetime.fromisoformat(msg.timestamp)


def test_append_keeps_given_timestamp(store):
    store.append_message("study", Message(role="user", text="hi", timestamp="2024-01-01T10:00:00+00:00"))
    assert store.get_log("study")[0].timestamp == "2024-01-01T10:00:00+00:00"


def test_append_rejects_bad_role(store):
    result = store.append_message("companion", {"role": "system", "text": "nope"})
    assert not result
    assert "role" in result.error
    assert store.get_log("companion") == []


def test_append_failure_is_reported_not_raised():
    """A quota error comes back as a failed result."""
    store = ConversationStore(MemoryBackend(quota_bytes=64))
    result = store.append_message("companion", Message(role="user", text="x" * 200))
    assert not result
    assert "quota" in result.error
    assert store.get_log("companion") == []


def test_clear_log_leaves_other_personas(store):
    store.append_message("companion", Message(role="user", text="a"))
    store.append_message("code", Message(role="user", text="b"))

    assert store.clear_log("companion")
    assert store.get_log("companion") == []
    assert [m.text for m in store.get_log("code")] == ["b"]


def test_clear_all_logs(store):
    store.append_message("companion", Message(role="user", text="a"))
    store.append_message("custom", Message(role="user", text="b"))

    assert store.clear_all_logs()
    for pid in (*KNOWN_PERSONA_IDS, "custom"):
        assert store.get_log(pid) == []


def test_corrupt_conversations_read_as_empty(store):
    store.durable.set("conversations", "{not json")
    assert store.get_log("companion") == []


def test_corrupt_conversations_replaced_on_append(store):
    store.durable.set("conversations", "[1, 2, 3]")
    assert store.append_message("companion", Message(role="user", text="fresh"))
    assert [m.text for m in store.get_log("companion")] == ["fresh"]


def test_malformed_entries_are_skipped(store):
    store.durable.set("conversations", json.dumps({
        "companion": [
            {"role": "user", "text": "ok", "timestamp": "2024-01-01T00:00:00+00:00"},
            {"role": "robot", "text": "bad"},
            "garbage",
            {"role": "assistant", "text": "also ok", "timestamp": "2024-01-01T00:00:01+00:00"},
        ]
    }))
    assert [m.text for m in store.get_log("companion")] == ["ok", "also ok"]


def test_legacy_type_field_is_read(store):
    store.durable.set("conversations", json.dumps({
        "companion": [
            {"type": "user", "text": "hey", "timestamp": "2024-01-01T00:00:00.000Z"},
            {"type": "ai", "text": "hello!", "timestamp": "2024-01-01T00:00:01.000Z"},
        ]
    }))
    log = store.get_log("companion")
    assert [(m.role, m.text) for m in log] == [("user", "hey"), ("assistant", "hello!")]


# ---------------------------------------------------------------------------
# Persona configuration
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("persona_id", KNOWN_PERSONA_IDS)
def test_known_personas_have_defaults(store, persona_id):
    cfg = store.get_persona_config(persona_id)
    assert cfg.id == persona_id
    assert cfg.display_name
    assert cfg.system_prompt
    assert 1 <= cfg.tone <= 10


def test_default_is_not_persisted_on_read(store):
    store.get_persona_config("companion")
    assert store.durable.get("personas") is None


def test_unknown_persona_gets_generic_fallback(store):
    cfg = store.get_persona_config("poet")
    assert cfg.display_name == "Poet"
    assert cfg.personality == "Helpful"
    assert cfg.tone == 5
    assert cfg.system_prompt == ""


def test_save_persona_overwrites_wholesale(store):
    store.save_persona_config("companion", PersonaConfig(
        id="companion", display_name="Buddy", personality="Chill", tone=8, system_prompt="Be chill.",
    ))
    store.save_persona_config("companion", {"name": "Pal", "tone": 3})

    cfg = store.get_persona_config("companion")
    assert cfg.display_name == "Pal"
    assert cfg.tone == 3
    assert cfg.system_prompt == ""
    assert cfg.personality == "Helpful"


def test_invalid_stored_persona_falls_back(store):
    store.durable.set("personas", json.dumps({"code": {"tone": 4}}))
    assert store.get_persona_config("code").display_name == "Code Buddy"


def test_current_persona_defaults_to_companion(store):
    assert store.get_current_persona_id() == "companion"
    store.set_current_persona_id("study")
    assert store.get_current_persona_id() == "study"


# ---------------------------------------------------------------------------
# Admin session
# ---------------------------------------------------------------------------

def test_token_without_expiry_is_expired(store):
    store.set_admin_token("tok")
    assert store.is_admin_token_expired()


def test_no_token_is_expired(store):
    assert store.is_admin_token_expired()


def test_token_expired_an_hour_ago(store):
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    store.set_admin_token("tok", past.isoformat())
    assert store.is_admin_token_expired()


def test_token_expiring_in_an_hour(store):
    future = datetime.now(timezone.utc) + timedelta(hours=1)
    store.set_admin_token("tok", future.isoformat())
    assert not store.is_admin_token_expired()


def test_zulu_expiry_is_parsed(store):
    store.set_admin_token("tok", "2099-01-01T00:00:00Z")
    assert not store.is_admin_token_expired()


def test_garbage_expiry_counts_as_expired(store):
    store.set_admin_token("tok", "next tuesday")
    assert store.is_admin_token_expired()


def test_naive_now_is_taken_as_utc(store):
    store.set_admin_token("tok", "2030-01-01T00:00:00+00:00")
    assert not store.is_admin_token_expired(now=datetime(2029, 12, 31, 23, 0))
    assert store.is_admin_token_expired(now=datetime(2030, 1, 1, 1, 0))


def test_session_flag_and_token_live_in_different_backends(store):
    store.set_admin_authenticated_flag(True)
    store.set_admin_token("tok", "2099-01-01T00:00:00+00:00")

    assert store.session.get("adminAuth") == "true"
    assert store.durable.get("adminAuth") is None
    assert store.durable.get("adminToken") == "tok"

    session = store.get_admin_session()
    assert session.authenticated
    assert session.token == "tok"


def test_flag_and_token_can_disagree(store):
    """A stale flag does not make an expired token valid."""
    store.set_admin_authenticated_flag(True)
    store.set_admin_token("tok", "2000-01-01T00:00:00+00:00")
    assert store.is_admin_authenticated()
    assert store.is_admin_token_expired()


def test_clear_admin_token(store):
    store.set_admin_token("tok", "2099-01-01T00:00:00+00:00")
    store.clear_admin_token()
    assert store.get_admin_token() is None
    assert store.get_admin_token_expiry() is None


# ---------------------------------------------------------------------------
# Export / import
# ---------------------------------------------------------------------------

def test_export_includes_untouched_personas(store):
    snap = store.export_snapshot()
    assert set(KNOWN_PERSONA_IDS) <= set(snap.logs)
    assert set(KNOWN_PERSONA_IDS) <= set(snap.personas)
    assert snap.personas["code"].display_name == "Code Buddy"
    data = snap.to_dict()
    assert set(data) == {"conversations", "personas", "exportDate"}


def test_export_import_round_trip(store):
    store.append_message("companion", Message(role="user", text="hello"))
    store.append_message("companion", Message(role="assistant", text="hi there"))
    store.append_message("study", Message(role="user", text="explain entropy"))
    store.save_persona_config("code", {"name": "Hacker", "personality": "Terse", "tone": 2, "systemPrompt": "Be terse."})

    exported = store.export_snapshot()
    fresh = ConversationStore(MemoryBackend())
    assert fresh.import_snapshot(json.loads(json.dumps(exported.to_dict())))

    for pid in exported.logs:
        assert fresh.get_log(pid) == exported.logs[pid]
        assert fresh.get_persona_config(pid) == exported.personas[pid]


def test_import_snapshot_object(store):
    snap = Snapshot(logs={"code": [Message(role="user", text="x", timestamp="2024-01-01T00:00:00+00:00")]})
    assert store.import_snapshot(snap)
    assert store.get_log("code")[0].text == "x"


@pytest.mark.parametrize("payload", [
    "not an object",
    None,
    42,
    [],
    {"unrelated": True},
    {"conversations": "nope"},
    {"conversations": {"companion": [{"role": "user", "text": "ok"}, {"role": "bad"}]}},
    {"conversations": {}, "personas": {"code": "nope"}},
])
def test_import_malformed_changes_nothing(store, payload):
    store.append_message("companion", Message(role="user", text="keep me"))
    before = dict(store.durable._data)

    result = store.import_snapshot(payload)

    assert not result
    assert result.error
    assert store.durable._data == before


def test_import_backup_from_older_app(store):
    backup = {
        "conversations": {
            "companion": [
                {"type": "user", "text": "good morning", "timestamp": "2024-03-01T08:00:00.000Z"},
                {"type": "ai", "text": "Morning! Sleep well?", "timestamp": "2024-03-01T08:00:02.000Z"},
            ],
            "code": [],
        },
        "personas": {
            "companion": {"name": "Buddy", "personality": "Warm", "tone": 7, "systemPrompt": "Be kind."},
        },
        "exportDate": "2024-03-01T09:00:00.000Z",
    }
    result = store.import_snapshot(backup)

    assert result, result.error
    log = store.get_log("companion")
    assert [(m.role, m.text) for m in log] == [
        ("user", "good morning"),
        ("assistant", "Morning! Sleep well?"),
    ]
    assert store.get_persona_config("companion").display_name == "Buddy"


def test_import_only_touches_present_keys(store):
    store.save_persona_config("code", {"name": "Mine"})
    store.import_snapshot({"conversations": {"companion": [{"role": "user", "text": "imported"}]}})

    assert store.get_persona_config("code").display_name == "Mine"
    assert [m.text for m in store.get_log("companion")] == ["imported"]


def test_import_rolls_back_on_write_failure():
    class FailOnPersonas(MemoryBackend):
        def set(self, key, value):
            if key == "personas":
                raise StorageError("quota exceeded")
            super().set(key, value)

    store = ConversationStore(FailOnPersonas())
    store.append_message("companion", Message(role="user", text="original"))

    result = store.import_snapshot({
        "conversations": {"companion": [{"role": "user", "text": "replaced"}]},
        "personas": {"companion": {"name": "X"}},
    })

    assert not result
    assert [m.text for m in store.get_log("companion")] == ["original"]


# ---------------------------------------------------------------------------
# Failure policy / misc
# ---------------------------------------------------------------------------

def test_write_failures_never_raise():
    store = ConversationStore(BrokenBackend(), session=BrokenBackend())
    assert not store.append_message("companion", Message(role="user", text="x"))
    assert not store.clear_log("companion")
    assert not store.clear_all_logs()
    assert not store.save_persona_config("companion", {"name": "X"})
    assert not store.set_current_persona_id("code")
    assert not store.set_admin_authenticated_flag(True)
    assert not store.set_admin_token("tok", "2099-01-01T00:00:00Z")
    assert not store.clear_admin_token()
    assert not store.update_settings({"theme": "red"})
    assert not store.clear_everything()
    assert store.get_current_persona_id() == "companion"


def test_clear_everything(store):
    store.append_message("companion", Message(role="user", text="x"))
    store.set_admin_authenticated_flag(True)
    store.set_admin_token("tok", "2099-01-01T00:00:00Z")

    assert store.clear_everything()
    assert store.get_log("companion") == []
    assert not store.is_admin_authenticated()
    assert store.get_admin_token() is None


def test_settings_shallow_merge(store):
    assert store.get_settings() == {"companionName": "Companion", "theme": "blue"}
    store.update_settings({"theme": "green"})
    assert store.get_settings() == {"companionName": "Companion", "theme": "green"}


def test_from_config_builds_jsonfile_store(tmp_path):
    cfg = {"storage": {"backend": "jsonfile", "path": str(tmp_path / "s.json")}}
    store = ConversationStore.from_config(cfg)
    store.append_message("code", Message(role="user", text="persisted"))

    reopened = ConversationStore.from_config(cfg)
    assert [m.text for m in reopened.get_log("code")] == ["persisted"]
