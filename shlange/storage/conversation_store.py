"""
ConversationStore — persona-scoped persistence for chat history and settings.

This is the only thing allowed to write to the key-value substrate. It owns
two backends with different lifetimes:

  durable  conversations, personas, currentPersona, adminToken,
           adminTokenExpiry, settings
  session  adminAuth (gone when the process/session ends)

Every write is read-modify-write of a whole JSON blob; there is no locking,
so a single writer is assumed. Nothing here raises substrate errors to the
caller: reads fall back to defaults, writes return a failed StoreResult.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import datetime, timezone
from collections.abc import Iterable, Mapping
from typing import Any

from shlange.errors import StorageError, ValidationError
from shlange.personas import DEFAULT_PERSONA_ID, KNOWN_PERSONA_IDS, default_persona_config
from shlange.storage.backends import KeyValueBackend, make_backend
from shlange.storage.backends.memory import MemoryBackend
from shlange.storage.models import (
    AdminSession,
    Message,
    PersonaConfig,
    Snapshot,
    StoreResult,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

CONVERSATIONS_KEY = "conversations"
PERSONAS_KEY = "personas"
CURRENT_PERSONA_KEY = "currentPersona"
ADMIN_TOKEN_KEY = "adminToken"
ADMIN_TOKEN_EXPIRY_KEY = "adminTokenExpiry"
ADMIN_AUTH_KEY = "adminAuth"
SETTINGS_KEY = "settings"

DEFAULT_SETTINGS = {"companionName": "Companion", "theme": "blue"}

# What a read or write of the substrate can throw at us
_SUBSTRATE_ERRORS = (StorageError, ValueError, TypeError)


def parse_expiry(value: str | datetime) -> datetime:
    """Parse an ISO-8601 expiry. Naive values are taken as UTC."""
    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class ConversationStore:
    """Persona-scoped conversation and settings store."""

    def __init__(self, durable: KeyValueBackend, session: KeyValueBackend | None = None):
        self.durable = durable
        self.session = session if session is not None else MemoryBackend()

    @classmethod
    def from_config(cls, cfg: dict) -> "ConversationStore":
        """Build a store from the `storage` section of config.yaml."""
        storage_cfg = cfg.get("storage", {})
        backend_type = storage_cfg.get("backend", "jsonfile")
        kwargs: dict[str, Any] = {}
        if backend_type in ("jsonfile", "sqlite"):
            kwargs["path"] = storage_cfg.get("path") or "./data/shlange.json"
        if backend_type in ("jsonfile", "memory") and storage_cfg.get("quota_bytes"):
            kwargs["quota_bytes"] = int(storage_cfg["quota_bytes"])
        return cls(make_backend(backend_type, **kwargs))

    # ------------------------------------------------------------------
    # Blob helpers
    # ------------------------------------------------------------------

    def _read_blob(self, key: str) -> dict:
        raw = self.durable.get(key)
        if raw is None:
            return {}
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError(f"'{key}' does not hold a JSON object")
        return data

    def _read_blob_or_reset(self, key: str) -> dict:
        """Like _read_blob, but a corrupt blob is logged and treated as empty."""
        try:
            return self._read_blob(key)
        except ValueError as e:
            logger.error("Discarding corrupt '%s' data: %s", key, e)
            return {}

    def _write_blob(self, key: str, data: dict) -> None:
        self.durable.set(key, json.dumps(data, ensure_ascii=False))

    def _stored_ids(self, key: str) -> list[str]:
        try:
            return list(self._read_blob(key))
        except _SUBSTRATE_ERRORS as e:
            logger.error("Error listing '%s': %s", key, e)
            return []

    @staticmethod
    def _coerce_message(message: Message | Mapping[str, Any]) -> Message:
        if isinstance(message, Message):
            return Message.from_dict(message.to_dict())
        return Message.from_dict(message)

    # ------------------------------------------------------------------
    # Conversation logs
    # ------------------------------------------------------------------

    def known_persona_ids(self) -> tuple[str, ...]:
        return KNOWN_PERSONA_IDS

    def get_log(self, persona_id: str) -> list[Message]:
        """Ordered messages for a persona. Empty when missing or unreadable."""
        try:
            blob = self._read_blob(CONVERSATIONS_KEY)
        except _SUBSTRATE_ERRORS as e:
            logger.error("Error reading conversations: %s", e)
            return []

        entries = blob.get(persona_id) or []
        if not isinstance(entries, list):
            logger.error("Conversation for '%s' is not a list, ignoring it", persona_id)
            return []

        messages = []
        for i, entry in enumerate(entries):
            try:
                messages.append(Message.from_dict(entry))
            except ValidationError as e:
                logger.warning("Skipping message %d of '%s': %s", i, persona_id, e.message)
        return messages

    def append_message(self, persona_id: str, message: Message | Mapping[str, Any]) -> StoreResult:
        """Append to the end of the persona's log, stamping a timestamp if missing."""
        try:
            msg = self._coerce_message(message)
        except ValidationError as e:
            logger.error("Rejected message for '%s': %s", persona_id, e.message)
            return StoreResult.failure(e.message)

        if not msg.timestamp:
            msg = replace(msg, timestamp=utc_now_iso())

        try:
            blob = self._read_blob_or_reset(CONVERSATIONS_KEY)
            log = blob.get(persona_id)
            if not isinstance(log, list):
                log = []
            log.append(msg.to_dict())
            blob[persona_id] = log
            self._write_blob(CONVERSATIONS_KEY, blob)
        except _SUBSTRATE_ERRORS as e:
            logger.error("Error adding message to '%s': %s", persona_id, e)
            return StoreResult.failure(str(e))

        logger.debug("Stored %s message for '%s'", msg.role, persona_id)
        return StoreResult.success()

    def save_log(self, persona_id: str, messages: Iterable[Message | Mapping[str, Any]]) -> StoreResult:
        """Replace a persona's whole log."""
        try:
            entries = [self._coerce_message(m).to_dict() for m in messages]
        except ValidationError as e:
            logger.error("Rejected log for '%s': %s", persona_id, e.message)
            return StoreResult.failure(e.message)

        try:
            blob = self._read_blob_or_reset(CONVERSATIONS_KEY)
            blob[persona_id] = entries
            self._write_blob(CONVERSATIONS_KEY, blob)
        except _SUBSTRATE_ERRORS as e:
            logger.error("Error saving conversation for '%s': %s", persona_id, e)
            return StoreResult.failure(str(e))
        return StoreResult.success()

    def clear_log(self, persona_id: str) -> StoreResult:
        return self.save_log(persona_id, [])

    def clear_all_logs(self) -> StoreResult:
        """Empty every persona's log in one write."""
        ids = list(KNOWN_PERSONA_IDS)
        for pid in self._stored_ids(CONVERSATIONS_KEY):
            if pid not in ids:
                ids.append(pid)
        try:
            self._write_blob(CONVERSATIONS_KEY, {pid: [] for pid in ids})
        except _SUBSTRATE_ERRORS as e:
            logger.error("Error clearing all chat history: %s", e)
            return StoreResult.failure(str(e))
        return StoreResult.success()

    # ------------------------------------------------------------------
    # Persona configuration
    # ------------------------------------------------------------------

    def get_persona_config(self, persona_id: str) -> PersonaConfig:
        """Stored config if present, else a default. Reading never persists."""
        try:
            blob = self._read_blob(PERSONAS_KEY)
            if persona_id in blob:
                return PersonaConfig.from_dict(persona_id, blob[persona_id])
        except ValidationError as e:
            logger.warning("Stored persona '%s' is invalid, using default: %s", persona_id, e.message)
        except _SUBSTRATE_ERRORS as e:
            logger.error("Error reading persona for '%s': %s", persona_id, e)
        return default_persona_config(persona_id)

    def save_persona_config(
        self, persona_id: str, config: PersonaConfig | Mapping[str, Any]
    ) -> StoreResult:
        """Overwrite the stored config for persona_id with config."""
        try:
            if isinstance(config, PersonaConfig):
                cfg = PersonaConfig.from_dict(persona_id, config.to_dict())
            else:
                cfg = PersonaConfig.from_dict(persona_id, config)
        except ValidationError as e:
            logger.error("Rejected persona for '%s': %s", persona_id, e.message)
            return StoreResult.failure(e.message)

        try:
            blob = self._read_blob_or_reset(PERSONAS_KEY)
            blob[persona_id] = cfg.to_dict()
            self._write_blob(PERSONAS_KEY, blob)
        except _SUBSTRATE_ERRORS as e:
            logger.error("Error saving persona for '%s': %s", persona_id, e)
            return StoreResult.failure(str(e))
        return StoreResult.success()

    def get_current_persona_id(self) -> str:
        try:
            return self.durable.get(CURRENT_PERSONA_KEY) or DEFAULT_PERSONA_ID
        except StorageError as e:
            logger.error("Error reading current persona: %s", e)
            return DEFAULT_PERSONA_ID

    def set_current_persona_id(self, persona_id: str) -> StoreResult:
        try:
            self.durable.set(CURRENT_PERSONA_KEY, persona_id)
        except StorageError as e:
            logger.error("Error setting current persona: %s", e)
            return StoreResult.failure(e.message)
        return StoreResult.success()

    # ------------------------------------------------------------------
    # Admin session
    # ------------------------------------------------------------------

    def is_admin_authenticated(self) -> bool:
        try:
            return self.session.get(ADMIN_AUTH_KEY) == "true"
        except StorageError as e:
            logger.error("Error checking admin authentication: %s", e)
            return False

    def set_admin_authenticated_flag(self, authenticated: bool) -> StoreResult:
        try:
            self.session.set(ADMIN_AUTH_KEY, "true" if authenticated else "false")
        except StorageError as e:
            logger.error("Error setting admin authentication: %s", e)
            return StoreResult.failure(e.message)
        return StoreResult.success()

    def get_admin_token(self) -> str | None:
        try:
            return self.durable.get(ADMIN_TOKEN_KEY)
        except StorageError as e:
            logger.error("Error reading admin token: %s", e)
            return None

    def get_admin_token_expiry(self) -> str | None:
        try:
            return self.durable.get(ADMIN_TOKEN_EXPIRY_KEY)
        except StorageError as e:
            logger.error("Error reading admin token expiry: %s", e)
            return None

    def set_admin_token(self, token: str, expiry: str | datetime | None = None) -> StoreResult:
        """Persist the bearer token. A missing expiry means the token counts as expired."""
        try:
            self.durable.set(ADMIN_TOKEN_KEY, token)
            if expiry is None:
                self.durable.remove(ADMIN_TOKEN_EXPIRY_KEY)
            else:
                if isinstance(expiry, datetime):
                    expiry = parse_expiry(expiry).isoformat()
                self.durable.set(ADMIN_TOKEN_EXPIRY_KEY, expiry)
        except StorageError as e:
            logger.error("Error setting admin token: %s", e)
            return StoreResult.failure(e.message)
        return StoreResult.success()

    def clear_admin_token(self) -> StoreResult:
        try:
            self.durable.remove(ADMIN_TOKEN_KEY)
            self.durable.remove(ADMIN_TOKEN_EXPIRY_KEY)
        except StorageError as e:
            logger.error("Error clearing admin token: %s", e)
            return StoreResult.failure(e.message)
        return StoreResult.success()

    def is_admin_token_expired(self, now: datetime | None = None) -> bool:
        """True when no expiry is recorded or it is not in the future."""
        expiry = self.get_admin_token_expiry()
        if not expiry:
            return True
        try:
            expires_at = parse_expiry(expiry)
        except ValueError:
            logger.warning("Unparsable admin token expiry %r, treating as expired", expiry)
            return True
        return expires_at <= parse_expiry(now or datetime.now(timezone.utc))

    def get_admin_session(self) -> AdminSession:
        return AdminSession(
            authenticated=self.is_admin_authenticated(),
            token=self.get_admin_token(),
            token_expiry=self.get_admin_token_expiry(),
        )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_settings(self) -> dict:
        try:
            stored = self._read_blob(SETTINGS_KEY)
        except _SUBSTRATE_ERRORS as e:
            logger.error("Error reading settings: %s", e)
            stored = {}
        return {**DEFAULT_SETTINGS, **stored}

    def update_settings(self, changes: Mapping[str, Any]) -> StoreResult:
        """Shallow-merge changes into the stored settings."""
        if not isinstance(changes, Mapping):
            return StoreResult.failure("Settings must be an object")
        try:
            self._write_blob(SETTINGS_KEY, {**self.get_settings(), **changes})
        except _SUBSTRATE_ERRORS as e:
            logger.error("Error updating settings: %s", e)
            return StoreResult.failure(str(e))
        return StoreResult.success()

    # ------------------------------------------------------------------
    # Export / import / wipe
    # ------------------------------------------------------------------

    def export_snapshot(self) -> Snapshot:
        """Every known persona plus anything else stored, defaults filled in."""
        ids = list(KNOWN_PERSONA_IDS)
        for pid in self._stored_ids(CONVERSATIONS_KEY) + self._stored_ids(PERSONAS_KEY):
            if pid not in ids:
                ids.append(pid)
        return Snapshot(
            logs={pid: self.get_log(pid) for pid in ids},
            personas={pid: self.get_persona_config(pid) for pid in ids},
        )

    @staticmethod
    def _validate_import(data: Any) -> dict[str, str]:
        """
        Check an import payload and return {namespace: serialized blob}.
        Raises ValidationError; nothing is written here.
        """
        if not isinstance(data, Mapping):
            raise ValidationError(f"Import data must be an object, got {type(data).__name__}")

        conversations = data.get("conversations")
        if conversations is None:
            conversations = data.get("logs")
        personas = data.get("personas")
        if conversations is None and personas is None:
            raise ValidationError("Import data has neither conversations nor personas")

        plan: dict[str, str] = {}
        if conversations is not None:
            if not isinstance(conversations, Mapping):
                raise ValidationError("'conversations' must be an object")
            logs = {}
            for pid, entries in conversations.items():
                if not isinstance(entries, list):
                    raise ValidationError(f"Conversation '{pid}' must be a list")
                logs[str(pid)] = [
                    (e if isinstance(e, Message) else Message.from_dict(e)).to_dict()
                    for e in entries
                ]
            plan[CONVERSATIONS_KEY] = json.dumps(logs, ensure_ascii=False)

        if personas is not None:
            if not isinstance(personas, Mapping):
                raise ValidationError("'personas' must be an object")
            configs = {}
            for pid, cfg in personas.items():
                if isinstance(cfg, PersonaConfig):
                    cfg = cfg.to_dict()
                configs[str(pid)] = PersonaConfig.from_dict(str(pid), cfg).to_dict()
            plan[PERSONAS_KEY] = json.dumps(configs, ensure_ascii=False)

        return plan

    def import_snapshot(self, data: Snapshot | Mapping[str, Any]) -> StoreResult:
        """
        Overwrite logs and/or personas from a backup. Namespaces missing from
        the payload are left alone. Malformed payloads write nothing.
        """
        if isinstance(data, Snapshot):
            data = data.to_dict()
        try:
            plan = self._validate_import(data)
        except ValidationError as e:
            logger.error("Invalid data format for import: %s", e.message)
            return StoreResult.failure(e.message)

        previous: dict[str, str | None] = {}
        try:
            for key in plan:
                previous[key] = self.durable.get(key)
            for key, raw in plan.items():
                self.durable.set(key, raw)
        except StorageError as e:
            logger.error("Error importing data, rolling back: %s", e)
            self._restore(previous)
            return StoreResult.failure(e.message)

        logger.info("Imported %s", ", ".join(plan))
        return StoreResult.success()

    def _restore(self, previous: dict[str, str | None]) -> None:
        for key, raw in previous.items():
            try:
                if raw is None:
                    self.durable.remove(key)
                else:
                    self.durable.set(key, raw)
            except StorageError as e:
                logger.error("Could not restore '%s' after failed import: %s", key, e)

    def clear_everything(self) -> StoreResult:
        """Wipe durable and session state."""
        try:
            self.durable.clear()
            self.session.clear()
        except StorageError as e:
            logger.error("Error clearing storage: %s", e)
            return StoreResult.failure(e.message)
        return StoreResult.success()
