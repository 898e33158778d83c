"""
Data models for conversation storage.
These define the shape of data flowing between the store, the gateway and
whatever UI sits on top. Persisted JSON keys keep the export format stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from collections.abc import Mapping
from typing import Any

from shlange.errors import ValidationError

ROLES = ("user", "assistant")
# Older exports store the author under "type", with "ai" for replies.
LEGACY_TYPES = {"user": "user", "ai": "assistant"}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Message:
    """A single chat message. Never edited once created."""
    role: str                # "user" or "assistant"
    text: str
    timestamp: str = ""      # ISO-8601; the store fills it in when empty

    def to_dict(self) -> dict:
        return {"role": self.role, "text": self.text, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        if not isinstance(data, Mapping):
            raise ValidationError(f"Message must be an object, got {type(data).__name__}")
        role = data.get("role")
        if role is None and "type" in data:
            role = LEGACY_TYPES.get(data["type"])
        text = data.get("text")
        timestamp = data.get("timestamp") or ""
        if role not in ROLES:
            raise ValidationError(f"Invalid message role: {role!r}")
        if not isinstance(text, str):
            raise ValidationError("Message text must be a string")
        if not isinstance(timestamp, str):
            raise ValidationError("Message timestamp must be a string")
        return cls(role=role, text=text, timestamp=timestamp)


@dataclass
class PersonaConfig:
    """User-editable persona settings. Saved wholesale, never merged."""
    id: str
    display_name: str
    personality: str = "Helpful"
    tone: int = 5            # 1..10
    system_prompt: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.display_name,
            "personality": self.personality,
            "tone": self.tone,
            "systemPrompt": self.system_prompt,
        }

    @classmethod
    def from_dict(cls, persona_id: str, data: Mapping[str, Any]) -> "PersonaConfig":
        if not isinstance(data, Mapping):
            raise ValidationError(f"Persona '{persona_id}' must be an object")
        name = data.get("name", data.get("display_name"))
        prompt = data.get("systemPrompt", data.get("system_prompt", ""))
        if not isinstance(name, str) or not name:
            raise ValidationError(f"Persona '{persona_id}' is missing a name")
        if not isinstance(prompt, str):
            raise ValidationError(f"Persona '{persona_id}' system prompt must be a string")
        try:
            tone = int(data.get("tone", 5))
        except (TypeError, ValueError):
            raise ValidationError(f"Persona '{persona_id}' tone must be an integer")
        return cls(
            id=persona_id,
            display_name=name,
            personality=str(data.get("personality", "Helpful")),
            tone=min(10, max(1, tone)),
            system_prompt=prompt,
        )


@dataclass(frozen=True)
class AdminSession:
    """
    Admin state across two lifetimes: `authenticated` lives only as long as
    the session substrate, the token and its expiry are durable.
    """
    authenticated: bool = False
    token: str | None = None
    token_expiry: str | None = None


@dataclass
class Snapshot:
    """Read-only aggregate for backup/download."""
    logs: dict[str, list[Message]] = field(default_factory=dict)
    personas: dict[str, PersonaConfig] = field(default_factory=dict)
    exported_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        """Wire format used for export files."""
        return {
            "conversations": {
                pid: [m.to_dict() for m in log] for pid, log in self.logs.items()
            },
            "personas": {pid: cfg.to_dict() for pid, cfg in self.personas.items()},
            "exportDate": self.exported_at,
        }


@dataclass(frozen=True)
class StoreResult:
    """Outcome of a store write. Truthy on success."""
    ok: bool
    error: str = ""

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls) -> "StoreResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: str) -> "StoreResult":
        return cls(ok=False, error=error)
