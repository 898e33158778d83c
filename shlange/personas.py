"""
Built-in persona table.

Each persona id maps to a profile (display name, icon, blurb, model) and a
default PersonaConfig. Lookups are pure; unknown ids fall back to the
default persona and log a warning instead of failing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from shlange.storage.models import PersonaConfig

logger = logging.getLogger(__name__)

DEFAULT_PERSONA_ID = "companion"
DEFAULT_MODEL = "sonar"

DEFAULT_PROMPTS: dict[str, str] = {
    "companion": (
        "You are a friendly and empathetic AI companion. Your goal is to engage "
        "in warm, supportive conversations and help users feel heard and understood."
    ),
    "code": (
        "You are an expert programming assistant. You provide clear, concise coding "
        "help, debugging assistance, and best practices guidance across multiple "
        "programming languages."
    ),
    "study": (
        "You are a knowledgeable study helper and tutor. You break down complex "
        "concepts, provide clear explanations, and help students learn effectively "
        "using proven pedagogical techniques."
    ),
}


@dataclass(frozen=True)
class PersonaProfile:
    """Static, non-editable facts about a persona."""
    id: str
    name: str
    icon: str
    description: str
    model: str = DEFAULT_MODEL


PROFILES: dict[str, PersonaProfile] = {
    "companion": PersonaProfile(
        id="companion",
        name="Companion",
        icon="💬",
        description="Your friendly AI companion for general conversations",
    ),
    "code": PersonaProfile(
        id="code",
        name="Code Buddy",
        icon="💻",
        description="Your expert programming assistant for coding help",
    ),
    "study": PersonaProfile(
        id="study",
        name="Study Helper",
        icon="📚",
        description="Your knowledgeable tutor for learning and studying",
    ),
}

_DEFAULT_PERSONALITY = {
    "companion": "Friendly and empathetic",
    "code": "Technical and helpful",
    "study": "Patient and educational",
}

KNOWN_PERSONA_IDS: tuple[str, ...] = tuple(PROFILES)


def get_persona_profile(persona_id: str) -> PersonaProfile:
    """Return the built-in profile, falling back to the default persona."""
    profile = PROFILES.get(persona_id)
    if profile is None:
        logger.warning(
            "Unknown persona '%s', using '%s' as fallback", persona_id, DEFAULT_PERSONA_ID
        )
        return PROFILES[DEFAULT_PERSONA_ID]
    return profile


def default_prompt(persona_id: str) -> str:
    """Built-in prompt for the id, else the default persona's prompt."""
    return DEFAULT_PROMPTS.get(persona_id) or DEFAULT_PROMPTS[DEFAULT_PERSONA_ID]


def default_persona_config(persona_id: str) -> PersonaConfig:
    """
    Built-in config for a known id, or a generic one for anything else.
    Generic configs use the capitalised id as display name.
    """
    if persona_id in PROFILES:
        return PersonaConfig(
            id=persona_id,
            display_name=PROFILES[persona_id].name,
            personality=_DEFAULT_PERSONALITY[persona_id],
            tone=5,
            system_prompt=DEFAULT_PROMPTS[persona_id],
        )
    return PersonaConfig(
        id=persona_id,
        display_name=persona_id[:1].upper() + persona_id[1:],
        personality="Helpful",
        tone=5,
        system_prompt=DEFAULT_PROMPTS.get(persona_id, ""),
    )


def resolve_model(persona_id: str, overrides: dict | None = None, default_model: str = "") -> str:
    """
    Model for a persona. Precedence: per-persona override from config,
    then the configured default model, then the built-in profile model.
    """
    overrides = overrides or {}
    entry = overrides.get(persona_id)
    if isinstance(entry, dict) and entry.get("model"):
        return entry["model"]
    if isinstance(entry, str) and entry:
        return entry
    if default_model:
        return default_model
    return PROFILES.get(persona_id, PROFILES[DEFAULT_PERSONA_ID]).model
