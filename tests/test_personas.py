"""
Tests for the built-in persona table.
"""

from shlange.personas import (
    DEFAULT_PROMPTS,
    KNOWN_PERSONA_IDS,
    default_persona_config,
    default_prompt,
    get_persona_profile,
    resolve_model,
)


def test_known_ids():
    assert KNOWN_PERSONA_IDS == ("companion", "code", "study")


def test_profile_fallback_logs_warning(caplog):
    profile = get_persona_profile("mystery")
    assert profile.id == "companion"
    assert "mystery" in caplog.text


def test_default_prompt_fallback():
    assert default_prompt("study") == DEFAULT_PROMPTS["study"]
    assert default_prompt("mystery") == DEFAULT_PROMPTS["companion"]


def test_generic_config_capitalises_id():
    cfg = default_persona_config("storyteller")
    assert cfg.display_name == "Storyteller"
    assert cfg.system_prompt == ""


def test_resolve_model_precedence():
    overrides = {"code": {"model": "sonar-pro"}, "study": "sonar-reasoning"}
    assert resolve_model("code", overrides) == "sonar-pro"
    assert resolve_model("study", overrides) == "sonar-reasoning"
    assert resolve_model("companion", overrides, default_model="local-llm") == "local-llm"
    assert resolve_model("companion") == "sonar"
