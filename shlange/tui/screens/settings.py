"""
Settings pane — persona editor behind the admin code.
Locked: shows a code prompt. Unlocked (session flag set by a successful
login): shows the current persona's config with Save and Logout buttons.
"""
from __future__ import annotations
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Button, Input, Label, Static
from shlange.auth import AdminAuth
from shlange.errors import ShlangeError
from shlange.storage.conversation_store import ConversationStore
from shlange.tui.screens.base import ShlangePane


class SettingsPane(ShlangePane):
    """Admin unlock + persona editor."""

    def __init__(self, store: ConversationStore, auth: AdminAuth, **kwargs) -> None:
        super().__init__(**kwargs)
        self.store = store
        self.auth = auth

    def compose(self) -> ComposeResult:
        with Vertical(id="unlock-section"):
            yield self.section("Admin")
            yield Input(placeholder="Admin code", password=True, id="admin-code")
            yield Button("Unlock", id="admin-unlock", variant="primary")
        with Vertical(id="admin-features"):
            yield self.section("Persona")
            yield Label("Name")
            yield Input(id="persona-name")
            yield Label("Personality")
            yield Input(id="persona-personality")
            yield Label("Tone (1-10)")
            yield Input(id="persona-tone", type="integer")
            yield Label("System prompt")
            yield Input(id="persona-prompt")
            with Horizontal():
                yield Button("Save", id="persona-save", variant="success")
                yield Button("Logout", id="admin-logout", variant="error")
        yield Static(id="admin-message", markup=True)

    def on_mount(self) -> None:
        self.refresh_content()

    def _message(self, text: str, ok: bool = True) -> None:
        style = "green" if ok else "red"
        mark = "✓" if ok else "✗"
        self.query_one("#admin-message", Static).update(f"[{style}]{mark} {text}[/{style}]")

    def refresh_content(self) -> None:
        unlocked = self.auth.is_unlocked()
        self.query_one("#unlock-section").display = not unlocked
        self.query_one("#admin-features").display = unlocked
        if not unlocked:
            return
        cfg = self.store.get_persona_config(self.store.get_current_persona_id())
        self.query_one("#persona-name", Input).value = cfg.display_name
        self.query_one("#persona-personality", Input).value = cfg.personality
        self.query_one("#persona-tone", Input).value = str(cfg.tone)
        self.query_one("#persona-prompt", Input).value = cfg.system_prompt

    async def _unlock(self) -> None:
        code_input = self.query_one("#admin-code", Input)
        try:
            session = await self.auth.login(code_input.value)
        except ShlangeError as e:
            self._message(e.message or "Authentication failed", ok=False)
            return
        finally:
            code_input.value = ""
        self._message(f"Admin unlocked! Session expires {session.token_expiry}")
        self.refresh_content()

    def _save(self) -> None:
        persona_id = self.store.get_current_persona_id()
        cfg = self.store.get_persona_config(persona_id)
        try:
            tone = int(self.query_one("#persona-tone", Input).value or cfg.tone)
        except ValueError:
            self._message("Tone must be a number from 1 to 10", ok=False)
            return
        cfg.display_name = self.query_one("#persona-name", Input).value or cfg.display_name
        cfg.personality = self.query_one("#persona-personality", Input).value
        cfg.tone = min(10, max(1, tone))
        cfg.system_prompt = self.query_one("#persona-prompt", Input).value
        result = self.store.save_persona_config(persona_id, cfg)
        if result:
            self._message(f"Saved '{persona_id}'")
        else:
            self._message(f"Could not save: {result.error}", ok=False)

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "admin-unlock":
            await self._unlock()
        elif event.button.id == "persona-save":
            self._save()
        elif event.button.id == "admin-logout":
            self.auth.logout()
            self._message("Logged out")
            self.refresh_content()

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "admin-code":
            await self._unlock()
