"""
Chat pane — the conversation with the current persona.
The input is disabled while a reply is in flight, so there is never more
than one turn outstanding. Failed turns are shown in red and not saved.
"""
from __future__ import annotations
from rich.markup import escape
from textual.app import ComposeResult
from textual.widgets import Input, RichLog, Static
from shlange.chat import ChatSession
from shlange.personas import get_persona_profile
from shlange.storage.models import Message
from shlange.tui.screens.base import ShlangePane


class ChatPane(ShlangePane):
    """Message log plus an input line."""

    def __init__(self, session: ChatSession, **kwargs) -> None:
        super().__init__(**kwargs)
        self.session = session

    def compose(self) -> ComposeResult:
        yield Static(id="chat-title", markup=True)
        yield RichLog(id="chat-log", markup=True, wrap=True)
        yield Input(placeholder="Type a message and press Enter", id="chat-input")

    def on_mount(self) -> None:
        self.refresh_content()

    def _write(self, msg: Message, error: bool = False) -> None:
        log = self.query_one("#chat-log", RichLog)
        if msg.role == "user":
            log.write(f"[bold cyan]you[/bold cyan]  {escape(msg.text)}")
            return
        name = self.session.store.get_persona_config(self.session.persona_id).display_name
        style = "red" if error else "green"
        log.write(f"[bold {style}]{escape(name)}[/bold {style}]  {escape(msg.text)}")

    def refresh_content(self) -> None:
        persona_id = self.session.persona_id
        profile = get_persona_profile(persona_id)
        cfg = self.session.store.get_persona_config(persona_id)
        self.query_one("#chat-title", Static).update(
            f"{profile.icon}  [bold]{escape(cfg.display_name)}[/bold]  [dim]{escape(profile.description)}[/dim]"
        )
        log = self.query_one("#chat-log", RichLog)
        log.clear()
        for msg in self.session.history():
            self._write(msg)

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "chat-input":
            return
        text = event.value.strip()
        if not text or self.session.busy:
            return
        event.input.value = ""
        event.input.disabled = True
        self._write(Message(role="user", text=text))
        self.run_worker(self._send(text), exclusive=True)

    async def _send(self, text: str) -> None:
        chat_input = self.query_one("#chat-input", Input)
        try:
            outcome = await self.session.send(text)
            self._write(outcome.reply, error=not outcome.ok)
        finally:
            chat_input.disabled = False
            chat_input.focus()
