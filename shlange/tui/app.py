"""
shlange Console — chat with your personas in the terminal.
Textual-based TUI: a chat tab and an admin settings tab.
Entry point: shlange console (alias: tui)
"""
from __future__ import annotations
from pathlib import Path
from typing import ClassVar
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import Footer, Header, TabbedContent, TabPane
from shlange.auth import AdminAuth
from shlange.chat import ChatSession
from shlange.gateway import CompletionGateway
from shlange.personas import KNOWN_PERSONA_IDS
from shlange.storage.conversation_store import ConversationStore
from shlange.tui.screens.chat import ChatPane
from shlange.tui.screens.settings import SettingsPane


class ShlangeApp(App):
    """shlange chat console."""
    CSS_PATH = str(Path(__file__).parent / "styles" / "main.tcss")
    TITLE = "shlange"
    BINDINGS: ClassVar[list[Binding]] = [
        Binding("ctrl+q", "quit", "Quit", priority=True),
        Binding("ctrl+n", "next_persona", "Next persona", show=True),
        Binding("ctrl+l", "clear_history", "Clear history", show=True),
        Binding("f1", "switch_tab('chat')", "Chat", show=True),
        Binding("f2", "switch_tab('settings')", "Settings", show=True),
    ]

    def __init__(self, store: ConversationStore, gateway: CompletionGateway, auth: AdminAuth):
        super().__init__()
        self.store = store
        self.auth = auth
        self.session = ChatSession(store, gateway)

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with TabbedContent(initial="chat"):
            with TabPane("Chat", id="chat"):
                yield ChatPane(self.session, id="chat-pane")
            with TabPane("Settings", id="settings"):
                yield SettingsPane(self.store, self.auth, id="settings-pane")
        yield Footer()

    def on_mount(self) -> None:
        self.sub_title = self.session.persona_id

    def _refresh_panes(self) -> None:
        self.sub_title = self.session.persona_id
        self.query_one(ChatPane).refresh_content()
        self.query_one(SettingsPane).refresh_content()

    def action_switch_tab(self, tab_id: str) -> None:
        self.query_one(TabbedContent).active = tab_id

    def action_next_persona(self) -> None:
        if self.session.busy:
            self.notify("Wait for the current reply first", severity="warning")
            return
        current = self.session.persona_id
        ids = list(KNOWN_PERSONA_IDS)
        nxt = ids[(ids.index(current) + 1) % len(ids)] if current in ids else ids[0]
        self.session.switch_persona(nxt)
        self._refresh_panes()

    def action_clear_history(self) -> None:
        if self.session.busy:
            self.notify("Wait for the current reply first", severity="warning")
            return
        result = self.store.clear_log(self.session.persona_id)
        if not result:
            self.notify(f"Could not clear history: {result.error}", severity="error")
        self._refresh_panes()
