"""
Tests for the console app's key actions.
Runs the textual app headless; no backend is contacted.
Run with: pytest tests/test_tui.py
"""

import pytest

from shlange.auth import AdminAuth
from shlange.gateway import CompletionGateway
from shlange.storage.backends.memory import MemoryBackend
from shlange.storage.conversation_store import ConversationStore
from shlange.storage.models import Message
from shlange.tui.app import ShlangeApp


@pytest.fixture
def app():
    store = ConversationStore(MemoryBackend())
    store.append_message("companion", Message(role="user", text="hello"))
    store.append_message("companion", Message(role="assistant", text="hi!"))
    gateway = CompletionGateway(store, url="http://proxy/api")
    return ShlangeApp(store, gateway, AdminAuth(store, url="http://proxy/api"))


@pytest.mark.asyncio
async def test_clear_history_waits_for_pending_reply(app):
    async with app.run_test() as pilot:
        app.session._busy = True
        app.action_clear_history()
        await pilot.pause()
        assert [m.text for m in app.store.get_log("companion")] == ["hello", "hi!"]


@pytest.mark.asyncio
async def test_clear_history_when_idle(app):
    async with app.run_test() as pilot:
        app.action_clear_history()
        await pilot.pause()
        assert app.store.get_log("companion") == []


@pytest.mark.asyncio
async def test_next_persona_waits_for_pending_reply(app):
    async with app.run_test() as pilot:
        app.session._busy = True
        app.action_next_persona()
        await pilot.pause()
        assert app.session.persona_id == "companion"
