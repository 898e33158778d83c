"""
ChatSession — one conversation turn at a time.

Sits between a UI (CLI, console) and the core: persists the user's message,
asks the gateway for a reply, persists the reply. A failed turn produces an
error message for display that is never written to history.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from shlange.errors import ShlangeError, ValidationError
from shlange.gateway import CompletionGateway
from shlange.storage.conversation_store import ConversationStore
from shlange.storage.models import Message, utc_now_iso

logger = logging.getLogger(__name__)

ERROR_PREFIX = "⚠️ Error: "


@dataclass(frozen=True)
class TurnOutcome:
    user_message: Message
    reply: Message
    error: ShlangeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ChatSession:
    """Drives turns for the currently selected persona."""

    def __init__(self, store: ConversationStore, gateway: CompletionGateway):
        self.store = store
        self.gateway = gateway
        self._busy = False

    @property
    def persona_id(self) -> str:
        return self.store.get_current_persona_id()

    @property
    def busy(self) -> bool:
        return self._busy

    def switch_persona(self, persona_id: str) -> None:
        self.store.set_current_persona_id(persona_id)

    def history(self) -> list[Message]:
        return self.store.get_log(self.persona_id)

    async def send(self, text: str) -> TurnOutcome:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message is empty")
        if self._busy:
            raise RuntimeError("A reply is already in flight for this session")

        persona_id = self.persona_id
        user_message = Message(role="user", text=text, timestamp=utc_now_iso())
        self._busy = True
        try:
            if not self.store.append_message(persona_id, user_message):
                logger.warning("User message for '%s' was not persisted", persona_id)
            try:
                result = await self.gateway.get_response(persona_id, text)
            except ShlangeError as e:
                logger.error("Error getting AI response: %s", e.message)
                reply = Message(role="assistant", text=ERROR_PREFIX + e.message, timestamp=utc_now_iso())
                return TurnOutcome(user_message=user_message, reply=reply, error=e)

            reply = Message(role="assistant", text=result.reply_text, timestamp=utc_now_iso())
            if not self.store.append_message(persona_id, reply):
                logger.warning("Reply for '%s' was not persisted", persona_id)
            return TurnOutcome(user_message=user_message, reply=reply)
        finally:
            self._busy = False
