"""
CompletionGateway — turns (persona, user text) into one chat-completion call.

Talks to the backend proxy (never a vendor endpoint directly; the API key
lives on the proxy). The proxy speaks the OpenAI request/response shape:

    POST {url}/chat  {"model": ..., "messages": [system, user]}
    200 -> {"choices": [{"message": {"content": "..."}}]}

Every failure is raised as one of ConnectivityError, UpstreamError or
MalformedResponseError with a message that can go straight to the user.
Only transport failures are retried, and only `retries` times.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from shlange.config import DEFAULTS
from shlange.errors import ConnectivityError, MalformedResponseError, UpstreamError
from shlange.personas import (
    DEFAULT_PERSONA_ID,
    PROFILES,
    PersonaProfile,
    default_prompt,
    get_persona_profile,
    resolve_model,
)
from shlange.storage.conversation_store import ConversationStore

logger = logging.getLogger(__name__)

CONNECT_ERROR_MESSAGE = "Unable to connect to backend. Please check your internet connection."


@dataclass(frozen=True)
class CompletionResult:
    """A successful completion."""
    reply_text: str
    model: str = ""
    latency_ms: float = 0.0


def extract_error_message(body: Any, status_code: int) -> str:
    """
    Pull a human-readable message out of an error body.
    Handles {"error": "..."}, {"error": {"message": "..."}} and {"message": "..."}.
    """
    fallback = f"API request failed with status {status_code}"
    if not isinstance(body, dict):
        return fallback
    error = body.get("error")
    if isinstance(error, dict):
        error = error.get("message")
    if isinstance(error, str) and error:
        return error
    message = body.get("message")
    if isinstance(message, str) and message:
        return message
    return fallback


def parse_completion(body: Any) -> str:
    """Validate a success body and return the first choice's content."""
    if not isinstance(body, dict):
        raise MalformedResponseError("Unexpected response format from API")
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices:
        raise MalformedResponseError("Unexpected response format from API: no choices")
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str):
        raise MalformedResponseError("Unexpected response format from API: no message content")
    return content


class CompletionGateway:
    """Stateless request/response translator for chat completions."""

    def __init__(
        self,
        store: ConversationStore,
        url: str,
        timeout: float = 60,
        retries: int = 1,
        model_overrides: dict | None = None,
        default_model: str = "",
    ):
        self.store = store
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.retries = max(0, retries)
        self.model_overrides = model_overrides or {}
        self.default_model = default_model

    @classmethod
    def from_config(cls, store: ConversationStore, cfg: dict) -> "CompletionGateway":
        backend_cfg = cfg.get("backend", {})
        return cls(
            store,
            url=backend_cfg.get("url") or DEFAULTS["backend"]["url"],
            timeout=backend_cfg.get("timeout", 60),
            retries=backend_cfg.get("retries", 1),
            model_overrides=cfg.get("personas") or {},
            default_model=backend_cfg.get("default_model", ""),
        )

    def get_persona_config(self, persona_id: str) -> PersonaProfile:
        """Built-in profile for the id; unknown ids fall back with a warning."""
        return get_persona_profile(persona_id)

    def system_prompt_for(self, persona_id: str) -> str:
        """Stored prompt, then the built-in prompt for the id, then the default persona's."""
        stored = self.store.get_persona_config(persona_id).system_prompt
        return stored or default_prompt(persona_id)

    def build_request(self, persona_id: str, text: str) -> dict:
        if persona_id not in PROFILES:
            logger.warning(
                "Unknown persona '%s', using '%s' as fallback", persona_id, DEFAULT_PERSONA_ID
            )
        return {
            "model": resolve_model(persona_id, self.model_overrides, self.default_model),
            "messages": [
                {"role": "system", "content": self.system_prompt_for(persona_id)},
                {"role": "user", "content": text},
            ],
        }

    async def _post(self, body: dict) -> httpx.Response:
        """POST with a bounded retry on transport failures."""
        target = f"{self.url}/chat"
        for attempt in range(self.retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    logger.debug("Sending request to %s (attempt %d)", target, attempt + 1)
                    return await client.post(target, json=body)
            except httpx.TimeoutException:
                if attempt < self.retries:
                    logger.warning("Request to %s timed out, retrying once", target)
                    continue
                logger.warning("Request to %s timed out after %ss", target, self.timeout)
                raise ConnectivityError(f"Request timed out after {self.timeout}s")
            except httpx.TransportError as e:
                if attempt < self.retries:
                    logger.warning("Cannot reach %s (%s), retrying once", target, e)
                    continue
                logger.warning("Cannot reach %s: %s", target, e)
                raise ConnectivityError(CONNECT_ERROR_MESSAGE) from e
        raise ConnectivityError(CONNECT_ERROR_MESSAGE)

    async def get_response(self, persona_id: str, text: str) -> CompletionResult:
        """
        Ask the backend for a reply as persona_id.

        Raises:
            ConnectivityError:      endpoint unreachable or timed out.
            UpstreamError:          non-success status.
            MalformedResponseError: success status, unexpected body.
        """
        body = self.build_request(persona_id, text)
        logger.info("Getting response for persona '%s' (model=%s)", persona_id, body["model"])

        t0 = time.monotonic()
        resp = await self._post(body)
        latency = (time.monotonic() - t0) * 1000
        logger.debug("Response status: %d (%.0fms)", resp.status_code, latency)

        if not 200 <= resp.status_code < 300:
            try:
                error_body = resp.json()
            except ValueError:
                logger.warning("Could not parse error response (HTTP %d)", resp.status_code)
                error_body = None
            message = extract_error_message(error_body, resp.status_code)
            logger.warning("Backend returned HTTP %d: %s", resp.status_code, message)
            raise UpstreamError(message, status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponseError("Unexpected response format from API: invalid JSON") from e

        reply = parse_completion(data)
        return CompletionResult(reply_text=reply, model=body["model"], latency_ms=latency)
