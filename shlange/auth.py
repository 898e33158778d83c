"""
Admin authentication against the backend.

Login trades an admin code for a bearer token + expiry. The token is
persisted by the store; the "authenticated" flag only lives for the session
and only gates local UI. Protected calls always check the token itself:

  no/expired token -> AuthExpiredError (token cleared)
  401              -> AuthExpiredError (token and flag cleared)
  403              -> InsufficientPermissionsError (token kept)
"""

from __future__ import annotations

import logging

import httpx

from shlange.config import DEFAULTS
from shlange.errors import (
    AuthExpiredError,
    ConnectivityError,
    InsufficientPermissionsError,
    MalformedResponseError,
    UpstreamError,
    ValidationError,
)
from shlange.gateway import CONNECT_ERROR_MESSAGE, extract_error_message
from shlange.storage.conversation_store import ConversationStore
from shlange.storage.models import AdminSession

logger = logging.getLogger(__name__)


class AdminAuth:
    """Bearer-token login/logout and authenticated requests."""

    def __init__(self, store: ConversationStore, url: str, timeout: float = 30):
        self.store = store
        self.url = url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, store: ConversationStore, cfg: dict) -> "AdminAuth":
        auth_cfg = cfg.get("auth", {})
        url = (
            auth_cfg.get("url")
            or cfg.get("backend", {}).get("url")
            or DEFAULTS["backend"]["url"]
        )
        return cls(store, url=url, timeout=auth_cfg.get("timeout", 30))

    def is_unlocked(self) -> bool:
        """Local UI gate only. Never enough for a remote call."""
        return self.store.is_admin_authenticated()

    async def login(self, code: str) -> AdminSession:
        code = (code or "").strip()
        if not code:
            raise ValidationError("Please enter an admin code")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(f"{self.url}/auth/login", json={"code": code})
        except httpx.TransportError as e:
            logger.warning("Login request failed: %s", e)
            raise ConnectivityError(CONNECT_ERROR_MESSAGE) from e

        if not 200 <= resp.status_code < 300:
            try:
                body = resp.json()
            except ValueError:
                body = None
            message = extract_error_message(body, resp.status_code)
            if body is None or message.startswith("API request failed"):
                message = "Authentication failed"
            logger.warning("Login rejected (HTTP %d): %s", resp.status_code, message)
            raise UpstreamError(message, status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponseError("Unexpected login response from backend") from e
        token = data.get("token") if isinstance(data, dict) else None
        expires_at = data.get("expiresAt") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token or not isinstance(expires_at, str):
            raise MalformedResponseError("Login response is missing token or expiresAt")

        self.store.set_admin_token(token, expires_at)
        self.store.set_admin_authenticated_flag(True)
        logger.info("Admin unlocked, token expires %s", expires_at)
        return self.store.get_admin_session()

    def logout(self) -> None:
        self.store.set_admin_authenticated_flag(False)
        self.store.clear_admin_token()
        logger.info("Logged out and cleared admin token")

    def auth_header(self) -> dict | None:
        """Authorization header for a live token, else None (expired tokens are dropped)."""
        token = self.store.get_admin_token()
        if not token:
            return None
        if self.store.is_admin_token_expired():
            logger.info("Admin token expired, clearing it")
            self.store.clear_admin_token()
            return None
        return {"Authorization": f"Bearer {token}"}

    async def request(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        """Send an authenticated request to {url}{endpoint}."""
        header = self.auth_header()
        if header is None:
            raise AuthExpiredError("No valid authentication token available. Please login again.")

        headers = {**kwargs.pop("headers", {}), **header}
        url = f"{self.url}{endpoint}"
        logger.debug("Making authenticated request to %s", url)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            logger.warning("Authenticated request to %s failed: %s", url, e)
            raise ConnectivityError(CONNECT_ERROR_MESSAGE) from e

        if resp.status_code == 401:
            logger.error("Unauthorized - token expired or invalid")
            self.store.clear_admin_token()
            self.store.set_admin_authenticated_flag(False)
            raise AuthExpiredError("Session expired. Please login again.")
        if resp.status_code == 403:
            logger.error("Forbidden - insufficient permissions")
            raise InsufficientPermissionsError("Insufficient permissions")
        return resp

    @staticmethod
    def _raise_for_status(resp: httpx.Response, what: str) -> None:
        if 200 <= resp.status_code < 300:
            return
        try:
            body = resp.json()
        except ValueError:
            body = {}
        message = body.get("message") if isinstance(body, dict) else None
        raise UpstreamError(
            message or f"Failed to fetch {what}: {resp.status_code}",
            status_code=resp.status_code,
        )

    async def fetch_personas(self) -> list[dict]:
        resp = await self.request("GET", "/personas")
        self._raise_for_status(resp, "personas")
        try:
            personas = resp.json()
        except ValueError as e:
            raise MalformedResponseError("Unexpected personas response from backend") from e
        if not isinstance(personas, list):
            raise MalformedResponseError("Expected a list of personas from backend")
        logger.info("Fetched %d personas from backend", len(personas))
        return personas

    async def fetch_persona(self, persona_id: str) -> dict:
        resp = await self.request("GET", f"/personas/{persona_id}")
        if resp.status_code == 404:
            raise UpstreamError(f"Persona with ID {persona_id} not found", status_code=404)
        self._raise_for_status(resp, "persona")
        try:
            persona = resp.json()
        except ValueError as e:
            raise MalformedResponseError("Unexpected persona response from backend") from e
        if not isinstance(persona, dict):
            raise MalformedResponseError("Expected a persona object from backend")
        return persona
