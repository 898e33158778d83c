"""
Error taxonomy for shlange.

The store never lets these escape (it logs and returns a neutral value);
the gateway and auth client raise them to the caller with a message that
is safe to show to the user.
"""

from __future__ import annotations


class ShlangeError(Exception):
    """Base class. `message` is always human-readable."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(ShlangeError):
    """Malformed input: bad import payload, empty passcode, bad message."""


class StorageError(ShlangeError):
    """The key-value substrate could not be read or written."""


class ConnectivityError(ShlangeError):
    """The remote endpoint could not be reached."""


class UpstreamError(ShlangeError):
    """The remote endpoint answered with a non-success status."""

    def __init__(self, message: str = "", status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(ShlangeError):
    """Success status, but the body is not the shape we expect."""


class AuthExpiredError(ShlangeError):
    """No valid admin token, or the server rejected it with 401."""


class InsufficientPermissionsError(ShlangeError):
    """The server rejected a valid token with 403."""
