"""
Error taxonomy for the vault, the sync engine, and the server.

CRUD callers only ever see local errors (auth, decrypt, not-found,
validation). Network trouble is reported through sync status values.
"""

from __future__ import annotations

from typing import Optional


class GuardfinError(Exception):
    """Base class for every error raised by guardfin."""


class AuthError(GuardfinError):
    """Sign-in failed.

    The message is identical whether the account id or the passphrase
    was wrong, so callers cannot enumerate accounts.
    """

    def __init__(self, message: str = "Invalid passphrase") -> None:
        super().__init__(message)


class DecryptError(GuardfinError):
    """An envelope could not be authenticated or decoded."""


class NotFoundError(GuardfinError):
    """A record id does not exist in the local store."""


class ValidationError(GuardfinError):
    """Input failed shape or policy checks."""


class PayloadTooLargeError(ValidationError):
    """A sync bundle exceeds the configured size limit."""


class SessionClosedError(GuardfinError):
    """The session was signed out; its key material is gone."""


class TransportError(GuardfinError):
    """The sync server could not be reached (network down, timeout)."""


class RemoteRejectedError(GuardfinError):
    """The sync server answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Server rejected request ({status_code}): {message}")


class RateLimitedError(GuardfinError):
    """Too many requests for one account/client pair in the window."""

    def __init__(self, retry_after: Optional[float] = None) -> None:
        self.retry_after = retry_after
        super().__init__("Too many requests, please try again later")
