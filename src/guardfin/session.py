"""
Signed-in session -- the only holder of a live encryption key.

A Session is created by ``AccountRegistry.sign_in`` and handed by the
caller to the LocalStore and SyncEngine it wants to use. Closing it
(sign-out) destroys the key handle and runs every registered close
hook, so nothing derived from the session keeps working afterwards.
Encrypted data on disk is left alone.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from .errors import SessionClosedError
from .kdf import KeyHandle
from .models import AccountSummary

logger = logging.getLogger("guardfin.session")


class Session:
    """An unlocked account.

    Args:
        account: Summary of the signed-in account.
        key: Encryption key handle derived at sign-in.
    """

    def __init__(self, account: AccountSummary, key: KeyHandle) -> None:
        self.account = account
        self.opened_at = datetime.now(timezone.utc)
        self._key = key
        self._closed = False
        self._close_hooks: list[Callable[[], None]] = []

    @property
    def account_id(self) -> str:
        return self.account.account_id

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def key(self) -> KeyHandle:
        """The live key handle.

        Raises:
            SessionClosedError: After sign-out.
        """
        self.ensure_open()
        return self._key

    def ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError("Session is signed out")

    def on_close(self, hook: Callable[[], None]) -> None:
        """Register a callback to run when the session closes."""
        self._close_hooks.append(hook)

    def close(self) -> None:
        """Sign out: run close hooks, then destroy the key. Idempotent."""
        if self._closed:
            return
        self._closed = True
        for hook in self._close_hooks:
            try:
                hook()
            except Exception as exc:
                logger.warning("Session close hook failed: %s", exc)
        self._close_hooks.clear()
        self._key.destroy()
        logger.info("Session closed for account %s", self.account_id)

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"Session(account_id={self.account_id!r}, {state})"
