"""
Remote bundle store -- the dumb, zero-knowledge half of sync.

Holds one ciphertext bundle per account and nothing else. It never has
a key, never decrypts, and only checks that the payload has the right
shape and size. Writes go to a temp file and are renamed over the
final file, so a reader sees the previous bundle or the new one and a
crash mid-write leaves the previous bundle intact.

Storage layout:
    <data_dir>/
    └── <account_id>.json     # RemoteBundle
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ._atomic import atomic_write_text
from .config import DEFAULT_MAX_SYNC_SIZE
from .errors import PayloadTooLargeError, RateLimitedError, ValidationError
from .sync.models import BUNDLE_ARRAY_FIELDS, RemoteBundle, SyncReceipt

logger = logging.getLogger("guardfin.remote")

DELETE_CONFIRMATION = "DELETE_ALL_DATA"

_ACCOUNT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def validate_account_id(account_id: Any) -> str:
    """Return ``account_id`` if it is a safe, non-empty identifier.

    Raises:
        ValidationError: Missing, not a string, or unsafe for a filename.
    """
    if not isinstance(account_id, str) or not _ACCOUNT_ID_RE.match(account_id):
        raise ValidationError("Valid accountId required")
    return account_id


def validate_sync_payload(
    payload: Any,
    max_bytes: int = DEFAULT_MAX_SYNC_SIZE,
) -> str:
    """Shape and size checks for a ``POST /sync`` body.

    Args:
        payload: Decoded JSON body.
        max_bytes: Upper bound on the serialized payload size.

    Returns:
        The validated account id.

    Raises:
        ValidationError: Missing accountId or a declared field of the
            wrong type.
        PayloadTooLargeError: Serialized payload exceeds ``max_bytes``.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    account_id = validate_account_id(payload.get("accountId"))

    for name in BUNDLE_ARRAY_FIELDS:
        value = payload.get(name)
        if value is not None and not isinstance(value, list):
            raise ValidationError(f"{name} must be an array")

    settings = payload.get("settings")
    if settings is not None and not isinstance(settings, dict):
        raise ValidationError("settings must be an object")

    size = len(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    if size > max_bytes:
        raise PayloadTooLargeError(f"Payload too large ({size} > {max_bytes} bytes)")

    return account_id


class RateLimiter:
    """Fixed-window request counter keyed by (account id, client address).

    Requests beyond the limit are rejected, not queued.

    Args:
        max_requests: Requests allowed per key per window.
        window_seconds: Window length.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[tuple[str, str], tuple[float, int]] = {}

    def hit(self, account_id: str, client_address: str) -> None:
        """Count one request.

        Raises:
            RateLimitedError: The key is over its limit for this window.
        """
        key = (account_id or "anonymous", client_address or "unknown")
        now = self._clock()
        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            if count >= self.max_requests:
                retry_after = self.window_seconds - (now - started)
                raise RateLimitedError(retry_after=max(retry_after, 0.0))
            self._windows[key] = (started, count + 1)
            if len(self._windows) > 10_000:
                self._prune(now)

    def _prune(self, now: float) -> None:
        expired = [
            k for k, (started, _) in self._windows.items()
            if now - started >= self.window_seconds
        ]
        for k in expired:
            del self._windows[k]


class RemoteStore:
    """Per-account ciphertext bundle storage.

    Args:
        data_dir: Directory holding one ``<account_id>.json`` per account.
        max_bundle_bytes: Largest accepted sync payload.
        rate_limiter: Optional admission control; ``admit`` is a no-op
            without one.
    """

    def __init__(
        self,
        data_dir: Path,
        max_bundle_bytes: int = DEFAULT_MAX_SYNC_SIZE,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self.data_dir = data_dir
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.max_bundle_bytes = max_bundle_bytes
        self.rate_limiter = rate_limiter
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def admit(self, account_id: Any, client_address: str) -> None:
        """Apply the rate limit for one request.

        Raises:
            RateLimitedError: Over the limit.
        """
        if self.rate_limiter is None:
            return
        key = account_id if isinstance(account_id, str) else "anonymous"
        self.rate_limiter.hit(key, client_address)

    def put(self, account_id: str, payload: dict[str, Any]) -> SyncReceipt:
        """Validate and atomically replace an account's bundle.

        Args:
            account_id: Account the bundle belongs to.
            payload: Sync payload (``accountId`` plus record arrays).

        Returns:
            SyncReceipt with the new sync count and timestamp.

        Raises:
            ValidationError: Bad shape, or ``account_id`` does not match
                the payload.
            PayloadTooLargeError: Over ``max_bundle_bytes``.
        """
        payload_account = validate_sync_payload(payload, self.max_bundle_bytes)
        if payload_account != account_id:
            raise ValidationError("accountId does not match request")

        path = self._path(account_id)
        with self._account_lock(account_id):
            previous = self._read_existing(path)
            bundle = RemoteBundle(
                transactions=payload.get("transactions") or [],
                recurring_bills=payload.get("recurring_bills") or [],
                goals=payload.get("goals") or [],
                budgets=payload.get("budgets") or [],
                reminders=payload.get("reminders") or [],
                settings=payload.get("settings") or {},
                last_sync=datetime.now(timezone.utc).isoformat(),
                sync_count=previous.sync_count + 1 if previous is not None else 0,
            )
            atomic_write_text(path, json.dumps(bundle.to_wire(), indent=2))

        logger.info("Stored bundle for %s (sync #%d)", account_id, bundle.sync_count)
        return SyncReceipt(sync_count=bundle.sync_count, timestamp=bundle.last_sync)

    def get(self, account_id: str) -> RemoteBundle:
        """Current bundle, or an empty one for an unknown account.

        Raises:
            ValidationError: Unsafe account id.
        """
        path = self._path(account_id)
        if not path.exists():
            return RemoteBundle()
        return RemoteBundle.model_validate(json.loads(path.read_text(encoding="utf-8")))

    def delete(self, account_id: str, confirmation: str) -> bool:
        """Irreversibly remove an account's bundle.

        Args:
            account_id: Account to wipe.
            confirmation: Must be the literal ``DELETE_ALL_DATA``.

        Returns:
            True if a bundle existed.

        Raises:
            ValidationError: Bad account id or missing confirmation.
        """
        path = self._path(account_id)
        if confirmation != DELETE_CONFIRMATION:
            raise ValidationError("Confirmation string required")
        with self._account_lock(account_id):
            existed = path.exists()
            path.unlink(missing_ok=True)
        logger.info("Deleted bundle for %s (existed=%s)", account_id, existed)
        return existed

    def account_count(self) -> int:
        return sum(1 for _ in self.data_dir.glob("*.json"))

    # -------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------

    def _path(self, account_id: str) -> Path:
        return self.data_dir / f"{validate_account_id(account_id)}.json"

    def _account_lock(self, account_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(account_id, threading.Lock())

    def _read_existing(self, path: Path) -> Optional[RemoteBundle]:
        if not path.exists():
            return None
        try:
            return RemoteBundle.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError) as exc:
            logger.warning("Could not read existing bundle %s: %s", path.name, exc)
            return None
