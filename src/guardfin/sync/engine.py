"""
Sync Engine -- debounced, single-flight snapshot push.

Every local mutation calls ``schedule()``. That moves the engine to
PENDING and pushes the one debounce deadline forward; bursts of edits
collapse into a single round trip. One worker thread owns the network:
when the deadline passes it builds a full-state batch from the store
and hands it to the transport. While a sync is in flight new mutations
only mark a follow-up cycle, so at most one sync per session is ever
on the wire.

    idle -> pending -> syncing -> synced | error | offline -> idle

Network failures never reach CRUD callers; they show up as status
values delivered to status listeners.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .. import envelope
from .._atomic import atomic_write_text
from ..audit import AuditEvent, audit_event
from ..errors import (
    DecryptError,
    RemoteRejectedError,
    SessionClosedError,
    TransportError,
    ValidationError,
)
from ..models import Record
from ..session import Session
from ..store import LocalStore, is_valid_record_id, vault_dir
from .models import BUNDLE_ARRAY_FIELDS, SyncBatch, SyncState, SyncStatus
from .transport import SyncTransport

logger = logging.getLogger("guardfin.sync.engine")

DEBOUNCE_SECONDS = 2.0

StatusListener = Callable[[SyncStatus], None]


class SyncEngine:
    """Coalesces local mutations into full-snapshot pushes.

    Args:
        home: Guardfin home directory.
        session: Open session for the account being synced.
        store: The account's LocalStore; the engine subscribes to it.
        transport: Where batches are sent.
        debounce_seconds: Quiet period after the last mutation.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        home: Path,
        session: Session,
        store: LocalStore,
        transport: SyncTransport,
        debounce_seconds: float = DEBOUNCE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        session.ensure_open()
        if store.account_id != session.account_id:
            raise ValueError("Store and session belong to different accounts")

        self.home = home
        self.debounce_seconds = debounce_seconds
        self._session = session
        self._store = store
        self._transport = transport
        self._clock = clock

        self._cond = threading.Condition()
        self._status = SyncStatus.IDLE
        self._deadline: Optional[float] = None
        self._rerun = False
        self._stopped = False
        self._worker: Optional[threading.Thread] = None
        self._listeners: list[StatusListener] = []

        self._state_file = vault_dir(home, session.account_id) / "sync-state.json"
        self.state = self._load_state()

        store.add_listener(self.schedule)
        session.on_close(self.stop)

    @property
    def status(self) -> SyncStatus:
        with self._cond:
            return self._status

    @property
    def transport(self) -> SyncTransport:
        return self._transport

    def add_status_listener(self, listener: StatusListener) -> None:
        """Receive every status transition (called off the lock)."""
        self._listeners.append(listener)

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------

    def start(self) -> None:
        """Start the background worker that fires debounced syncs."""
        with self._cond:
            if self._stopped:
                raise SessionClosedError("Sync engine is stopped")
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._run,
                name=f"guardfin-sync-{self._session.account_id[:8]}",
                daemon=True,
            )
            self._worker.start()

    def stop(self) -> None:
        """Cancel any pending debounce and stop the worker.

        A sync already handed to the transport is left to finish; its
        own timeout bounds how long that takes.
        """
        with self._cond:
            if self._stopped:
                return
            self._stopped = True
            self._deadline = None
            self._rerun = False
            in_flight = self._status == SyncStatus.SYNCING
            cancelled = self._status == SyncStatus.PENDING
            if cancelled:
                self._status = SyncStatus.IDLE
            self._cond.notify_all()
            worker = self._worker

        if cancelled:
            self._emit(SyncStatus.IDLE)
        if worker is not None and not in_flight and worker is not threading.current_thread():
            worker.join(timeout=1.0)
        logger.debug("Sync engine stopped for %s", self._session.account_id)

    # -------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------

    def schedule(self) -> None:
        """Note a local mutation and (re)start the debounce window."""
        with self._cond:
            if self._stopped:
                return
            if self._status == SyncStatus.SYNCING:
                self._rerun = True
                return
            self._deadline = self._clock() + self.debounce_seconds
            changed = self._status != SyncStatus.PENDING
            self._status = SyncStatus.PENDING
            self._cond.notify_all()
        if changed:
            self._emit(SyncStatus.PENDING)

    def run_pending(self) -> Optional[SyncStatus]:
        """Run the scheduled sync on this thread if its deadline has passed.

        Returns:
            The resulting status, or None if nothing was due.
        """
        with self._cond:
            if not self._due():
                return None
            self._begin()
        return self._finish(self._attempt())

    def flush(self) -> Optional[SyncStatus]:
        """Sync now, skipping the debounce window.

        Returns:
            The resulting status, or None if a sync was already in
            flight (the request is dropped, not queued).
        """
        with self._cond:
            if self._stopped or self._status == SyncStatus.SYNCING:
                return None
            self._begin()
        return self._finish(self._attempt())

    def acknowledge(self) -> None:
        """Return a finished sync (synced/error/offline) to idle."""
        with self._cond:
            if not self._status.is_terminal:
                return
            self._status = SyncStatus.IDLE
        self._emit(SyncStatus.IDLE)

    # -------------------------------------------------------------------
    # Restore
    # -------------------------------------------------------------------

    def restore(self) -> int:
        """Replace the local snapshot with the remote bundle.

        Records that do not decrypt under this session's key are
        dropped. Last writer wins: local records missing from the
        remote bundle are gone afterwards.

        Returns:
            Number of records restored.

        Raises:
            TransportError: Remote unreachable.
            RemoteRejectedError: Remote refused the request.
        """
        key = self._session.key
        bundle = self._transport.fetch(self._session.account_id)

        restored: list[Record] = []
        skipped = 0
        for field_name in BUNDLE_ARRAY_FIELDS:
            for item in bundle.get(field_name) or []:
                try:
                    record = Record.model_validate(item)
                    if record.type.wire_field != field_name:
                        raise ValueError(f"type {record.type.value} filed under {field_name}")
                    if not is_valid_record_id(record):
                        raise ValueError(f"malformed id {record.id!r}")
                    envelope.decrypt(key, record.envelope)
                except (ValueError, DecryptError) as exc:
                    skipped += 1
                    logger.warning("Skipping remote record in %s: %s", field_name, exc)
                    continue
                restored.append(record)

        self._store.replace_all(restored)

        self.state.last_restore = datetime.now(timezone.utc)
        self._save_state()
        audit_event(
            self.home,
            AuditEvent.SYNC_RESTORE,
            f"Restored {len(restored)} record(s) from {self._transport.name}",
            account_id=self._session.account_id,
            records=len(restored),
            metadata={"skipped": skipped},
        )
        return len(restored)

    def summary(self) -> dict[str, Any]:
        """Status snapshot for display."""
        return {
            "status": self.status.value,
            "transport": self._transport.name,
            "records": self._store.count(),
            "state": self.state.model_dump(mode="json"),
        }

    # -------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._stopped and not self._due():
                    self._cond.wait(self._wait_timeout())
                if self._stopped:
                    return
                self._begin()
            self._finish(self._attempt())

    def _due(self) -> bool:
        return (
            not self._stopped
            and self._status != SyncStatus.SYNCING
            and self._deadline is not None
            and self._clock() >= self._deadline
        )

    def _wait_timeout(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(self._deadline - self._clock(), 0.0)

    def _begin(self) -> None:
        # Caller holds the condition lock.
        self._deadline = None
        self._rerun = False
        self._status = SyncStatus.SYNCING

    def _attempt(self) -> SyncStatus:
        self._emit(SyncStatus.SYNCING)
        try:
            records = self._store.snapshot()
        except SessionClosedError:
            logger.info("Session closed before sync dispatch; skipping")
            return SyncStatus.IDLE

        batch = SyncBatch.from_records(self._session.account_id, records)
        try:
            receipt = self._transport.push(batch.to_payload())
        except TransportError as exc:
            logger.warning("Sync offline: %s", exc)
            self.state.last_error = str(exc)
            return SyncStatus.OFFLINE
        except (RemoteRejectedError, ValidationError) as exc:
            logger.error("Sync rejected: %s", exc)
            self.state.last_error = str(exc)
            return SyncStatus.ERROR
        except Exception as exc:
            logger.exception("Unexpected sync failure")
            self.state.last_error = str(exc)
            return SyncStatus.ERROR

        self.state.last_sync = datetime.now(timezone.utc)
        self.state.sync_count += 1
        self.state.last_remote_count = receipt.get("syncCount")
        self.state.last_error = None
        logger.info(
            "Synced %d record(s) via %s", batch.record_count, self._transport.name
        )
        audit_event(
            self.home,
            AuditEvent.SYNC_PUSH,
            f"Pushed {batch.record_count} record(s) via {self._transport.name}",
            account_id=self._session.account_id,
            records=batch.record_count,
            metadata={"sync_count": receipt.get("syncCount")},
        )
        return SyncStatus.SYNCED

    def _finish(self, result: SyncStatus) -> SyncStatus:
        self.state.last_status = result
        self._save_state()

        with self._cond:
            self._status = result
            rerun = self._rerun and not self._stopped
            self._rerun = False
            if rerun:
                self._deadline = self._clock() + self.debounce_seconds
                self._status = SyncStatus.PENDING
            self._cond.notify_all()

        self._emit(result)
        if rerun:
            self._emit(SyncStatus.PENDING)
        return result

    def _emit(self, status: SyncStatus) -> None:
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as exc:
                logger.error("Status listener failed: %s", exc)

    def _load_state(self) -> SyncState:
        if self._state_file.exists():
            try:
                data = json.loads(self._state_file.read_text(encoding="utf-8"))
                return SyncState.model_validate(data)
            except (OSError, ValueError) as exc:
                logger.warning("Failed to load sync state: %s", exc)
        return SyncState()

    def _save_state(self) -> None:
        try:
            atomic_write_text(self._state_file, self.state.model_dump_json(indent=2))
        except OSError as exc:
            logger.warning("Failed to save sync state: %s", exc)
