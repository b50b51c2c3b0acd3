"""
Local encrypted record store.

Every record is encrypted under the session key before it touches the
disk. Reads decrypt on the fly; a record that will not open (corrupt
bytes, foreign key) is reported as a failed result instead of breaking
the whole listing.

Storage layout:
    ~/.guardfin/vaults/<account_id>/
    └── records/
        └── transaction_<uuid>.json    # Record (envelope + timestamps)

This is the only surface the UI, parser, and chat layers talk to:
``get_by_type``, ``save``, ``update``, ``delete``.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from . import envelope
from ._atomic import atomic_write_text
from .errors import DecryptError, NotFoundError, SessionClosedError, ValidationError
from .models import Record, RecordResult, RecordType, utc_now
from .session import Session

logger = logging.getLogger("guardfin.store")

_RECORD_ID_RE = re.compile(r"^[a-z]+_[0-9a-f-]{36}$")
_TYPE_NAMES = {t.value for t in RecordType}


def vault_dir(home: Path, account_id: str) -> Path:
    """Per-account vault directory."""
    return home / "vaults" / account_id


def is_valid_record_id(record: Record) -> bool:
    """True if the id is well formed and matches the record type."""
    return bool(_RECORD_ID_RE.match(record.id)) and record.id.startswith(
        f"{record.type.value}_"
    )


def _coerce_type(record_type: Union[RecordType, str]) -> RecordType:
    try:
        return RecordType(record_type)
    except ValueError as exc:
        allowed = ", ".join(t.value for t in RecordType)
        raise ValidationError(
            f"Unknown record type '{record_type}' (expected one of: {allowed})"
        ) from exc


class LocalStore:
    """Per-account durable store of encrypted records.

    Args:
        home: Guardfin home directory.
        session: Open session whose key encrypts the records.
    """

    def __init__(self, home: Path, session: Session) -> None:
        session.ensure_open()
        self._home = home
        self._session: Optional[Session] = session
        self._account_id = session.account_id
        self._records_dir = vault_dir(home, session.account_id) / "records"
        self._recover_interrupted_swap()
        self._records_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._listeners: list[Callable[[], None]] = []
        session.on_close(self.close)

    @property
    def account_id(self) -> str:
        return self._account_id

    @property
    def closed(self) -> bool:
        return self._session is None or self._session.closed

    def add_listener(self, listener: Callable[[], None]) -> None:
        """Call ``listener()`` after every successful mutation."""
        self._listeners.append(listener)

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------

    def put(self, record_type: Union[RecordType, str], data: dict[str, Any]) -> str:
        """Encrypt and store a new record.

        Args:
            record_type: One of transaction, bill, goal, budget, reminder.
            data: JSON-serializable record content.

        Returns:
            The new record id, ``<type>_<uuid>``.
        """
        rtype = _coerce_type(record_type)
        session = self._require_session()
        record = Record(
            id=f"{rtype.value}_{uuid.uuid4()}",
            type=rtype,
            envelope=envelope.encrypt(session.key, data),
        )
        with self._lock:
            self._write(record)
        logger.debug("Stored record %s", record.id)
        self._notify()
        return record.id

    save = put

    def update(self, record_id: str, data: dict[str, Any]) -> None:
        """Re-encrypt a record in place with a fresh IV.

        Raises:
            NotFoundError: If the record does not exist.
        """
        session = self._require_session()
        with self._lock:
            existing = self._read(record_id)
            updated = existing.model_copy(
                update={
                    "envelope": envelope.encrypt(session.key, data),
                    "updated_at": utc_now(),
                }
            )
            self._write(updated)
        logger.debug("Updated record %s", record_id)
        self._notify()

    def delete(self, record_id: str) -> None:
        """Hard-delete a record.

        Raises:
            NotFoundError: If the record does not exist.
        """
        self._require_session()
        with self._lock:
            path = self._path(record_id)
            if not path.exists():
                raise NotFoundError(f"Record '{record_id}' not found")
            path.unlink()
        logger.debug("Deleted record %s", record_id)
        self._notify()

    def replace_all(self, records: list[Record]) -> None:
        """Swap the whole local snapshot for ``records``.

        The new set is written to a staging directory first and moved
        into place only once complete.
        """
        self._require_session()
        for record in records:
            if not is_valid_record_id(record):
                raise ValidationError(f"Invalid record id '{record.id}'")
        with self._lock:
            staging = self._records_dir.with_name("records.staging")
            if staging.exists():
                shutil.rmtree(staging)
            staging.mkdir(parents=True)
            for record in records:
                (staging / f"{record.id}.json").write_text(
                    record.model_dump_json(indent=2), encoding="utf-8"
                )
            retired = self._records_dir.with_name("records.old")
            if retired.exists():
                shutil.rmtree(retired)
            self._records_dir.rename(retired)
            try:
                staging.rename(self._records_dir)
            except BaseException:
                retired.rename(self._records_dir)
                shutil.rmtree(staging, ignore_errors=True)
                raise
            shutil.rmtree(retired)
        logger.info("Replaced local snapshot with %d record(s)", len(records))

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def get(self, record_id: str) -> dict[str, Any]:
        """Decrypt a single record.

        Raises:
            NotFoundError: Unknown id.
            DecryptError: The record cannot be authenticated.
        """
        session = self._require_session()
        with self._lock:
            record = self._read(record_id)
        return envelope.decrypt(session.key, record.envelope)

    def get_all(self) -> list[RecordResult]:
        """Decrypt every record, oldest first.

        A record that fails to load or decrypt becomes a result with
        ``error`` set; the rest of the listing is unaffected.
        """
        session = self._require_session()
        results: list[RecordResult] = []
        for path in self._record_files():
            results.append(self._open(session, path))
        results.sort(key=lambda r: r.created_at)
        return results

    def get_by_type(self, record_type: Union[RecordType, str]) -> list[RecordResult]:
        """Decrypted results for one record type."""
        rtype = _coerce_type(record_type)
        session = self._require_session()
        results = [
            self._open(session, path)
            for path in self._record_files(prefix=f"{rtype.value}_")
        ]
        results.sort(key=lambda r: r.created_at)
        return results

    def snapshot(self) -> list[Record]:
        """Raw encrypted records for sync. Unreadable files are skipped."""
        self._require_session()
        records: list[Record] = []
        with self._lock:
            for path in self._record_files():
                try:
                    records.append(self._parse(path))
                except (OSError, ValueError) as exc:
                    logger.warning("Skipping unreadable record file %s: %s", path.name, exc)
        return records

    def count(self) -> int:
        return len(self._record_files())

    def close(self) -> None:
        """Release the session. Encrypted files stay on disk."""
        if self._session is not None:
            logger.debug("Closing store for account %s", self._account_id)
        self._session = None
        self._listeners.clear()

    # -------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------

    def _recover_interrupted_swap(self) -> None:
        # A crash between the two renames in replace_all leaves only records.old.
        retired = self._records_dir.with_name("records.old")
        if not self._records_dir.exists() and retired.is_dir():
            logger.warning("Restoring records from interrupted snapshot swap")
            retired.rename(self._records_dir)

    def _require_session(self) -> Session:
        if self._session is None:
            raise SessionClosedError("Store is closed")
        self._session.ensure_open()
        return self._session

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as exc:
                logger.error("Mutation listener failed: %s", exc)

    def _path(self, record_id: str) -> Path:
        if not _RECORD_ID_RE.match(record_id or ""):
            raise NotFoundError(f"Record '{record_id}' not found")
        return self._records_dir / f"{record_id}.json"

    def _record_files(self, prefix: str = "") -> list[Path]:
        if not self._records_dir.is_dir():
            return []
        return sorted(self._records_dir.glob(f"{prefix}*.json"))

    def _parse(self, path: Path) -> Record:
        return Record.model_validate(json.loads(path.read_text(encoding="utf-8")))

    def _read(self, record_id: str) -> Record:
        path = self._path(record_id)
        if not path.exists():
            raise NotFoundError(f"Record '{record_id}' not found")
        return self._parse(path)

    def _write(self, record: Record) -> None:
        atomic_write_text(self._path(record.id), record.model_dump_json(indent=2))

    def _open(self, session: Session, path: Path) -> RecordResult:
        try:
            record = self._parse(path)
        except (OSError, json.JSONDecodeError, PydanticValidationError) as exc:
            logger.error("Unreadable record file %s: %s", path.name, exc)
            type_name = path.stem.split("_", 1)[0]
            rtype = RecordType(type_name) if type_name in _TYPE_NAMES else None
            return RecordResult(
                record_id=path.stem,
                type=rtype,
                created_at=utc_now(),
                error=f"Unreadable record: {exc.__class__.__name__}",
            )

        try:
            data = envelope.decrypt(session.key, record.envelope)
        except DecryptError as exc:
            logger.error("Decrypt error for record %s: %s", record.id, exc)
            return RecordResult(
                record_id=record.id,
                type=record.type,
                created_at=record.created_at,
                updated_at=record.updated_at,
                error=str(exc),
            )

        return RecordResult(
            record_id=record.id,
            type=record.type,
            created_at=record.created_at,
            updated_at=record.updated_at,
            data=data,
        )
