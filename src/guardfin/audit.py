"""
Vault audit trail.

One JSON object per line under ``<home>/security/audit.log``. Entries
record who signed in, when accounts came and went, and how many
records each sync pushed or restored. They never hold passphrases,
keys, verifiers, or record plaintext; account ids are fine since the
sync server sees those anyway.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from .models import utc_now

logger = logging.getLogger("guardfin.audit")

AUDIT_LOG_NAME = "audit.log"


class AuditEvent(str, Enum):
    """Things worth a permanent trace."""

    ACCOUNT_CREATE = "ACCOUNT_CREATE"
    ACCOUNT_REMOVE = "ACCOUNT_REMOVE"
    AUTH_SUCCESS = "AUTH_SUCCESS"
    AUTH_FAILURE = "AUTH_FAILURE"
    SYNC_PUSH = "SYNC_PUSH"
    SYNC_RESTORE = "SYNC_RESTORE"
    DATA_DELETE = "DATA_DELETE"


class AuditEntry(BaseModel):
    """One line of the audit log."""

    at: datetime = Field(default_factory=utc_now)
    event: AuditEvent
    account_id: Optional[str] = None
    detail: str = ""
    records: Optional[int] = Field(
        default=None, description="Records pushed or restored, for sync events"
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


def audit_log_path(home: Path) -> Path:
    return home / "security" / AUDIT_LOG_NAME


def audit_event(
    home: Path,
    event: Union[AuditEvent, str],
    detail: str = "",
    account_id: Optional[str] = None,
    records: Optional[int] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> Optional[AuditEntry]:
    """Append an entry to the audit log.

    A log that cannot be written is reported at debug level and the
    audited operation carries on.

    Returns:
        The entry written, or None if the write failed.
    """
    entry = AuditEntry(
        event=AuditEvent(event),
        account_id=account_id,
        detail=detail,
        records=records,
        metadata=metadata or {},
    )
    path = audit_log_path(home)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(entry.model_dump_json(exclude_none=True) + "\n")
    except OSError as exc:
        logger.debug("Audit entry dropped (%s): %s", entry.event.value, exc)
        return None
    return entry


def read_audit_log(
    home: Path,
    account_id: Optional[str] = None,
    limit: int = 0,
) -> list[AuditEntry]:
    """Entries oldest first, optionally for one account only.

    Lines that do not parse are skipped and counted in a warning.

    Args:
        home: Guardfin home directory.
        account_id: Keep only entries for this account.
        limit: Newest N entries after filtering (0 = all).
    """
    path = audit_log_path(home)
    if not path.exists():
        return []

    entries: list[AuditEntry] = []
    bad_lines = 0
    with path.open(encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                entry = AuditEntry.model_validate(json.loads(line))
            except ValueError:
                bad_lines += 1
                continue
            if account_id is None or entry.account_id == account_id:
                entries.append(entry)

    if bad_lines:
        logger.warning("Skipped %d unreadable audit line(s) in %s", bad_lines, path)
    return entries[-limit:] if limit > 0 else entries
