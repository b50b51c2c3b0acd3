"""
Sync data models -- status, batches, persisted state, and the wire bundle.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models import WIRE_FIELDS, Record, RecordType, utc_now

BUNDLE_ARRAY_FIELDS: tuple[str, ...] = tuple(WIRE_FIELDS[t] for t in RecordType)


class SyncStatus(str, Enum):
    """Externally observable sync states.

    idle -> pending -> syncing -> {synced | error | offline} -> idle
    """

    IDLE = "idle"
    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"
    OFFLINE = "offline"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncStatus.SYNCED, SyncStatus.ERROR, SyncStatus.OFFLINE)


class SyncBatch(BaseModel):
    """Full-state snapshot of one account, built fresh for each attempt."""

    account_id: str
    groups: dict[str, list[Record]] = Field(default_factory=dict)
    built_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_records(cls, account_id: str, records: list[Record]) -> "SyncBatch":
        groups: dict[str, list[Record]] = {name: [] for name in BUNDLE_ARRAY_FIELDS}
        for record in records:
            groups[record.type.wire_field].append(record)
        return cls(account_id=account_id, groups=groups)

    @property
    def record_count(self) -> int:
        return sum(len(v) for v in self.groups.values())

    def to_payload(self) -> dict[str, Any]:
        """Body of ``POST /sync``."""
        payload: dict[str, Any] = {"accountId": self.account_id}
        for name in BUNDLE_ARRAY_FIELDS:
            payload[name] = [
                r.model_dump(mode="json") for r in self.groups.get(name, [])
            ]
        payload["settings"] = {}
        return payload


class RemoteBundle(BaseModel):
    """What the server persists per account. Opaque ciphertext only."""

    model_config = ConfigDict(populate_by_name=True)

    transactions: list[Any] = Field(default_factory=list)
    recurring_bills: list[Any] = Field(default_factory=list)
    goals: list[Any] = Field(default_factory=list)
    budgets: list[Any] = Field(default_factory=list)
    reminders: list[Any] = Field(default_factory=list)
    settings: dict[str, Any] = Field(default_factory=dict)
    last_sync: Optional[str] = Field(default=None, alias="lastSync")
    sync_count: int = Field(default=0, alias="syncCount")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SyncReceipt(BaseModel):
    """Server acknowledgement of a stored bundle."""

    model_config = ConfigDict(populate_by_name=True)

    sync_count: int = Field(alias="syncCount")
    timestamp: str

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SyncState(BaseModel):
    """Per-account sync history persisted to disk."""

    last_sync: Optional[datetime] = None
    last_status: SyncStatus = SyncStatus.IDLE
    sync_count: int = 0
    last_remote_count: Optional[int] = None
    last_error: Optional[str] = None
    last_restore: Optional[datetime] = None
