"""
Pydantic models for accounts, encrypted envelopes, and stored records.

Nothing in here ever carries a passphrase or a derived key. Accounts
hold only the salt and verifier needed to rebuild the key at sign-in;
records hold only ciphertext.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

ENVELOPE_VERSION = "1.0"
ENVELOPE_ALGORITHM = "AES-GCM"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RecordType(str, Enum):
    """Kinds of finance records the vault stores."""

    TRANSACTION = "transaction"
    BILL = "bill"
    GOAL = "goal"
    BUDGET = "budget"
    REMINDER = "reminder"

    @property
    def wire_field(self) -> str:
        """Name of the sync payload array holding this record type."""
        return WIRE_FIELDS[self]


WIRE_FIELDS: dict[RecordType, str] = {
    RecordType.TRANSACTION: "transactions",
    RecordType.BILL: "recurring_bills",
    RecordType.GOAL: "goals",
    RecordType.BUDGET: "budgets",
    RecordType.REMINDER: "reminders",
}


class AccountSummary(BaseModel):
    """Picker-safe view of an account: no salt, no verifier."""

    account_id: str
    name: str
    created_at: datetime


class Account(BaseModel):
    """A registered local account.

    Created once and never modified. The verifier is a one-way digest
    of the passphrase; it cannot be turned back into the passphrase or
    into the encryption key.
    """

    account_id: str = Field(description="RFC-4122 v4 UUID")
    name: str
    salt: list[int] = Field(description="32 random bytes")
    verifier: list[int] = Field(description="32-byte passphrase verifier")
    kdf_iterations: int = 250_000
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def salt_bytes(self) -> bytes:
        return bytes(self.salt)

    @property
    def verifier_bytes(self) -> bytes:
        return bytes(self.verifier)

    def summary(self) -> AccountSummary:
        return AccountSummary(
            account_id=self.account_id,
            name=self.name,
            created_at=self.created_at,
        )


class Envelope(BaseModel):
    """Versioned AES-GCM ciphertext container for one record.

    Wire and disk format::

        {"version": "1.0", "algorithm": "AES-GCM",
         "iv": [12 bytes], "data": [ciphertext||tag], "timestamp": <ms>}
    """

    version: str = ENVELOPE_VERSION
    algorithm: str = ENVELOPE_ALGORITHM
    iv: list[int]
    data: list[int]
    timestamp: int = Field(description="Epoch milliseconds at encryption")


class Record(BaseModel):
    """One encrypted record as stored on disk and sent to the server."""

    id: str = Field(description="'<type>_<uuid>'")
    type: RecordType
    envelope: Envelope
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None


class RecordResult(BaseModel):
    """Outcome of decrypting a single record during a bulk read.

    Lets callers tell "no records" apart from "some records exist but
    could not be opened".
    """

    record_id: str
    type: Optional[RecordType] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
