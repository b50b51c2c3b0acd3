"""
Account registry -- who can sign in on this machine.

Stores, per account, only what is needed to check a passphrase and
rebuild the key: a random salt and a one-way verifier. The passphrase
and the encryption key are never written anywhere.

Storage layout:
    ~/.guardfin/
    └── accounts.json      # list[Account], rewritten atomically
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Optional

from ._atomic import atomic_write_text
from .audit import AuditEvent, audit_event
from .errors import AuthError, NotFoundError, ValidationError
from .kdf import (
    PBKDF2_ITERATIONS,
    constant_time_equals,
    create_verifier,
    derive_session_material,
    generate_account_id,
    generate_salt,
)
from .models import Account, AccountSummary
from .session import Session

logger = logging.getLogger("guardfin.registry")

REGISTRY_FILE = "accounts.json"
DELETE_CONFIRMATION = "DELETE_ALL_DATA"


class AccountRegistry:
    """Durable mapping of account id to salt and verifier.

    Args:
        home: Guardfin home directory (~/.guardfin).
        iterations: PBKDF2 iteration count for newly created accounts.
            Existing accounts keep the count they were created with.
    """

    def __init__(self, home: Path, iterations: int = PBKDF2_ITERATIONS) -> None:
        self._home = home
        self._file = home / REGISTRY_FILE
        self._iterations = iterations
        self._lock = threading.Lock()

    def create(self, name: str, passphrase: str) -> str:
        """Register a new account.

        Args:
            name: Display name for the account picker.
            passphrase: Secret the key will be derived from.

        Returns:
            The new account id.

        Raises:
            ValidationError: Empty name or passphrase.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Account name is required")
        if not passphrase:
            raise ValidationError("Passphrase is required")

        salt = generate_salt()
        account = Account(
            account_id=generate_account_id(),
            name=name,
            salt=list(salt),
            verifier=list(create_verifier(passphrase, salt, self._iterations)),
            kdf_iterations=self._iterations,
        )

        with self._lock:
            accounts = self._load()
            accounts.append(account)
            self._save(accounts)

        logger.info("Created account %s", account.account_id)
        audit_event(
            self._home,
            AuditEvent.ACCOUNT_CREATE,
            f"Account '{name}' created",
            account_id=account.account_id,
        )
        return account.account_id

    def sign_in(self, account_id: str, passphrase: str) -> Session:
        """Verify a passphrase and open a session.

        Unknown accounts and wrong passphrases raise the same error
        after the same amount of key-derivation work.

        Args:
            account_id: Account to unlock.
            passphrase: Candidate passphrase.

        Returns:
            Session holding the derived encryption key.

        Raises:
            AuthError: Unknown account or wrong passphrase.
        """
        account = self._find(account_id)

        if account is None:
            # Burn the same PBKDF2 cost so timing does not reveal existence.
            create_verifier(passphrase or "", generate_salt(), self._iterations)
            self._audit_failure(account_id)
            raise AuthError()

        key, verifier = derive_session_material(
            passphrase or "", account.salt_bytes, account.kdf_iterations
        )
        if not constant_time_equals(verifier, account.verifier_bytes):
            key.destroy()
            self._audit_failure(account_id)
            raise AuthError()

        audit_event(
            self._home,
            AuditEvent.AUTH_SUCCESS,
            "Signed in",
            account_id=account.account_id,
        )
        logger.info("Signed in to account %s", account.account_id)
        return Session(account.summary(), key)

    def list(self) -> list[AccountSummary]:
        """Accounts for the picker: id, name, creation time only."""
        return [a.summary() for a in self._load()]

    def get(self, account_id: str) -> Account:
        """Load the full account record.

        Raises:
            NotFoundError: If the account does not exist.
        """
        account = self._find(account_id)
        if account is None:
            raise NotFoundError(f"Account '{account_id}' not found")
        return account

    def remove(self, account_id: str, confirmation: str) -> None:
        """Forget a local account. Encrypted records are left on disk.

        Raises:
            ValidationError: Confirmation string missing or wrong.
            NotFoundError: Unknown account.
        """
        if confirmation != DELETE_CONFIRMATION:
            raise ValidationError("Confirmation string required")

        with self._lock:
            accounts = self._load()
            remaining = [a for a in accounts if a.account_id != account_id]
            if len(remaining) == len(accounts):
                raise NotFoundError(f"Account '{account_id}' not found")
            self._save(remaining)

        audit_event(
            self._home, AuditEvent.ACCOUNT_REMOVE, "Account removed", account_id=account_id
        )

    # -------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------

    def _find(self, account_id: str) -> Optional[Account]:
        return next(
            (a for a in self._load() if a.account_id == account_id),
            None,
        )

    def _load(self) -> list[Account]:
        if not self._file.exists():
            return []
        try:
            data = json.loads(self._file.read_text(encoding="utf-8"))
            return [Account.model_validate(a) for a in data]
        except ValueError as exc:
            logger.error("Account registry unreadable: %s", exc)
            raise

    def _save(self, accounts: list[Account]) -> None:
        data = [a.model_dump(mode="json") for a in accounts]
        atomic_write_text(self._file, json.dumps(data, indent=2))

    def _audit_failure(self, account_id: str) -> None:
        logger.warning("Sign-in failed for account %s", account_id)
        audit_event(
            self._home,
            AuditEvent.AUTH_FAILURE,
            "Invalid passphrase",
            account_id=account_id,
        )
