"""
Passphrase key derivation -- encryption keys and verifiers.

One PBKDF2-HMAC-SHA256 run (250,000 iterations, per-account salt)
produces a master secret. HKDF then splits it into two unrelated
outputs under different context strings:

    passphrase + salt
    └── PBKDF2-SHA256 (250k) -> master secret (never stored)
        ├── HKDF info="guardfin:kdf:encryption" -> AES-256-GCM key
        └── HKDF info="guardfin:kdf:verifier"   -> 32-byte verifier

Only the verifier is persisted. Knowing it tells you nothing about
the encryption key, and neither output leaks the passphrase.
"""

from __future__ import annotations

import logging
import os
import uuid

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import SessionClosedError

logger = logging.getLogger("guardfin.kdf")

PBKDF2_ITERATIONS = 250_000
SALT_BYTES = 32
KEY_BYTES = 32

_ENCRYPTION_INFO = b"guardfin:kdf:encryption"
_VERIFIER_INFO = b"guardfin:kdf:verifier"


class KeyHandle:
    """Opaque AES-256-GCM key held for the lifetime of a session.

    The raw key never leaves this object: callers can only seal and
    open data with it. ``destroy()`` overwrites the buffer in place and
    every later use raises ``SessionClosedError``.
    """

    __slots__ = ("_material", "_destroyed")

    def __init__(self, material: bytes) -> None:
        if len(material) != KEY_BYTES:
            raise ValueError(f"Key must be {KEY_BYTES} bytes")
        self._material = bytearray(material)
        self._destroyed = False

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def seal(self, iv: bytes, plaintext: bytes) -> bytes:
        """Encrypt and authenticate; returns ciphertext||tag."""
        return self._aead().encrypt(iv, plaintext, None)

    def open(self, iv: bytes, ciphertext: bytes) -> bytes:
        """Authenticate and decrypt ciphertext||tag.

        Raises:
            cryptography.exceptions.InvalidTag: On any authentication failure.
        """
        return self._aead().decrypt(iv, ciphertext, None)

    def destroy(self) -> None:
        """Zero the key buffer. Idempotent."""
        for i in range(len(self._material)):
            self._material[i] = 0
        self._destroyed = True

    def _aead(self) -> AESGCM:
        if self._destroyed:
            raise SessionClosedError("Session key has been destroyed")
        return AESGCM(bytes(self._material))

    def __repr__(self) -> str:
        state = "destroyed" if self._destroyed else "active"
        return f"KeyHandle(<{state}>)"

    def __reduce__(self):
        raise TypeError("KeyHandle cannot be serialized")


def generate_salt() -> bytes:
    """Return 32 bytes from the OS CSPRNG."""
    return os.urandom(SALT_BYTES)


def generate_account_id() -> str:
    """Random 128-bit RFC-4122 version 4 UUID string."""
    return str(uuid.UUID(bytes=os.urandom(16), version=4))


def _master_secret(passphrase: str, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def _expand(master: bytes, info: bytes) -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=None,
        info=info,
    )
    return hkdf.derive(master)


def derive_key(
    passphrase: str,
    salt: bytes,
    iterations: int = PBKDF2_ITERATIONS,
) -> KeyHandle:
    """Derive the account's encryption key.

    Deterministic: the same passphrase and salt always give the same
    key. Different salts give unrelated keys even for equal passphrases.

    Args:
        passphrase: User passphrase.
        salt: Per-account random salt.
        iterations: PBKDF2 iteration count recorded on the account.

    Returns:
        KeyHandle wrapping the 256-bit key.
    """
    master = _master_secret(passphrase, salt, iterations)
    return KeyHandle(_expand(master, _ENCRYPTION_INFO))


def create_verifier(
    passphrase: str,
    salt: bytes,
    iterations: int = PBKDF2_ITERATIONS,
) -> bytes:
    """Derive the 32-byte passphrase verifier stored on the account."""
    master = _master_secret(passphrase, salt, iterations)
    return _expand(master, _VERIFIER_INFO)


def derive_session_material(
    passphrase: str,
    salt: bytes,
    iterations: int = PBKDF2_ITERATIONS,
) -> tuple[KeyHandle, bytes]:
    """Derive key and verifier from a single PBKDF2 run.

    Sign-in needs both; this avoids paying the iteration cost twice.
    """
    master = _master_secret(passphrase, salt, iterations)
    return (
        KeyHandle(_expand(master, _ENCRYPTION_INFO)),
        _expand(master, _VERIFIER_INFO),
    )


def constant_time_equals(a: bytes, b: bytes) -> bool:
    """Compare two byte strings without an early exit.

    Length mismatch is rejected up front. Equal-length inputs are
    compared across every byte by OR-accumulating the XOR of each pair,
    so timing does not depend on where they first differ.
    """
    if len(a) != len(b):
        return False
    result = 0
    for x, y in zip(a, b):
        result |= x ^ y
    return result == 0


def verify(
    passphrase: str,
    salt: bytes,
    stored_verifier: bytes,
    iterations: int = PBKDF2_ITERATIONS,
) -> bool:
    """Check a passphrase against a stored verifier."""
    computed = create_verifier(passphrase, salt, iterations)
    return constant_time_equals(computed, bytes(stored_verifier))
