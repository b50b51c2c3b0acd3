"""
Authenticated per-record encryption (AES-256-GCM envelopes).

Each call to ``encrypt`` draws a fresh 96-bit IV from the OS CSPRNG,
so an IV is never reused under the same key. ``decrypt`` fails closed:
a bad tag, wrong key, corrupted IV, or unknown format version raises
``DecryptError`` and never returns partial plaintext.
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Union

from cryptography.exceptions import InvalidTag
from pydantic import ValidationError as PydanticValidationError

from .errors import DecryptError
from .kdf import KeyHandle
from .models import ENVELOPE_ALGORITHM, ENVELOPE_VERSION, Envelope

logger = logging.getLogger("guardfin.envelope")

IV_BYTES = 12
TAG_BYTES = 16


def encrypt(key: KeyHandle, record: dict[str, Any]) -> Envelope:
    """Encrypt a JSON-serializable record.

    Args:
        key: Session key handle.
        record: Plain record data.

    Returns:
        Envelope with version, algorithm, IV, ciphertext||tag, timestamp.
    """
    plaintext = json.dumps(record, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    iv = os.urandom(IV_BYTES)
    sealed = key.seal(iv, plaintext)
    return Envelope(
        version=ENVELOPE_VERSION,
        algorithm=ENVELOPE_ALGORITHM,
        iv=list(iv),
        data=list(sealed),
        timestamp=int(time.time() * 1000),
    )


def decrypt(key: KeyHandle, envelope: Union[Envelope, dict[str, Any]]) -> dict[str, Any]:
    """Authenticate and decrypt an envelope.

    Args:
        key: Session key handle.
        envelope: Envelope model or its raw dict form.

    Returns:
        The original record dict.

    Raises:
        DecryptError: Unsupported format, malformed fields, or failed
            authentication.
    """
    if not isinstance(envelope, Envelope):
        try:
            envelope = Envelope.model_validate(envelope)
        except PydanticValidationError as exc:
            raise DecryptError(f"Malformed envelope: {exc.error_count()} field error(s)") from exc

    if envelope.version != ENVELOPE_VERSION or envelope.algorithm != ENVELOPE_ALGORITHM:
        raise DecryptError(
            f"Unsupported envelope format: {envelope.version}/{envelope.algorithm}"
        )
    if len(envelope.iv) != IV_BYTES:
        raise DecryptError("Invalid IV length")
    if len(envelope.data) < TAG_BYTES:
        raise DecryptError("Ciphertext shorter than authentication tag")

    try:
        iv = bytes(envelope.iv)
        ciphertext = bytes(envelope.data)
    except ValueError as exc:
        raise DecryptError("Envelope bytes out of range") from exc

    try:
        plaintext = key.open(iv, ciphertext)
    except InvalidTag as exc:
        raise DecryptError("Authentication failed") from exc

    try:
        record = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecryptError("Decrypted payload is not valid JSON") from exc

    if not isinstance(record, dict):
        raise DecryptError("Decrypted payload is not a record object")
    return record
