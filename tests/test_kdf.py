"""Tests for passphrase key derivation and verifiers."""

from __future__ import annotations

import pickle
import uuid

import pytest
from cryptography.exceptions import InvalidTag

from guardfin.errors import SessionClosedError
from guardfin.kdf import (
    KEY_BYTES,
    SALT_BYTES,
    KeyHandle,
    constant_time_equals,
    create_verifier,
    derive_key,
    derive_session_material,
    generate_account_id,
    generate_salt,
    verify,
)

ITER = 1_000
IV = b"\x00" * 12


class TestRandomness:
    """Salts and account ids."""

    def test_salt_length(self):
        assert len(generate_salt()) == SALT_BYTES

    def test_salts_differ(self):
        assert generate_salt() != generate_salt()

    def test_account_id_is_uuid4(self):
        parsed = uuid.UUID(generate_account_id())
        assert parsed.version == 4
        assert parsed.variant == uuid.RFC_4122

    def test_account_ids_unique(self):
        ids = {generate_account_id() for _ in range(100)}
        assert len(ids) == 100


class TestDeriveKey:
    """Key derivation determinism and separation."""

    def test_same_inputs_same_key(self):
        salt = generate_salt()
        a = derive_key("pw", salt, ITER)
        b = derive_key("pw", salt, ITER)
        sealed = a.seal(IV, b"hello")
        assert b.open(IV, sealed) == b"hello"

    def test_different_salt_different_key(self):
        a = derive_key("pw", generate_salt(), ITER)
        b = derive_key("pw", generate_salt(), ITER)
        sealed = a.seal(IV, b"hello")
        with pytest.raises(InvalidTag):
            b.open(IV, sealed)

    def test_session_material_matches_separate_derivation(self):
        salt = generate_salt()
        key, verifier = derive_session_material("pw", salt, ITER)
        assert verifier == create_verifier("pw", salt, ITER)
        sealed = key.seal(IV, b"x")
        assert derive_key("pw", salt, ITER).open(IV, sealed) == b"x"


class TestVerifier:
    """Verifier creation and checking."""

    def test_verifier_length(self):
        assert len(create_verifier("pw", generate_salt(), ITER)) == KEY_BYTES

    def test_verify_correct(self):
        salt = generate_salt()
        stored = create_verifier("CorrectHorseBattery9!", salt, ITER)
        assert verify("CorrectHorseBattery9!", salt, stored, ITER)

    def test_verify_wrong(self):
        salt = generate_salt()
        stored = create_verifier("CorrectHorseBattery9!", salt, ITER)
        assert not verify("correcthorsebattery9!", salt, stored, ITER)

    def test_verifier_is_not_the_key(self):
        salt = generate_salt()
        key, verifier = derive_session_material("pw", salt, ITER)
        assert verifier != bytes(key._material)
        with pytest.raises(InvalidTag):
            KeyHandle(verifier).open(IV, key.seal(IV, b"secret"))


class TestConstantTimeEquals:
    """Byte comparison."""

    def test_equal(self):
        assert constant_time_equals(b"abc", b"abc")

    def test_differs_last_byte(self):
        assert not constant_time_equals(b"abc", b"abd")

    def test_differs_first_byte(self):
        assert not constant_time_equals(b"xbc", b"abc")

    def test_length_mismatch(self):
        assert not constant_time_equals(b"abc", b"abcd")

    def test_empty(self):
        assert constant_time_equals(b"", b"")


class TestKeyHandle:
    """Key handle lifecycle."""

    def test_rejects_wrong_size(self):
        with pytest.raises(ValueError):
            KeyHandle(b"short")

    def test_destroy_zeroes_and_blocks_use(self):
        key = derive_key("pw", generate_salt(), ITER)
        key.destroy()
        assert key.destroyed
        assert all(b == 0 for b in key._material)
        with pytest.raises(SessionClosedError):
            key.seal(IV, b"x")
        with pytest.raises(SessionClosedError):
            key.open(IV, b"x" * 32)

    def test_destroy_idempotent(self):
        key = KeyHandle(b"\x01" * KEY_BYTES)
        key.destroy()
        key.destroy()
        assert key.destroyed

    def test_repr_hides_material(self):
        key = KeyHandle(b"\x41" * KEY_BYTES)
        assert "AAAA" not in repr(key)
        assert "41" not in repr(key)

    def test_not_picklable(self):
        with pytest.raises(TypeError):
            pickle.dumps(KeyHandle(b"\x01" * KEY_BYTES))
