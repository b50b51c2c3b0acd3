"""Tests for the account registry and sign-in."""

from __future__ import annotations

import json

import pytest

from guardfin.audit import AuditEvent, read_audit_log
from guardfin.errors import AuthError, NotFoundError, SessionClosedError, ValidationError
from guardfin.registry import DELETE_CONFIRMATION, AccountRegistry

from conftest import PASSPHRASE, TEST_ITERATIONS


class TestCreate:
    """Account creation."""

    def test_create_returns_uuid(self, registry):
        account_id = registry.create("Alex", PASSPHRASE)
        assert len(account_id) == 36
        assert account_id.count("-") == 4

    def test_account_fields(self, registry):
        account_id = registry.create("Alex", PASSPHRASE)
        account = registry.get(account_id)
        assert account.name == "Alex"
        assert len(account.salt) == 32
        assert len(account.verifier) == 32
        assert account.kdf_iterations == TEST_ITERATIONS

    def test_passphrase_never_persisted(self, registry, home):
        registry.create("Alex", PASSPHRASE)
        raw = (home / "accounts.json").read_text()
        assert PASSPHRASE not in raw
        assert "passphrase" not in raw.lower()

    def test_salts_unique_for_same_passphrase(self, registry):
        a = registry.get(registry.create("A", PASSPHRASE))
        b = registry.get(registry.create("B", PASSPHRASE))
        assert a.salt != b.salt
        assert a.verifier != b.verifier

    def test_empty_name_rejected(self, registry):
        with pytest.raises(ValidationError):
            registry.create("   ", PASSPHRASE)

    def test_empty_passphrase_rejected(self, registry):
        with pytest.raises(ValidationError):
            registry.create("Alex", "")

    def test_audited(self, registry, home):
        account_id = registry.create("Alex", PASSPHRASE)
        events = read_audit_log(home)
        assert events[-1].event == AuditEvent.ACCOUNT_CREATE
        assert events[-1].account_id == account_id


class TestSignIn:
    """Passphrase verification."""

    def test_correct_passphrase(self, registry, account_id):
        session = registry.sign_in(account_id, PASSPHRASE)
        assert session.account_id == account_id
        assert session.account.name == "Alex"
        assert not session.closed
        session.close()

    def test_wrong_passphrase(self, registry, account_id):
        with pytest.raises(AuthError, match="Invalid passphrase"):
            registry.sign_in(account_id, "correcthorsebattery9!")

    def test_unknown_account_same_error(self, registry):
        with pytest.raises(AuthError) as exc_info:
            registry.sign_in("00000000-0000-4000-8000-000000000000", PASSPHRASE)
        assert str(exc_info.value) == "Invalid passphrase"

    def test_failure_audited(self, registry, account_id, home):
        with pytest.raises(AuthError):
            registry.sign_in(account_id, "wrong")
        assert read_audit_log(home)[-1].event == AuditEvent.AUTH_FAILURE

    def test_success_audited(self, registry, account_id, home):
        registry.sign_in(account_id, PASSPHRASE).close()
        assert read_audit_log(home)[-1].event == AuditEvent.AUTH_SUCCESS

    def test_sessions_share_key(self, registry, account_id):
        from guardfin import envelope

        first = registry.sign_in(account_id, PASSPHRASE)
        env = envelope.encrypt(first.key, {"a": 1})
        first.close()
        second = registry.sign_in(account_id, PASSPHRASE)
        assert envelope.decrypt(second.key, env) == {"a": 1}
        second.close()

    def test_existing_account_keeps_iterations(self, home, account_id):
        reloaded = AccountRegistry(home, iterations=2_000)
        session = reloaded.sign_in(account_id, PASSPHRASE)
        assert reloaded.get(account_id).kdf_iterations == TEST_ITERATIONS
        session.close()


class TestSession:
    """Sign-out semantics."""

    def test_close_destroys_key(self, registry, account_id):
        session = registry.sign_in(account_id, PASSPHRASE)
        key = session.key
        session.close()
        assert key.destroyed
        with pytest.raises(SessionClosedError):
            session.key

    def test_close_runs_hooks_once(self, registry, account_id):
        calls = []
        session = registry.sign_in(account_id, PASSPHRASE)
        session.on_close(lambda: calls.append(1))
        session.close()
        session.close()
        assert calls == [1]

    def test_failing_hook_does_not_block_close(self, registry, account_id):
        session = registry.sign_in(account_id, PASSPHRASE)
        session.on_close(lambda: 1 / 0)
        session.close()
        assert session.closed

    def test_context_manager(self, registry, account_id):
        with registry.sign_in(account_id, PASSPHRASE) as session:
            assert not session.closed
        assert session.closed

    def test_repr_has_no_key(self, registry, account_id):
        with registry.sign_in(account_id, PASSPHRASE) as session:
            assert "KeyHandle" not in repr(session)


class TestListAndRemove:
    """Picker listing and removal."""

    def test_list_is_picker_safe(self, registry, account_id):
        summaries = registry.list()
        assert [s.account_id for s in summaries] == [account_id]
        dumped = summaries[0].model_dump()
        assert "salt" not in dumped
        assert "verifier" not in dumped

    def test_list_empty(self, registry):
        assert registry.list() == []

    def test_get_unknown(self, registry):
        with pytest.raises(NotFoundError):
            registry.get("nope")

    def test_remove_requires_confirmation(self, registry, account_id):
        with pytest.raises(ValidationError):
            registry.remove(account_id, "yes")
        assert registry.list()

    def test_remove(self, registry, account_id, home):
        registry.remove(account_id, DELETE_CONFIRMATION)
        assert registry.list() == []
        assert json.loads((home / "accounts.json").read_text()) == []

    def test_remove_unknown(self, registry):
        with pytest.raises(NotFoundError):
            registry.remove("nope", DELETE_CONFIRMATION)

    def test_persists_across_instances(self, home, account_id):
        assert AccountRegistry(home).get(account_id).name == "Alex"
