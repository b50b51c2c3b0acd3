"""Tests for the local encrypted record store."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from guardfin import envelope
from guardfin.errors import DecryptError, NotFoundError, SessionClosedError, ValidationError
from guardfin.models import Record, RecordType
from guardfin.store import LocalStore, vault_dir

LUNCH = {"amount": 42.50, "category": "Food & Dining", "description": "Lunch"}


def _record_files(home, account_id):
    return sorted((vault_dir(home, account_id) / "records").glob("*.json"))


class TestPut:
    """Saving new records."""

    def test_save_and_get(self, store):
        record_id = store.save("transaction", LUNCH)
        assert record_id.startswith("transaction_")
        assert store.get(record_id) == LUNCH

    def test_enum_type_accepted(self, store):
        record_id = store.put(RecordType.GOAL, {"target": 1000})
        assert record_id.startswith("goal_")

    def test_unknown_type(self, store):
        with pytest.raises(ValidationError, match="Unknown record type"):
            store.put("invoice", {})

    def test_disk_holds_only_ciphertext(self, store, home, session):
        store.save("transaction", LUNCH)
        [path] = _record_files(home, session.account_id)
        raw = path.read_text()
        assert "Food" not in raw
        assert "42.5" not in raw
        stored = json.loads(raw)
        assert set(stored["envelope"]) == {"version", "algorithm", "iv", "data", "timestamp"}

    def test_listener_called(self, store):
        calls = []
        store.add_listener(lambda: calls.append(1))
        store.save("bill", {"name": "Rent"})
        assert calls == [1]

    def test_failing_listener_does_not_break_write(self, store):
        store.add_listener(lambda: 1 / 0)
        record_id = store.save("bill", {"name": "Rent"})
        assert store.get(record_id) == {"name": "Rent"}


class TestUpdateDelete:
    """Mutating existing records."""

    def test_update(self, store):
        record_id = store.save("budget", {"limit": 100})
        store.update(record_id, {"limit": 200})
        assert store.get(record_id) == {"limit": 200}
        [result] = store.get_by_type("budget")
        assert result.updated_at is not None

    def test_update_changes_iv(self, store, home, session):
        record_id = store.save("budget", {"limit": 100})
        [path] = _record_files(home, session.account_id)
        before = json.loads(path.read_text())["envelope"]["iv"]
        store.update(record_id, {"limit": 100})
        after = json.loads(path.read_text())["envelope"]["iv"]
        assert before != after

    def test_update_missing(self, store):
        with pytest.raises(NotFoundError):
            store.update("transaction_00000000-0000-4000-8000-000000000000", {})

    def test_delete(self, store):
        record_id = store.save("reminder", {"text": "Pay rent"})
        store.delete(record_id)
        with pytest.raises(NotFoundError):
            store.get(record_id)
        assert store.count() == 0

    def test_delete_missing(self, store):
        with pytest.raises(NotFoundError):
            store.delete("transaction_00000000-0000-4000-8000-000000000000")

    def test_path_traversal_id(self, store):
        with pytest.raises(NotFoundError):
            store.get("../../accounts")


class TestReads:
    """Listing and per-record failures."""

    def test_get_by_type_filters(self, store):
        store.save("transaction", LUNCH)
        store.save("goal", {"target": 5000})
        results = store.get_by_type("transaction")
        assert len(results) == 1
        assert results[0].ok
        assert results[0].data == LUNCH
        assert results[0].type == RecordType.TRANSACTION

    def test_get_all_sorted_by_creation(self, store):
        ids = {store.save("transaction", {"n": n}) for n in range(5)}
        results = store.get_all()
        assert {r.record_id for r in results} == ids
        stamps = [r.created_at for r in results]
        assert stamps == sorted(stamps)

    def test_corrupt_record_reported_not_fatal(self, store, home, session):
        good = store.save("transaction", {"n": 1})
        bad = store.save("transaction", {"n": 2})
        path = vault_dir(home, session.account_id) / "records" / f"{bad}.json"
        stored = json.loads(path.read_text())
        stored["envelope"]["data"][0] ^= 0xFF
        path.write_text(json.dumps(stored))

        results = {r.record_id: r for r in store.get_by_type("transaction")}
        assert results[good].ok
        assert not results[bad].ok
        assert results[bad].data is None
        assert results[bad].error

        with pytest.raises(DecryptError):
            store.get(bad)

    def test_unreadable_file_reported(self, store, home, session):
        store.save("transaction", {"n": 1})
        broken = vault_dir(home, session.account_id) / "records" / "transaction_broken.json"
        broken.write_text("{not json")
        results = store.get_all()
        assert len(results) == 2
        failed = [r for r in results if not r.ok]
        assert failed[0].record_id == "transaction_broken"
        assert failed[0].type == RecordType.TRANSACTION

    def test_snapshot_returns_ciphertext_records(self, store):
        store.save("transaction", LUNCH)
        [record] = store.snapshot()
        assert isinstance(record, Record)
        assert record.type == RecordType.TRANSACTION


class TestReplaceAll:
    """Full snapshot swap used by restore."""

    def test_replace(self, store, session):
        old = store.save("transaction", {"n": 1})
        incoming = Record(
            id="goal_11111111-1111-4111-8111-111111111111",
            type=RecordType.GOAL,
            envelope=envelope.encrypt(session.key, {"target": 10}),
        )
        store.replace_all([incoming])
        assert [r.record_id for r in store.get_all()] == [incoming.id]
        with pytest.raises(NotFoundError):
            store.get(old)

    def test_rejects_bad_id(self, store, session):
        store.save("transaction", {"n": 1})
        bad = Record(
            id="../escape",
            type=RecordType.GOAL,
            envelope=envelope.encrypt(session.key, {}),
        )
        with pytest.raises(ValidationError):
            store.replace_all([bad])
        assert store.count() == 1

    def test_failed_swap_rolls_back(self, store, home, session, monkeypatch):
        ids = {store.save("transaction", {"n": n}) for n in range(2)}
        real_rename = Path.rename
        calls = []

        def flaky_rename(self, target):
            calls.append(self)
            if len(calls) == 2:
                raise OSError("disk full")
            return real_rename(self, target)

        monkeypatch.setattr(Path, "rename", flaky_rename)
        with pytest.raises(OSError):
            store.replace_all([])
        monkeypatch.undo()

        records_dir = vault_dir(home, session.account_id) / "records"
        assert records_dir.is_dir()
        assert not records_dir.with_name("records.staging").exists()
        reopened = LocalStore(home, session)
        assert {r.record_id for r in reopened.get_all()} == ids

    def test_reopen_recovers_interrupted_swap(self, store, home, session):
        record_id = store.save("transaction", LUNCH)
        records_dir = vault_dir(home, session.account_id) / "records"
        records_dir.rename(records_dir.with_name("records.old"))

        reopened = LocalStore(home, session)
        assert reopened.get(record_id) == LUNCH
        assert not records_dir.with_name("records.old").exists()

    def test_replace_with_nothing(self, store):
        store.save("transaction", {"n": 1})
        store.replace_all([])
        assert store.count() == 0


class TestSessionBinding:
    """Store behaviour after sign-out."""

    def test_closed_session_blocks_reads_and_writes(self, store, session):
        record_id = store.save("transaction", LUNCH)
        session.close()
        assert store.closed
        with pytest.raises(SessionClosedError):
            store.get(record_id)
        with pytest.raises(SessionClosedError):
            store.save("transaction", LUNCH)
        with pytest.raises(SessionClosedError):
            store.get_all()

    def test_data_survives_sign_out(self, registry, account_id, home):
        from conftest import PASSPHRASE

        with registry.sign_in(account_id, PASSPHRASE) as s1:
            record_id = LocalStore(home, s1).save("transaction", LUNCH)
        with registry.sign_in(account_id, PASSPHRASE) as s2:
            assert LocalStore(home, s2).get(record_id) == LUNCH

    def test_requires_open_session(self, home, session):
        session.close()
        with pytest.raises(SessionClosedError):
            LocalStore(home, session)
