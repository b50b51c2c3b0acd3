"""Tests for the JSONL audit trail."""

from __future__ import annotations

import json
import logging

import pytest

from guardfin.audit import AuditEvent, audit_event, audit_log_path, read_audit_log

ALICE = "3f2b8c1e-9d4a-4e6b-8f0a-1c2d3e4f5a6b"
BOB = "9a8b7c6d-5e4f-4a3b-8c2d-1e0f9a8b7c6d"


class TestAuditWrite:
    """Appending entries."""

    def test_sync_entry_on_disk(self, home):
        entry = audit_event(
            home, AuditEvent.SYNC_PUSH, "Pushed 3 record(s)", account_id=ALICE, records=3
        )
        assert entry is not None
        lines = audit_log_path(home).read_text().splitlines()
        assert len(lines) == 1
        data = json.loads(lines[0])
        assert data["event"] == "SYNC_PUSH"
        assert data["account_id"] == ALICE
        assert data["records"] == 3
        assert "host" not in data

    def test_unset_fields_omitted(self, home):
        audit_event(home, AuditEvent.AUTH_FAILURE, "Invalid passphrase", account_id=ALICE)
        data = json.loads(audit_log_path(home).read_text())
        assert "records" not in data

    def test_event_name_coerced(self, home):
        entry = audit_event(home, "DATA_DELETE", account_id=ALICE)
        assert entry.event is AuditEvent.DATA_DELETE

    def test_unknown_event_rejected(self, home):
        with pytest.raises(ValueError):
            audit_event(home, "LOGIN", account_id=ALICE)
        assert not audit_log_path(home).exists()

    def test_write_failure_swallowed(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a dir")
        assert audit_event(blocker, AuditEvent.ACCOUNT_CREATE) is None


class TestAuditRead:
    """Reading entries back."""

    def test_read_back_in_order(self, home):
        audit_event(home, AuditEvent.ACCOUNT_CREATE, "created", account_id=ALICE)
        audit_event(
            home,
            AuditEvent.SYNC_RESTORE,
            "restored",
            account_id=ALICE,
            records=2,
            metadata={"skipped": 1},
        )
        entries = read_audit_log(home)
        assert [e.event for e in entries] == [
            AuditEvent.ACCOUNT_CREATE,
            AuditEvent.SYNC_RESTORE,
        ]
        assert entries[1].records == 2
        assert entries[1].metadata == {"skipped": 1}

    def test_filter_by_account(self, home):
        audit_event(home, AuditEvent.AUTH_SUCCESS, account_id=ALICE)
        audit_event(home, AuditEvent.AUTH_SUCCESS, account_id=BOB)
        audit_event(home, AuditEvent.SYNC_PUSH, account_id=ALICE, records=1)
        entries = read_audit_log(home, account_id=ALICE)
        assert [e.event for e in entries] == [AuditEvent.AUTH_SUCCESS, AuditEvent.SYNC_PUSH]
        assert all(e.account_id == ALICE for e in entries)

    def test_limit_applies_after_filter(self, home):
        for n in range(3):
            audit_event(home, AuditEvent.SYNC_PUSH, account_id=ALICE, records=n)
            audit_event(home, AuditEvent.SYNC_PUSH, account_id=BOB, records=10 + n)
        entries = read_audit_log(home, account_id=ALICE, limit=2)
        assert [e.records for e in entries] == [1, 2]

    def test_missing_log(self, home):
        assert read_audit_log(home) == []

    def test_unreadable_lines_skipped(self, home, caplog):
        audit_event(home, AuditEvent.ACCOUNT_CREATE, "ok", account_id=ALICE)
        with audit_log_path(home).open("a") as f:
            f.write("garbage\n")
            f.write('{"event": "LOGIN"}\n')
        with caplog.at_level(logging.WARNING, logger="guardfin.audit"):
            entries = read_audit_log(home)
        assert [e.event for e in entries] == [AuditEvent.ACCOUNT_CREATE]
        assert "Skipped 2 unreadable" in caplog.text
