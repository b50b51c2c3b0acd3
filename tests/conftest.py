"""Shared test fixtures for guardfin."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Optional

import pytest

from guardfin.registry import AccountRegistry
from guardfin.store import LocalStore
from guardfin.sync.engine import SyncEngine
from guardfin.sync.transport import SyncTransport

# Keeps PBKDF2 fast in tests; production accounts use 250k.
TEST_ITERATIONS = 1_000

PASSPHRASE = "CorrectHorseBattery9!"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTransport(SyncTransport):
    """In-memory transport that records every push.

    Set ``fail_with`` to make pushes raise. Set ``gate`` to a
    threading.Event to block pushes until the test releases it.
    """

    def __init__(self) -> None:
        self.pushes: list[dict[str, Any]] = []
        self.bundle: dict[str, Any] = {}
        self.deleted: list[str] = []
        self.fail_with: Optional[Exception] = None
        self.gate: Optional[threading.Event] = None
        self.entered = threading.Event()
        self.reachable = True

    @property
    def name(self) -> str:
        return "recording"

    def push(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.fail_with is not None:
            raise self.fail_with
        self.pushes.append(payload)
        return {"syncCount": len(self.pushes) - 1, "timestamp": "2026-01-01T00:00:00+00:00"}

    def fetch(self, account_id: str) -> dict[str, Any]:
        if self.fail_with is not None:
            raise self.fail_with
        return self.bundle

    def delete(self, account_id: str, confirmation: str) -> dict[str, Any]:
        self.deleted.append(account_id)
        return {"message": "Account data deleted successfully"}

    def available(self) -> bool:
        return self.reachable


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Provide a temporary guardfin home directory."""
    path = tmp_path / ".guardfin"
    path.mkdir()
    return path


@pytest.fixture
def registry(home: Path) -> AccountRegistry:
    return AccountRegistry(home, iterations=TEST_ITERATIONS)


@pytest.fixture
def account_id(registry: AccountRegistry) -> str:
    """An account named Alex with the standard test passphrase."""
    return registry.create("Alex", PASSPHRASE)


@pytest.fixture
def session(registry: AccountRegistry, account_id: str):
    """Signed-in session, closed after the test."""
    s = registry.sign_in(account_id, PASSPHRASE)
    yield s
    s.close()


@pytest.fixture
def store(home: Path, session) -> LocalStore:
    return LocalStore(home, session)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def engine(home, session, store, transport, clock) -> SyncEngine:
    """Sync engine with a 2s debounce on a fake clock, no worker thread."""
    return SyncEngine(home, session, store, transport, debounce_seconds=2.0, clock=clock)
