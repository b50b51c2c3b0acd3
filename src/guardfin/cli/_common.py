"""Shared helpers for the CLI command modules.

Console, account resolution, unlocking, and error reporting.
"""

from __future__ import annotations

import functools
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from ..config import load_client_config
from ..errors import GuardfinError
from ..registry import AccountRegistry
from ..session import Session
from ..store import LocalStore
from ..sync import SyncEngine, SyncStatus, create_transport

logger = logging.getLogger("guardfin.cli")

console = Console()

PASSPHRASE_ENV = "GUARDFIN_PASSPHRASE"
ACCOUNT_ENV = "GUARDFIN_ACCOUNT"


def home_path(ctx: click.Context) -> Path:
    return ctx.find_root().obj["home"]


def status_style(status: SyncStatus) -> str:
    """Rich markup for a sync status."""
    return {
        SyncStatus.IDLE: "[dim]idle[/]",
        SyncStatus.PENDING: "[yellow]pending[/]",
        SyncStatus.SYNCING: "[cyan]syncing[/]",
        SyncStatus.SYNCED: "[bold green]synced[/]",
        SyncStatus.ERROR: "[bold red]error[/]",
        SyncStatus.OFFLINE: "[bold yellow]offline[/]",
    }.get(status, "[dim]unknown[/]")


def handle_errors(func):
    """Turn GuardfinError into a red message and exit code 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except GuardfinError as exc:
            console.print(f"[bold red]Error:[/] {exc}")
            sys.exit(1)

    return wrapper


def resolve_account(registry: AccountRegistry, account_id: Optional[str]) -> str:
    """Pick the account to operate on.

    Explicit id first, then ``GUARDFIN_ACCOUNT``, then the only
    registered account if there is exactly one.
    """
    account_id = account_id or os.environ.get(ACCOUNT_ENV)
    if account_id:
        return account_id
    accounts = registry.list()
    if len(accounts) == 1:
        return accounts[0].account_id
    if not accounts:
        console.print("[bold red]No accounts yet.[/] Run guardfin account create first.")
    else:
        console.print("[bold red]Several accounts exist.[/] Pass --account ID.")
    sys.exit(1)


def unlock(home: Path, account_id: Optional[str]) -> Session:
    """Sign in, reading the passphrase from the env or a hidden prompt."""
    registry = AccountRegistry(home)
    account_id = resolve_account(registry, account_id)
    passphrase = os.environ.get(PASSPHRASE_ENV)
    if passphrase is None:
        passphrase = click.prompt("Passphrase", hide_input=True)
    return registry.sign_in(account_id, passphrase)


def open_vault(home: Path, session: Session) -> tuple[LocalStore, SyncEngine]:
    """Store and sync engine for an open session, wired per client config."""
    config = load_client_config(home)
    store = LocalStore(home, session)
    engine = SyncEngine(
        home,
        session,
        store,
        create_transport(config, home),
        debounce_seconds=config.debounce_seconds,
    )
    return store, engine


def parse_pairs(pairs: tuple[str, ...]) -> dict:
    """``KEY=VALUE`` arguments to a dict; numeric values become numbers."""
    data: dict = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"expected KEY=VALUE, got '{pair}'")
        key, value = pair.split("=", 1)
        data[key.strip()] = _coerce(value)
    return data


def _coerce(value: str):
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value
