"""Sync commands: push, pull, status, wipe-remote."""

from __future__ import annotations

import sys

import click
from rich.panel import Panel

from ..audit import AuditEvent, audit_event
from ..errors import RemoteRejectedError, TransportError
from ..registry import DELETE_CONFIRMATION
from ..sync import SyncStatus
from ._common import (
    console,
    handle_errors,
    home_path,
    open_vault,
    status_style,
    unlock,
)


def register_sync_commands(main: click.Group) -> None:
    """Register the sync command group."""

    @main.group()
    def sync():
        """Zero-knowledge sync -- only ciphertext leaves this machine."""

    @sync.command("push")
    @click.option("--account", "account_id", default=None, help="Account id.")
    @click.pass_context
    @handle_errors
    def sync_push(ctx, account_id):
        """Push the full encrypted snapshot now."""
        home = home_path(ctx)
        with unlock(home, account_id) as session:
            store, engine = open_vault(home, session)
            console.print(
                f"\n  Pushing {store.count()} record(s) via [cyan]{engine.transport.name}[/]...",
                end=" ",
            )
            status = engine.flush()
            console.print(status_style(status))
            if status != SyncStatus.SYNCED:
                console.print(f"  [dim]{engine.state.last_error}[/]\n")
                sys.exit(1)
            console.print(f"  [dim]Server sync count: {engine.state.last_remote_count}[/]\n")

    @sync.command("pull")
    @click.option("--account", "account_id", default=None, help="Account id.")
    @click.option("--yes", is_flag=True, help="Skip the overwrite confirmation.")
    @click.pass_context
    @handle_errors
    def sync_pull(ctx, account_id, yes):
        """Replace local records with the server copy.

        Local records that are not on the server are lost.
        """
        home = home_path(ctx)
        with unlock(home, account_id) as session:
            store, engine = open_vault(home, session)
            if store.count() and not yes:
                click.confirm(
                    f"Replace {store.count()} local record(s) with the server copy?",
                    abort=True,
                )
            try:
                restored = engine.restore()
            except (TransportError, RemoteRejectedError) as exc:
                console.print(f"\n  [bold red]Pull failed:[/] {exc}\n")
                sys.exit(1)
        console.print(f"\n  [green]Restored {restored} record(s)[/]\n")

    @sync.command("status")
    @click.option("--account", "account_id", default=None, help="Account id.")
    @click.pass_context
    @handle_errors
    def sync_status(ctx, account_id):
        """Show sync history and whether the server is reachable."""
        home = home_path(ctx)
        with unlock(home, account_id) as session:
            store, engine = open_vault(home, session)
            summary = engine.summary()
            reachable = engine.transport.available()

        state = summary["state"]
        lines = [
            f"Transport:   [cyan]{summary['transport']}[/] "
            + ("[green](reachable)[/]" if reachable else "[red](unreachable)[/]"),
            f"Records:     {summary['records']}",
            f"Last status: {status_style(SyncStatus(state['last_status']))}",
            f"Last sync:   {state['last_sync'] or '[dim]never[/]'}",
            f"Pushes:      {state['sync_count']}",
        ]
        if state.get("last_remote_count") is not None:
            lines.append(f"Server count: {state['last_remote_count']}")
        if state.get("last_restore"):
            lines.append(f"Last pull:   {state['last_restore']}")
        if state.get("last_error"):
            lines.append(f"Last error:  [red]{state['last_error']}[/]")
        console.print(Panel("\n".join(lines), title="Sync", border_style="bright_blue"))

    @sync.command("wipe-remote")
    @click.option("--account", "account_id", default=None, help="Account id.")
    @click.option(
        "--confirm",
        prompt=f"Type {DELETE_CONFIRMATION} to confirm",
        help="Confirmation string.",
    )
    @click.pass_context
    @handle_errors
    def sync_wipe_remote(ctx, account_id, confirm):
        """Delete this account's bundle from the sync server."""
        home = home_path(ctx)
        with unlock(home, account_id) as session:
            _, engine = open_vault(home, session)
            try:
                engine.transport.delete(session.account_id, confirm)
            except (TransportError, RemoteRejectedError) as exc:
                console.print(f"\n  [bold red]Wipe failed:[/] {exc}\n")
                sys.exit(1)
            audit_event(
                home,
                AuditEvent.DATA_DELETE,
                f"Remote bundle deleted via {engine.transport.name}",
                account_id=session.account_id,
            )
        console.print("\n  [yellow]Server copy deleted.[/] Local records are untouched.\n")
