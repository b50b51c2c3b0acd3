"""Record commands: add, list, update, delete.

Every command unlocks the account, does its work, and closes the
session again. Mutations are pushed to the sync store right away
unless ``--no-sync`` is given.
"""

from __future__ import annotations

import json
from typing import Optional

import click
from rich.table import Table

from ..models import RecordType
from ..sync import SyncEngine, SyncStatus
from ._common import (
    console,
    handle_errors,
    home_path,
    open_vault,
    parse_pairs,
    status_style,
    unlock,
)

_TYPE_CHOICE = click.Choice([t.value for t in RecordType])


def _push(engine: SyncEngine, no_sync: bool) -> None:
    if no_sync:
        console.print("  [dim]Sync skipped.[/]")
        return
    status = engine.flush()
    if status is None:
        return
    console.print(f"  Sync: {status_style(status)}")
    if status != SyncStatus.SYNCED and engine.state.last_error:
        console.print(f"  [dim]{engine.state.last_error}[/]")


def register_record_commands(main: click.Group) -> None:
    """Register the record command group."""

    @main.group()
    def record():
        """Encrypted finance records."""

    @record.command("add")
    @click.argument("record_type", type=_TYPE_CHOICE)
    @click.argument("pairs", nargs=-1)
    @click.option("--account", "account_id", default=None, help="Account id.")
    @click.option("--no-sync", is_flag=True, help="Do not push after saving.")
    @click.pass_context
    @handle_errors
    def record_add(ctx, record_type, pairs, account_id, no_sync):
        """Add a record from KEY=VALUE pairs.

        Example: guardfin record add transaction amount=42.50 category="Food & Dining"
        """
        data = parse_pairs(pairs)
        home = home_path(ctx)
        with unlock(home, account_id) as session:
            store, engine = open_vault(home, session)
            record_id = store.save(record_type, data)
            console.print(f"\n  [green]Saved[/] [cyan]{record_id}[/]")
            _push(engine, no_sync)
        console.print()

    @record.command("list")
    @click.argument("record_type", type=_TYPE_CHOICE, required=False)
    @click.option("--account", "account_id", default=None, help="Account id.")
    @click.option("--json", "as_json", is_flag=True, help="Print JSON.")
    @click.pass_context
    @handle_errors
    def record_list(ctx, record_type: Optional[str], account_id, as_json):
        """List decrypted records, optionally of one type."""
        home = home_path(ctx)
        with unlock(home, account_id) as session:
            store, _ = open_vault(home, session)
            results = store.get_by_type(record_type) if record_type else store.get_all()

        if as_json:
            click.echo(json.dumps([r.model_dump(mode="json") for r in results], indent=2))
            return
        if not results:
            console.print("\n  [dim]No records.[/]\n")
            return

        table = Table(title=f"Records ({len(results)})")
        table.add_column("ID", style="cyan")
        table.add_column("Type")
        table.add_column("Created", style="dim")
        table.add_column("Data")
        for result in results:
            body = (
                json.dumps(result.data, ensure_ascii=False)
                if result.ok
                else f"[red]{result.error}[/]"
            )
            table.add_row(
                result.record_id,
                result.type.value if result.type else "?",
                result.created_at.strftime("%Y-%m-%d %H:%M"),
                body,
            )
        console.print(table)

    @record.command("update")
    @click.argument("record_id")
    @click.argument("pairs", nargs=-1, required=True)
    @click.option("--account", "account_id", default=None, help="Account id.")
    @click.option("--replace", is_flag=True, help="Replace the data instead of merging.")
    @click.option("--no-sync", is_flag=True, help="Do not push after saving.")
    @click.pass_context
    @handle_errors
    def record_update(ctx, record_id, pairs, account_id, replace, no_sync):
        """Update a record from KEY=VALUE pairs (merged by default)."""
        changes = parse_pairs(pairs)
        home = home_path(ctx)
        with unlock(home, account_id) as session:
            store, engine = open_vault(home, session)
            data = changes if replace else {**store.get(record_id), **changes}
            store.update(record_id, data)
            console.print(f"\n  [green]Updated[/] [cyan]{record_id}[/]")
            _push(engine, no_sync)
        console.print()

    @record.command("delete")
    @click.argument("record_id")
    @click.option("--account", "account_id", default=None, help="Account id.")
    @click.option("--no-sync", is_flag=True, help="Do not push after deleting.")
    @click.pass_context
    @handle_errors
    def record_delete(ctx, record_id, account_id, no_sync):
        """Delete a record."""
        home = home_path(ctx)
        with unlock(home, account_id) as session:
            store, engine = open_vault(home, session)
            store.delete(record_id)
            console.print(f"\n  [yellow]Deleted[/] [cyan]{record_id}[/]")
            _push(engine, no_sync)
        console.print()
