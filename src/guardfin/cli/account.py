"""Account commands: create, list, remove."""

from __future__ import annotations

import click
from rich.table import Table

from ..registry import DELETE_CONFIRMATION, AccountRegistry
from ._common import console, handle_errors, home_path


def register_account_commands(main: click.Group) -> None:
    """Register the account command group."""

    @main.group()
    def account():
        """Local accounts. Each has its own passphrase and key."""

    @account.command("create")
    @click.option("--name", required=True, help="Display name.")
    @click.password_option("--passphrase", prompt="Passphrase", envvar="GUARDFIN_PASSPHRASE")
    @click.pass_context
    @handle_errors
    def account_create(ctx, name, passphrase):
        """Create an account protected by a passphrase.

        The passphrase cannot be recovered. Lose it and the data is gone.
        """
        registry = AccountRegistry(home_path(ctx))
        account_id = registry.create(name, passphrase)
        console.print(f"\n  [green]Created[/] [cyan]{name}[/]")
        console.print(f"  [dim]Account id: {account_id}[/]\n")

    @account.command("list")
    @click.pass_context
    @handle_errors
    def account_list(ctx):
        """List accounts on this machine."""
        accounts = AccountRegistry(home_path(ctx)).list()
        if not accounts:
            console.print("\n  [dim]No accounts yet.[/]\n")
            return

        table = Table(title="Accounts")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Created", style="dim")
        for summary in accounts:
            table.add_row(
                summary.account_id,
                summary.name,
                summary.created_at.strftime("%Y-%m-%d %H:%M"),
            )
        console.print(table)

    @account.command("remove")
    @click.argument("account_id")
    @click.option(
        "--confirm",
        prompt=f"Type {DELETE_CONFIRMATION} to confirm",
        help="Confirmation string.",
    )
    @click.pass_context
    @handle_errors
    def account_remove(ctx, account_id, confirm):
        """Forget an account. Its encrypted files are left on disk."""
        AccountRegistry(home_path(ctx)).remove(account_id, confirm)
        console.print(f"\n  [yellow]Removed[/] {account_id}\n")
