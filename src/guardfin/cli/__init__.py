"""
Guardfin CLI -- the encrypted finance vault from the terminal.

Each command group lives in its own module and is attached to the
main group through a ``register_*_commands`` function.

Entry point: guardfin.cli:main
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from .. import GUARDFIN_HOME, __version__


@click.group()
@click.version_option(version=__version__, prog_name="guardfin")
@click.option(
    "--home",
    default=GUARDFIN_HOME,
    type=click.Path(),
    envvar="GUARDFIN_HOME",
    help="Guardfin home directory.",
)
@click.option("--verbose", "-v", is_flag=True, help="Log to stderr.")
@click.pass_context
def main(ctx, home, verbose):
    """Guardfin -- zero-knowledge personal finance vault.

    Records are encrypted on this machine before they are stored or
    synced. The server only ever sees ciphertext.
    """
    ctx.ensure_object(dict)
    ctx.obj["home"] = Path(home).expanduser()
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        )


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .account import register_account_commands  # noqa: E402
from .records import register_record_commands  # noqa: E402
from .serve import register_serve_commands  # noqa: E402
from .sync_cmd import register_sync_commands  # noqa: E402

register_account_commands(main)
register_record_commands(main)
register_sync_commands(main)
register_serve_commands(main)
