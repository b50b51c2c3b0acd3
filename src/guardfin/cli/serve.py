"""Serve command: run the zero-knowledge sync server."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from ..config import load_server_config
from ..server import build_remote_store, setup_logging, start_server
from ._common import console, home_path


def register_serve_commands(main: click.Group) -> None:
    """Register the serve command."""

    @main.command("serve")
    @click.option("--config", "config_path", type=click.Path(), default=None,
                  help="Server YAML config file.")
    @click.option("--host", default=None, help="Bind address.")
    @click.option("--port", default=None, type=int, help="Listen port.")
    @click.option("--data-dir", default=None, type=click.Path(),
                  help="Where ciphertext bundles are stored.")
    @click.pass_context
    def serve(ctx, config_path, host, port, data_dir):
        """Run the sync server in the foreground (Ctrl+C to stop)."""
        config = load_server_config(Path(config_path).expanduser() if config_path else None)
        overrides = {
            "host": host,
            "port": port,
            "data_dir": Path(data_dir).expanduser() if data_dir else None,
        }
        config = config.model_copy(update={k: v for k, v in overrides.items() if v is not None})

        log_file = config.log_file or home_path(ctx) / "logs" / "server.log"
        setup_logging(log_file)

        remote = build_remote_store(config)
        server = start_server(config, remote)
        bound_host, bound_port = server.server_address[:2]
        console.print(
            f"\n  [bold green]Guardfin sync server[/] on "
            f"[cyan]http://{bound_host}:{bound_port}[/]"
        )
        console.print(f"  [dim]Data: {remote.data_dir} ({remote.account_count()} account(s))[/]")
        console.print(f"  [dim]Log:  {log_file}[/]\n")

        try:
            server.serve_forever()
        except KeyboardInterrupt:
            logging.getLogger("guardfin.server").info("Shutting down")
        finally:
            server.server_close()
