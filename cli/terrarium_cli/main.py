from __future__ import annotations

import typer

from .commands import config_cmd, install_cmd, runners_cmd, status_cmd
from .logging_ import setup_logging


def _build_app() -> typer.Typer:
    app = typer.Typer(
        name="terrarium-git",
        help="Terrarium Git single-host installer",
        no_args_is_help=True,
    )

    app.command("install")(install_cmd.install)
    app.command("status")(status_cmd.status)
    app.add_typer(runners_cmd.app, name="runners")
    app.add_typer(config_cmd.app, name="config")

    @app.callback()
    def _main(
            verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose logs."),
    ):
        setup_logging(verbose)

    return app


app = _build_app()
