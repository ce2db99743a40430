from __future__ import annotations

import typer

from .. import console
from ..config import CONFIG_KEYS, config_path, load_config, set_config_value, to_toml

app = typer.Typer(help="Installer preferences.")


@app.command("show")
def show_config() -> None:
    """Print stored preferences."""
    cfg = load_config()
    console.console.print(f"config: {config_path()}", markup=False, highlight=False)
    values = to_toml(cfg)
    for key in CONFIG_KEYS:
        value = values.get(key)
        console.console.print(f"{key}={'' if value is None else value}", markup=False, highlight=False)


@app.command("set")
def set_config(
    key: str = typer.Argument(..., help=f"One of: {', '.join(CONFIG_KEYS)}."),
    value: str = typer.Argument(..., help="New value."),
) -> None:
    """Update one stored preference."""
    key = key.strip().lower()
    if key not in CONFIG_KEYS:
        console.err(f"Unknown key '{key}'. Expected one of: {', '.join(CONFIG_KEYS)}.")
        raise typer.Exit(code=2)
    try:
        set_config_value(key, value)
    except ValueError as exc:
        console.err(f"Invalid value for {key}: {exc}")
        raise typer.Exit(code=2)
    console.ok(f"Config updated: {key}")
