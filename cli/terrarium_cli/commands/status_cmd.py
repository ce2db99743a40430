from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from terrarium_deploy.envfile import read_env_file
from terrarium_deploy.errors import DeployError
from terrarium_deploy.health import MISSING, container_health
from terrarium_deploy.state import read_state
from terrarium_deploy.topology import default_topology

from .. import console
from ..config import load_config
from ..deployment import make_runner, resolve_deployment

_HEALTH_STYLES = {
    "healthy": "green",
    "running": "green",
    "starting": "yellow",
    "unhealthy": "red",
    "exited": "red",
    MISSING: "dim",
}


def status(
    target: str | None = typer.Option(None, "--target", help="Deployment target: staging or production."),
    project_dir: Path | None = typer.Option(None, "--project-dir", help="Directory holding the compose project."),
):
    """Show install state and per-service health."""
    try:
        deployment = resolve_deployment(load_config(), project_dir=project_dir, target=target)
    except ValueError:
        console.err(f"Unknown target '{target}'. Use staging or production.")
        raise typer.Exit(code=2)

    state = read_state(deployment.project_dir)
    if state.installed:
        console.ok(f"Installed at {state.installed_at:%Y-%m-%d %H:%M:%S} UTC ({deployment.project_dir})")
    else:
        console.warn(f"Not installed in {deployment.project_dir}")

    runner = make_runner(deployment)
    try:
        services = default_topology(deployment.target, runner, read_env_file(deployment.env_path))
    except DeployError as exc:
        console.err(str(exc))
        raise typer.Exit(code=2)

    table = Table(title=f"Terrarium Git services ({deployment.target.value})")
    table.add_column("Service")
    table.add_column("Container")
    table.add_column("Rank", justify="right")
    table.add_column("Health")
    for descriptor in services:
        health = container_health(runner, descriptor.container)
        style = _HEALTH_STYLES.get(health, "yellow")
        name = descriptor.name if descriptor.required else f"{descriptor.name} (optional)"
        table.add_row(name, descriptor.container, str(descriptor.rank), f"[{style}]{health}[/]")
    console.print(table)
