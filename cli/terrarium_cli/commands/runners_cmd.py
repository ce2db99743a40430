from __future__ import annotations

from pathlib import Path

import typer

from terrarium_deploy.errors import DeployError
from terrarium_deploy.lock import deployment_lock
from terrarium_deploy.prereqs import check_prereqs, require_prereqs

from .. import console
from ..config import load_config
from ..deployment import make_runner, resolve_deployment

app = typer.Typer(help="CI/CD runner registration.")

RUNNER_SERVICES = ("runner1", "runner2")


@app.command("setup")
def setup(
    token: str = typer.Argument(..., help="Registration token from Site Administration > Actions > Runners."),
    project_dir: Path | None = typer.Option(None, "--project-dir", help="Directory holding the compose project."),
):
    """Store the runner registration token and start the runners."""
    token = token.strip()
    if not token:
        console.err("Runner token must not be empty.")
        raise typer.Exit(code=2)

    deployment = resolve_deployment(load_config(), project_dir=project_dir)
    if not deployment.env_path.exists():
        console.err(f"{deployment.env_path} not found. Run 'terrarium-git install' first.")
        raise typer.Exit(code=2)

    runner = make_runner(deployment)
    try:
        compose = deployment.compose(require_prereqs(check_prereqs(runner)), runner)
        with deployment_lock(deployment.env_path):
            deployment.configurator().set_value("RUNNER_TOKEN", token)
            console.ok(f"Runner token saved to {deployment.env_path.name}")
            console.info(f"Starting runners: {', '.join(RUNNER_SERVICES)}")
            compose.up(RUNNER_SERVICES)
    except DeployError as exc:
        console.err(str(exc))
        raise typer.Exit(code=2)

    ps = compose.ps(RUNNER_SERVICES)
    if ps:
        console.print(ps, markup=False, highlight=False)
    console.ok("Runners started. Check Site Administration > Actions > Runners.")
