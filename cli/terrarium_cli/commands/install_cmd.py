from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.markup import escape

from terrarium_deploy.bootstrap import AdminBootstrapper, BootstrapResult, BootstrapStatus
from terrarium_deploy.bringup import ServiceBringupController
from terrarium_deploy.compose_file import reconcile_topology
from terrarium_deploy.configurator import EnvironmentConfig
from terrarium_deploy.errors import DeployError, HealthTimeoutError, PortConflictError
from terrarium_deploy.host import check_host, create_data_directories, ensure_runner_ssh_key, install_root_ca
from terrarium_deploy.lock import deployment_lock
from terrarium_deploy.prereqs import PrereqResult, check_prereqs, require_prereqs
from terrarium_deploy.runner import CHECK_TIMEOUT, CommandRunner, Compose, tail_lines
from terrarium_deploy.state import mark_installed
from terrarium_deploy.teardown import DESTROY_CONFIRMATION, TeardownController
from terrarium_deploy.topology import default_topology

from .. import console
from ..config import load_config
from ..deployment import Deployment, make_runner, resolve_deployment

logger = logging.getLogger(__name__)

RUNNER_TOKEN_UNSET = "CONFIGURE_AFTER_FIRST_START"

_BOOTSTRAP_STYLES = {
    BootstrapStatus.CREATED: "green",
    BootstrapStatus.EXISTS: "cyan",
    BootstrapStatus.SKIPPED: "yellow",
    BootstrapStatus.FAILED: "red",
}


def install(
    check: bool = typer.Option(False, "--check", help="Check prerequisites only."),
    skip_certs: bool = typer.Option(False, "--skip-certs", help="Skip root CA installation."),
    destroy: bool = typer.Option(False, "--destroy", help="DANGEROUS: remove all containers, volumes and state."),
    target: str | None = typer.Option(None, "--target", help="Deployment target: staging or production."),
    project_dir: Path | None = typer.Option(None, "--project-dir", help="Directory holding the compose project."),
    confirm: str | None = typer.Option(
        None,
        "--confirm",
        help=f"Confirmation token for --destroy (must be {DESTROY_CONFIRMATION}).",
    ),
    non_interactive: bool = typer.Option(False, "--non-interactive", help="Never prompt."),
):
    """Install (or re-run) Terrarium Git on this host."""
    try:
        deployment = resolve_deployment(load_config(), project_dir=project_dir, target=target)
    except ValueError:
        console.err(f"Unknown target '{target}'. Use staging or production.")
        raise typer.Exit(code=2)

    runner = make_runner(deployment)
    prereqs = check_prereqs(runner)
    if check:
        _print_prereqs(prereqs)
        raise typer.Exit(code=0 if prereqs.ok else 2)

    try:
        compose = deployment.compose(require_prereqs(prereqs), runner)
        if destroy:
            _run_destroy(deployment, compose, confirm=confirm, non_interactive=non_interactive)
            return
        _run_install(
            deployment,
            compose,
            runner,
            check_runner=make_runner(deployment, timeout=CHECK_TIMEOUT),
            skip_certs=skip_certs,
            non_interactive=non_interactive,
        )
    except PortConflictError as exc:
        console.err(str(exc))
        for conflict in exc.conflicts:
            console.print(f"  Port {conflict.port} is used by: {conflict.owner}")
        console.info("Stop the conflicting services, or change the ports in .env, then re-run install.")
        raise typer.Exit(code=2)
    except HealthTimeoutError as exc:
        console.err(str(exc))
        if exc.diagnostics:
            console.rule(f"{exc.service} logs")
            for line in tail_lines(exc.diagnostics, limit=deployment.log_tail):
                console.print(line, markup=False, highlight=False)
        raise typer.Exit(code=2)
    except DeployError as exc:
        console.err(str(exc))
        stderr = getattr(exc, "stderr", None)
        if stderr:
            console.print(stderr, markup=False, highlight=False)
        raise typer.Exit(code=2)


def _print_prereqs(prereqs: PrereqResult) -> None:
    _check_line("Docker installed", prereqs.docker_installed)
    _check_line("Docker daemon running", prereqs.docker_running)
    compose = " ".join(prereqs.compose_command) if prereqs.compose_command else None
    _check_line(f"Docker Compose ({compose})" if compose else "Docker Compose", compose is not None)
    if prereqs.ok:
        console.ok("Prerequisites check passed.")
    else:
        console.err("Prerequisites check failed.")


def _check_line(label: str, passed: bool) -> None:
    if passed:
        console.ok(label)
    else:
        console.err(label)


def _run_install(
    deployment: Deployment,
    compose: Compose,
    runner: CommandRunner,
    *,
    check_runner: CommandRunner,
    skip_certs: bool,
    non_interactive: bool,
) -> None:
    console.rule(f"Terrarium Git install ({deployment.target.value})")
    console.info(f"Project directory: {deployment.project_dir}")

    with deployment_lock(deployment.env_path):
        # Configuration first: a missing template must fail before any host changes.
        configurator = deployment.configurator()
        config = configurator.materialize(deployment.target, defaults=deployment.install_defaults())
        report = configurator.last_report
        if report.seeded_from:
            console.ok(f"Created {deployment.env_path.name} from {report.seeded_from.name}")
        for name in report.generated:
            console.ok(f"Generated secret: {name}")
        for name in report.adopted:
            console.info(f"Adopted existing secret from {deployment.env_path.name}: {name}")
        if not report.written:
            console.info("Configuration unchanged.")

        topology = reconcile_topology(
            default_topology(deployment.target, check_runner, config),
            deployment.project_dir,
        )
        for name in topology.dropped:
            console.warn(f"{name} is not defined in the compose file; skipping.")

        if deployment.production:
            _prepare_production_host(deployment, runner, non_interactive=non_interactive)

        if skip_certs:
            console.warn("Skipping root CA installation (--skip-certs).")
        else:
            _report_bootstrap(install_root_ca())

        console.rule("Starting services")
        controller = ServiceBringupController(
            compose,
            runner,
            log_tail=deployment.log_tail,
            on_status=_print_status,
        )
        result = controller.bring_up(topology.services)
        for warning in result.warnings:
            console.warn(warning)

        console.rule("Bootstrapping")
        for item in AdminBootstrapper(runner).run_all(config):
            _report_bootstrap(item)

        mark_installed(deployment.project_dir)

    _print_summary(deployment, config)


def _prepare_production_host(deployment: Deployment, runner: CommandRunner, *, non_interactive: bool) -> None:
    report = check_host()
    if report.os_name:
        console.info(f"OS: {report.os_name}")
    for message in report.errors:
        console.err(message)
    if report.errors:
        raise typer.Exit(code=2)
    for message in report.warnings:
        console.warn(message)
    if report.warnings and not non_interactive:
        if not typer.confirm("Continue anyway?", default=True):
            console.err("Install aborted.")
            raise typer.Exit(code=1)
    if report.recommended_runners:
        console.info(f"Recommended runner count for {report.ram_gb}GB RAM: {report.recommended_runners}")

    if deployment.data_root is not None:
        for path in create_data_directories(deployment.data_root):
            logger.debug("data directory ready: %s", path)
        console.ok(f"Data directories ready under {deployment.data_root}")
    _report_bootstrap(ensure_runner_ssh_key(deployment.ssh_dir, runner))


def _print_status(name: str, status: str) -> None:
    if status == "healthy":
        console.ok(f"{name}: healthy")
    elif status.startswith("unhealthy"):
        console.warn(f"{name}: {status}")
    else:
        console.info(f"{name}: {status}")


def _report_bootstrap(result: BootstrapResult) -> None:
    style = _BOOTSTRAP_STYLES[result.status]
    line = f"[{style}]{result.status.value}[/] {escape(result.resource)}"
    console.print(line)
    if result.detail and result.status in {BootstrapStatus.FAILED, BootstrapStatus.SKIPPED}:
        console.print(f"  {result.detail}", markup=False, highlight=False)


def _print_summary(deployment: Deployment, config: EnvironmentConfig) -> None:
    console.rule("Installation complete")
    domain = config.get("DOMAIN") or config.get("GITEA_DOMAIN")
    console.print("[cyan]Access:[/]")
    console.print(f"  Local:     http://localhost:{config.get('HTTP_PORT') or 3000}")
    if domain:
        console.print(f"  External:  https://{domain}")
    console.print("[cyan]Admin:[/]")
    console.print(f"  Username:  {config.get('ADMIN_USERNAME') or deployment.admin_username}")
    console.print(f"  Email:     {config.get('ADMIN_EMAIL') or deployment.admin_email}")
    console.print(f"  Password:  stored in {deployment.secrets_dir / 'admin-password'}")
    if domain:
        console.print("[cyan]SSH clone:[/]")
        console.print(f"  ssh://git@{domain}:{config.get('SSH_PORT') or 2222}/org/repo.git")

    if (config.get("RUNNER_TOKEN") or RUNNER_TOKEN_UNSET) == RUNNER_TOKEN_UNSET:
        console.warn("Runners are not configured yet.")
        where = f"https://{domain}/admin/actions/runners" if domain else "Site Administration > Actions > Runners"
        console.print(f"  1. Create a runner token at {where}")
        console.print("  2. Run: terrarium-git runners setup <TOKEN>")
    else:
        console.ok("Runners configured.")


def _run_destroy(
    deployment: Deployment,
    compose: Compose,
    *,
    confirm: str | None,
    non_interactive: bool,
) -> None:
    console.warn("DANGEROUS: this removes all Terrarium Git containers, volumes, secrets and configuration.")
    if deployment.data_root is not None:
        console.warn(f"Data directory will be removed: {deployment.data_root}")
    token = confirm
    if token is None and not non_interactive:
        token = typer.prompt(f"Type '{DESTROY_CONFIRMATION}' to confirm", default="", show_default=False)

    extra_paths = []
    if deployment.production:
        extra_paths = [deployment.data_root, deployment.ssh_dir]
    controller = TeardownController(deployment.project_dir, compose, deployment.store(), extra_paths=extra_paths)

    with deployment_lock(deployment.env_path):
        result = controller.destroy(token)
    if result.cancelled:
        console.info("Teardown cancelled.")
        return
    for warning in result.warnings:
        console.warn(warning)
    for path in result.removed:
        console.info(f"Removed {path}")
    console.ok("Terrarium Git removed.")
