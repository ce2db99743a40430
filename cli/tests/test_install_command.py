from functools import partial

import pytest
import typer
from typer.testing import CliRunner

from conftest import FakeRunner, inspect_state
from terrarium_cli import config
from terrarium_cli.commands import install_cmd, runners_cmd, status_cmd
from terrarium_cli.main import app
from terrarium_deploy.bringup import ServiceBringupController
from terrarium_deploy.host import HostReport
from terrarium_deploy.prereqs import COMPOSE_V2, PrereqResult
from terrarium_deploy.secret_store import PLACEHOLDER

TEMPLATE = f"""DOMAIN=git.example.test
POSTGRES_PASSWORD={PLACEHOLDER}
ADMIN_USERNAME=
ADMIN_PASSWORD={PLACEHOLDER}
MINIO_ROOT_USER={PLACEHOLDER}
MINIO_ROOT_PASSWORD={PLACEHOLDER}
RUNNER_TOKEN=CONFIGURE_AFTER_FIRST_START
"""

COMPOSE = """services:
  postgres:
    image: postgres:16
  minio:
    image: minio/minio
  gitea:
    image: gitea/gitea:1.22
  nginx:
    image: nginx
  buildx:
    image: moby/buildkit
"""

READY = PrereqResult(docker_installed=True, docker_running=True, compose_command=COMPOSE_V2)


@pytest.fixture
def project(tmp_path, monkeypatch):
    project_dir = tmp_path / "project"
    project_dir.mkdir()
    (project_dir / ".env.staging").write_text(TEMPLATE, encoding="utf-8")
    (project_dir / "docker-compose.yml").write_text(COMPOSE, encoding="utf-8")

    config_dir = tmp_path / "config"
    monkeypatch.setattr(config, "user_config_dir", lambda _: str(config_dir))
    monkeypatch.setenv(config.ENV_PROJECT_DIR, str(project_dir))
    return project_dir


@pytest.fixture
def docker(monkeypatch) -> FakeRunner:
    runner = FakeRunner()
    runner.on("docker", "inspect", stdout=inspect_state("running", "healthy"))
    for module in (install_cmd, runners_cmd, status_cmd):
        monkeypatch.setattr(module, "make_runner", lambda _deployment, **_kwargs: runner)
    for module in (install_cmd, runners_cmd):
        monkeypatch.setattr(module, "check_prereqs", lambda _runner: READY)
    monkeypatch.setattr(
        install_cmd,
        "ServiceBringupController",
        partial(ServiceBringupController, probe=lambda port: False, sleep=lambda seconds: None),
    )
    return runner


def test_check_only_reports_prereqs(project, monkeypatch) -> None:
    monkeypatch.setattr(
        install_cmd,
        "check_prereqs",
        lambda _runner: PrereqResult(docker_installed=True, docker_running=False, compose_command=None),
    )

    result = CliRunner().invoke(app, ["install", "--check"])

    assert result.exit_code == 2
    assert not (project / ".env").exists()


def test_install_runs_end_to_end(project, docker) -> None:
    result = CliRunner().invoke(app, ["install", "--skip-certs"])

    assert result.exit_code == 0, result.output
    assert (project / ".installed").exists()
    assert PLACEHOLDER not in (project / ".env").read_text(encoding="utf-8")
    assert "ADMIN_USERNAME=terrarium-admin" in (project / ".env").read_text(encoding="utf-8")
    assert "Runners are not configured yet" in result.output
    assert docker.matching("docker", "compose", "pull")


def test_install_twice_keeps_secrets(project, docker) -> None:
    runner = CliRunner()
    runner.invoke(app, ["install", "--skip-certs"])
    first = (project / ".secrets" / "admin-password").read_bytes()

    result = runner.invoke(app, ["install", "--skip-certs"])

    assert result.exit_code == 0, result.output
    assert (project / ".secrets" / "admin-password").read_bytes() == first
    assert "Configuration unchanged" in result.output


def test_missing_template_is_fatal(project, docker, monkeypatch) -> None:
    host_steps = []
    monkeypatch.setattr(install_cmd, "_prepare_production_host", lambda *_args, **_kwargs: host_steps.append("host"))
    monkeypatch.setattr(install_cmd, "install_root_ca", lambda: host_steps.append("ca"))

    result = CliRunner().invoke(app, ["install", "--target", "production"])

    assert result.exit_code == 2
    assert "No configuration template found" in result.output
    assert host_steps == []
    assert not (project / ".env").exists()
    assert docker.matching("docker", "compose") == []


def test_unknown_target(project, docker) -> None:
    result = CliRunner().invoke(app, ["install", "--target", "qa"])

    assert result.exit_code == 2


def test_health_timeout_prints_logs(project, docker) -> None:
    docker.on("docker", "inspect", "-f", "{{json .State}}", "terrarium-git-postgres", stdout=inspect_state("running", "starting"))
    docker.on("docker", "logs", stdout="FATAL: password authentication failed\n")

    result = CliRunner().invoke(app, ["install", "--skip-certs"])

    assert result.exit_code == 2
    assert "FATAL: password authentication failed" in result.output
    assert not (project / ".installed").exists()
    assert not [cmd for cmd in docker.matching("docker", "compose", "up") if "gitea" in cmd]


def test_port_conflict_lists_owner(project, docker, monkeypatch) -> None:
    docker.on("docker", "ps", stdout="abc\tforeign-app\t0.0.0.0:3000->3000/tcp\n")
    monkeypatch.setattr(
        install_cmd,
        "ServiceBringupController",
        partial(ServiceBringupController, probe=lambda port: port == 3000, sleep=lambda seconds: None),
    )

    result = CliRunner().invoke(app, ["install", "--skip-certs"])

    assert result.exit_code == 2
    assert "Port 3000 is used by: foreign-app" in result.output
    assert docker.matching("docker", "compose", "up") == []


def test_destroy_cancelled_without_token(project, docker) -> None:
    CliRunner().invoke(app, ["install", "--skip-certs"])

    result = CliRunner().invoke(app, ["install", "--destroy"], input="no\n")

    assert result.exit_code == 0
    assert "Teardown cancelled" in result.output
    assert (project / ".env").exists()
    assert docker.matching("docker", "compose", "down") == []


def test_destroy_with_confirmation(project, docker) -> None:
    CliRunner().invoke(app, ["install", "--skip-certs"])

    result = CliRunner().invoke(app, ["install", "--destroy", "--confirm", "DESTROY", "--non-interactive"])

    assert result.exit_code == 0, result.output
    assert not (project / ".env").exists()
    assert not (project / ".secrets").exists()
    assert not (project / ".installed").exists()
    assert (project / ".env.staging").exists()


def test_production_host_warning_can_be_declined(project, docker, monkeypatch) -> None:
    monkeypatch.setattr(
        install_cmd,
        "check_host",
        lambda: HostReport(cores=2, ram_gb=16, warnings=["CPU cores: 2 (minimum: 4)"]),
    )
    monkeypatch.setattr(typer, "confirm", lambda *_args, **_kwargs: False)
    deployment = install_cmd.resolve_deployment(config.load_config(), target="production")

    with pytest.raises(typer.Exit) as exc:
        install_cmd._prepare_production_host(deployment, docker, non_interactive=False)

    assert exc.value.exit_code == 1


def test_low_memory_host_is_fatal(project, docker, monkeypatch) -> None:
    monkeypatch.setattr(install_cmd, "check_host", lambda: HostReport(cores=8, ram_gb=2, errors=["RAM: 2GB"]))
    deployment = install_cmd.resolve_deployment(config.load_config(), target="production")

    with pytest.raises(typer.Exit) as exc:
        install_cmd._prepare_production_host(deployment, docker, non_interactive=True)

    assert exc.value.exit_code == 2


def test_runners_setup_writes_token(project, docker) -> None:
    CliRunner().invoke(app, ["install", "--skip-certs"])

    result = CliRunner().invoke(app, ["runners", "setup", "tok-123"])

    assert result.exit_code == 0, result.output
    assert "RUNNER_TOKEN=tok-123" in (project / ".env").read_text(encoding="utf-8")
    assert ["docker", "compose", "up", "-d", "runner1", "runner2"] in docker.calls


def test_runners_setup_requires_install(project, docker) -> None:
    result = CliRunner().invoke(app, ["runners", "setup", "tok-123"])

    assert result.exit_code == 2


def test_status_shows_services(project, docker) -> None:
    CliRunner().invoke(app, ["install", "--skip-certs"])

    result = CliRunner().invoke(app, ["status"])

    assert result.exit_code == 0
    assert "Installed at" in result.output
    assert "terrarium-git-server" in result.output


def test_optional_service_missing_from_compose_is_skipped(project, docker) -> None:
    result = CliRunner().invoke(app, ["install", "--skip-certs"])

    assert result.exit_code == 0, result.output
    assert "watchtower is not defined in the compose file" in result.output
    assert not [cmd for cmd in docker.matching("docker", "compose", "up") if "watchtower" in cmd]


def test_ports_come_from_env(project, docker, monkeypatch) -> None:
    (project / ".env.staging").write_text(TEMPLATE + "HTTP_PORT=3001\n", encoding="utf-8")
    docker.on("docker", "ps", stdout="abc\tforeign-app\t0.0.0.0:3000->3000/tcp\n")
    monkeypatch.setattr(
        install_cmd,
        "ServiceBringupController",
        partial(ServiceBringupController, probe=lambda port: port == 3000, sleep=lambda seconds: None),
    )

    result = CliRunner().invoke(app, ["install", "--skip-certs"])

    assert result.exit_code == 0, result.output
    assert "foreign-app" not in result.output
    assert (project / ".installed").exists()
