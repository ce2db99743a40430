from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from terrarium_deploy.configurator import (
    ACTIVE_CONFIG_NAME,
    PRODUCTION_DATA_ROOT,
    DeploymentTarget,
    EnvironmentConfigurator,
)
from terrarium_deploy.runner import CommandRunner, Compose, local_command_runner
from terrarium_deploy.secret_store import SecretStore

from .config import InstallerConfig, resolve_project_dir, resolve_target

SECRETS_DIR_NAME = ".secrets"
SSH_DIR_NAME = "ssh"


@dataclass(frozen=True)
class Deployment:
    project_dir: Path
    target: DeploymentTarget
    admin_username: str
    admin_email: str
    log_tail: int

    @property
    def env_path(self) -> Path:
        return self.project_dir / ACTIVE_CONFIG_NAME

    @property
    def secrets_dir(self) -> Path:
        return self.project_dir / SECRETS_DIR_NAME

    @property
    def ssh_dir(self) -> Path:
        return self.project_dir / SSH_DIR_NAME

    @property
    def production(self) -> bool:
        return self.target is DeploymentTarget.PRODUCTION

    @property
    def data_root(self) -> Path | None:
        return PRODUCTION_DATA_ROOT if self.production else None

    def install_defaults(self) -> dict[str, str]:
        return {"ADMIN_USERNAME": self.admin_username, "ADMIN_EMAIL": self.admin_email}

    def store(self) -> SecretStore:
        return SecretStore(self.secrets_dir)

    def configurator(self) -> EnvironmentConfigurator:
        return EnvironmentConfigurator(self.project_dir, self.store())

    def compose(self, command: tuple[str, ...], runner: CommandRunner) -> Compose:
        return Compose(command=command, project_dir=self.project_dir, runner=runner)


def resolve_deployment(
    cfg: InstallerConfig,
    *,
    project_dir: Path | None = None,
    target: str | None = None,
) -> Deployment:
    """Command options win over ``TERRARIUM_PROJECT_DIR``, which wins over stored preferences."""
    return Deployment(
        project_dir=resolve_project_dir(cfg, project_dir),
        target=resolve_target(cfg, target),
        admin_username=cfg.admin_username,
        admin_email=cfg.admin_email,
        log_tail=cfg.health_log_tail,
    )


def make_runner(deployment: Deployment, *, timeout: float | None = None) -> CommandRunner:
    return local_command_runner(cwd=deployment.project_dir, timeout=timeout)
