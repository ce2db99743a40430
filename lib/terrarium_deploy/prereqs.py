from __future__ import annotations

import shutil
from dataclasses import dataclass
from typing import Callable

from .errors import PrerequisiteError
from .runner import CommandRunner, local_command_runner

COMPOSE_V2 = ("docker", "compose")
COMPOSE_V1 = ("docker-compose",)


@dataclass
class PrereqResult:
    docker_installed: bool
    docker_running: bool
    compose_command: tuple[str, ...] | None

    @property
    def ok(self) -> bool:
        return self.docker_installed and self.docker_running and self.compose_command is not None


def detect_compose_command(
    runner: CommandRunner, *, which: Callable[[str], str | None] = shutil.which
) -> tuple[str, ...] | None:
    if runner([*COMPOSE_V2, "version"]).returncode == 0:
        return COMPOSE_V2
    if which("docker-compose"):
        return COMPOSE_V1
    return None


def check_prereqs(
    runner: CommandRunner | None = None, *, which: Callable[[str], str | None] = shutil.which
) -> PrereqResult:
    runner = runner or local_command_runner()
    docker_installed = which("docker") is not None
    docker_running = False
    compose_command = None
    if docker_installed:
        docker_running = runner(["docker", "info"]).returncode == 0
        compose_command = detect_compose_command(runner, which=which)
    return PrereqResult(
        docker_installed=docker_installed,
        docker_running=docker_running,
        compose_command=compose_command,
    )


def require_prereqs(result: PrereqResult) -> tuple[str, ...]:
    if not result.docker_installed:
        raise PrerequisiteError("Docker is not installed. Install with: curl -fsSL https://get.docker.com | sh")
    if not result.docker_running:
        raise PrerequisiteError("Docker daemon is not running. Start with: sudo systemctl start docker")
    if result.compose_command is None:
        raise PrerequisiteError("Docker Compose is not installed (neither 'docker compose' nor 'docker-compose').")
    return result.compose_command
