from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

from .errors import ComposeError

logger = logging.getLogger(__name__)

CommandRunner = Callable[[list[str]], subprocess.CompletedProcess[str]]

DEFAULT_LOG_TAIL = 30
CHECK_TIMEOUT = 5.0


def local_command_runner(cwd: Path | None = None, *, timeout: float | None = None) -> CommandRunner:
    def _run(cmd: list[str]) -> subprocess.CompletedProcess[str]:
        logger.debug("run: %s", " ".join(shlex.quote(arg) for arg in cmd))
        try:
            return subprocess.run(cmd, text=True, capture_output=True, cwd=cwd, timeout=timeout)
        except FileNotFoundError as exc:
            return subprocess.CompletedProcess(cmd, 127, "", str(exc))
        except subprocess.TimeoutExpired:
            return subprocess.CompletedProcess(cmd, 124, "", f"timed out after {timeout}s")

    return _run


def output_of(res: subprocess.CompletedProcess[str]) -> str:
    output = (res.stdout or "").strip()
    if not output:
        output = (res.stderr or "").strip()
    return output


def tail_lines(text: str, *, limit: int) -> list[str]:
    lines = [line for line in text.splitlines() if line.strip()]
    return lines[-limit:] if lines else []


@dataclass(frozen=True)
class Compose:
    """docker compose invocation bound to one project directory."""

    command: tuple[str, ...]
    project_dir: Path
    runner: CommandRunner

    def run(self, args: Iterable[str]) -> subprocess.CompletedProcess[str]:
        return self.runner([*self.command, *args])

    def check(self, args: Iterable[str], *, message: str) -> subprocess.CompletedProcess[str]:
        args = list(args)
        res = self.run(args)
        if res.returncode != 0:
            raise ComposeError(message, stderr=(res.stderr or "").strip() or None)
        return res

    def pull(self) -> None:
        self.check(["pull"], message="Failed to pull images.")

    def up(self, services: Iterable[str]) -> None:
        services = list(services)
        self.check(["up", "-d", *services], message=f"Failed to start {', '.join(services)}.")

    def down(self, *, volumes: bool = False) -> subprocess.CompletedProcess[str]:
        args = ["down"]
        if volumes:
            args += ["-v", "--remove-orphans"]
        return self.run(args)

    def ps(self, services: Iterable[str] = ()) -> str:
        return output_of(self.run(["ps", *services]))


def container_logs(runner: CommandRunner, container: str, *, tail: int = DEFAULT_LOG_TAIL) -> str | None:
    res = runner(["docker", "logs", "--tail", str(tail), container])
    # docker logs writes the container's stderr stream to stderr
    output = "\n".join(part for part in ((res.stdout or "").strip(), (res.stderr or "").strip()) if part)
    return output or None
