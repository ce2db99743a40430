from __future__ import annotations

import json
import subprocess
from typing import Callable

import pytest


def completed(cmd: list[str], returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)


def inspect_state(status: str, health: str | None = None) -> str:
    state: dict = {"Status": status}
    if health:
        state["Health"] = {"Status": health}
    return json.dumps(state)


class FakeRunner:
    """Records commands; ``routes`` maps a command prefix to a response factory."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.routes: list[tuple[tuple[str, ...], Callable[[list[str]], subprocess.CompletedProcess[str]]]] = []

    def on(self, *prefix: str, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.routes.insert(0, (prefix, lambda cmd: completed(cmd, returncode, stdout, stderr)))

    def on_call(self, *prefix: str, handler: Callable[[list[str]], subprocess.CompletedProcess[str]]) -> None:
        self.routes.insert(0, (prefix, handler))

    def __call__(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        self.calls.append(list(cmd))
        for prefix, handler in self.routes:
            if tuple(cmd[: len(prefix)]) == prefix:
                return handler(cmd)
        return completed(cmd)

    def matching(self, *prefix: str) -> list[list[str]]:
        return [cmd for cmd in self.calls if tuple(cmd[: len(prefix)]) == prefix]


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()
