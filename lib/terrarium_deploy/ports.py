from __future__ import annotations

import logging
import re
import socket
from dataclasses import dataclass, field
from typing import Callable, Iterable

from .runner import CommandRunner, output_of

logger = logging.getLogger(__name__)

DEFAULT_BIND = "127.0.0.1"

_PUBLISHED_RE = re.compile(r":(\d+)->")


@dataclass(frozen=True)
class ContainerRef:
    id: str
    name: str


@dataclass(frozen=True)
class PortConflict:
    port: int
    owner: str


@dataclass
class SweepResult:
    freed: list[tuple[int, str]] = field(default_factory=list)
    conflicts: list[PortConflict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.conflicts


def port_in_use(port: int, host: str = DEFAULT_BIND) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(1.0)
        return sock.connect_ex((host, port)) == 0


def published_containers(runner: CommandRunner) -> dict[int, list[ContainerRef]]:
    res = runner(["docker", "ps", "--format", "{{.ID}}\t{{.Names}}\t{{.Ports}}"])
    if res.returncode != 0:
        return {}
    published: dict[int, list[ContainerRef]] = {}
    for line in (res.stdout or "").splitlines():
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        ref = ContainerRef(id=parts[0].strip(), name=parts[1].strip())
        for match in _PUBLISHED_RE.finditer(parts[2]):
            refs = published.setdefault(int(match.group(1)), [])
            if ref not in refs:
                refs.append(ref)
    return published


def describe_listener(runner: CommandRunner, port: int) -> str:
    res = runner(["lsof", "-i", f":{port}", "-sTCP:LISTEN", "-t"])
    pids = (res.stdout or "").split() if res.returncode == 0 else []
    if not pids:
        return "unknown process"
    pid = pids[0]
    name = output_of(runner(["ps", "-p", pid, "-o", "comm="])) or "unknown"
    return f"{name} (PID: {pid})"


def remove_container(runner: CommandRunner, ref: ContainerRef) -> bool:
    stop = runner(["docker", "stop", ref.id])
    if stop.returncode != 0:
        return False
    return runner(["docker", "rm", ref.id]).returncode == 0


def sweep_ports(
    ports: Iterable[int],
    runner: CommandRunner,
    is_own: Callable[[str], bool],
    *,
    probe: Callable[[int], bool] = port_in_use,
) -> SweepResult:
    """Free ports held by this deployment's orphaned containers; report the rest.

    Nothing is started here; callers abort when ``conflicts`` is non-empty.
    """
    result = SweepResult()
    published: dict[int, list[ContainerRef]] | None = None
    for port in ports:
        if not probe(port):
            continue
        if published is None:
            published = published_containers(runner)
        owners = published.get(port, [])
        if owners and all(is_own(ref.name) for ref in owners):
            if all(remove_container(runner, ref) for ref in owners):
                for ref in owners:
                    logger.info("freed port %s (removed container %s)", port, ref.name)
                    result.freed.append((port, ref.name))
                continue
        if owners:
            owner = ", ".join(ref.name for ref in owners)
        else:
            owner = describe_listener(runner, port)
        result.conflicts.append(PortConflict(port=port, owner=owner))
    return result
