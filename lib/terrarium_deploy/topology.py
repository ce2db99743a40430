from __future__ import annotations

from dataclasses import dataclass, field
from itertools import groupby
from typing import Iterable, Mapping

from .configurator import DeploymentTarget
from .errors import ConfigurationError
from .health import HealthPredicate, any_of, docker_healthcheck_predicate, docker_predicate, http_predicate
from .runner import CommandRunner

CONTAINER_PREFIX = "terrarium-git-"
GITEA_CONTAINER = "terrarium-git-server"
GITEA_HEALTH_PATH = "/api/healthz"

DEFAULT_PORTS = {
    "HTTP_PORT": 3000,
    "SSH_PORT": 2222,
    "MINIO_API_PORT": 9000,
    "MINIO_CONSOLE_PORT": 9001,
}


@dataclass(frozen=True)
class PollPolicy:
    interval: float
    max_attempts: int

    @property
    def budget(self) -> float:
        return self.interval * self.max_attempts


DATABASE_POLL = PollPolicy(interval=2.0, max_attempts=30)
GITEA_POLL = PollPolicy(interval=3.0, max_attempts=60)
SIDECAR_POLL = PollPolicy(interval=2.0, max_attempts=10)


@dataclass(frozen=True)
class ServiceDescriptor:
    name: str
    container: str
    rank: int
    health: HealthPredicate = field(compare=False, repr=False)
    depends_on: tuple[str, ...] = ()
    ports: tuple[int, ...] = ()
    poll: PollPolicy = DATABASE_POLL
    required: bool = True


def group_by_rank(descriptors: Iterable[ServiceDescriptor]) -> list[tuple[int, list[ServiceDescriptor]]]:
    ordered = sorted(descriptors, key=lambda d: d.rank)
    return [(rank, list(group)) for rank, group in groupby(ordered, key=lambda d: d.rank)]


def validate_topology(descriptors: Iterable[ServiceDescriptor]) -> None:
    """Every dependency must exist and sit in a strictly lower rank."""
    by_name = {}
    for descriptor in descriptors:
        if descriptor.name in by_name:
            raise ConfigurationError(f"Duplicate service in topology: {descriptor.name}")
        by_name[descriptor.name] = descriptor
    for descriptor in by_name.values():
        for dep in descriptor.depends_on:
            upstream = by_name.get(dep)
            if upstream is None:
                raise ConfigurationError(f"{descriptor.name} depends on unknown service {dep}")
            if upstream.rank >= descriptor.rank:
                raise ConfigurationError(
                    f"{descriptor.name} (rank {descriptor.rank}) depends on {dep} (rank {upstream.rank})"
                )


def claimed_ports(descriptors: Iterable[ServiceDescriptor]) -> list[int]:
    return sorted({port for descriptor in descriptors for port in descriptor.ports})


def managed_containers(descriptors: Iterable[ServiceDescriptor]) -> set[str]:
    return {descriptor.container for descriptor in descriptors}


def configured_ports(config: Mapping[str, str] | None = None) -> dict[str, int]:
    """Published host ports, taken from the configuration where set."""
    ports = dict(DEFAULT_PORTS)
    for key in ports:
        raw = ((config or {}).get(key) or "").strip()
        if not raw:
            continue
        if not raw.isdigit() or not 0 < int(raw) < 65536:
            raise ConfigurationError(f"{key} must be a TCP port, got {raw!r}")
        ports[key] = int(raw)
    return ports


def gitea_health_url(config: Mapping[str, str] | None = None) -> str:
    return f"http://127.0.0.1:{configured_ports(config)['HTTP_PORT']}{GITEA_HEALTH_PATH}"


def default_topology(
    target: DeploymentTarget,
    runner: CommandRunner,
    config: Mapping[str, str] | None = None,
) -> list[ServiceDescriptor]:
    ports = configured_ports(config)

    def container(suffix: str) -> str:
        return f"{CONTAINER_PREFIX}{suffix}"

    services = [
        ServiceDescriptor(
            name="postgres",
            container=container("postgres"),
            rank=1,
            health=docker_healthcheck_predicate(runner, container("postgres")),
            poll=DATABASE_POLL,
        ),
        ServiceDescriptor(
            name="minio",
            container=container("minio"),
            rank=2,
            health=docker_healthcheck_predicate(runner, container("minio")),
            depends_on=("postgres",),
            ports=(ports["MINIO_API_PORT"], ports["MINIO_CONSOLE_PORT"]),
            poll=DATABASE_POLL,
        ),
        ServiceDescriptor(
            name="gitea",
            container=GITEA_CONTAINER,
            rank=3,
            health=any_of(
                docker_healthcheck_predicate(runner, GITEA_CONTAINER),
                http_predicate(gitea_health_url(config)),
            ),
            depends_on=("postgres", "minio"),
            ports=(ports["HTTP_PORT"], ports["SSH_PORT"]),
            poll=GITEA_POLL,
        ),
    ]
    sidecars = ["nginx", "buildx"]
    if target is DeploymentTarget.STAGING:
        sidecars.append("watchtower")
    for name in sidecars:
        services.append(
            ServiceDescriptor(
                name=name,
                container=container(name),
                rank=4,
                health=docker_predicate(runner, container(name)),
                depends_on=("gitea",),
                poll=SIDECAR_POLL,
                required=False,
            )
        )
    validate_topology(services)
    return services
