from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .errors import ConfigurationError
from .topology import ServiceDescriptor

logger = logging.getLogger(__name__)

COMPOSE_FILENAMES = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")


def find_compose_file(project_dir: Path) -> Path | None:
    for name in COMPOSE_FILENAMES:
        path = Path(project_dir) / name
        if path.is_file():
            return path
    return None


def read_compose_services(path: Path) -> set[str]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Cannot read {path}: {exc}") from exc
    services = data.get("services") if isinstance(data, dict) else None
    if not isinstance(services, dict):
        raise ConfigurationError(f"{path} has no 'services' section.")
    return {str(name) for name in services}


@dataclass
class ReconciledTopology:
    services: list[ServiceDescriptor]
    dropped: list[str] = field(default_factory=list)


def reconcile_topology(descriptors: list[ServiceDescriptor], project_dir: Path) -> ReconciledTopology:
    """Match the topology against the project's compose file.

    Required services missing from the file are fatal; optional ones are dropped.
    """
    path = find_compose_file(project_dir)
    if path is None:
        raise ConfigurationError(
            f"No compose file found in {project_dir} (looked for: {', '.join(COMPOSE_FILENAMES)})."
        )
    defined = read_compose_services(path)
    missing = [d.name for d in descriptors if d.required and d.name not in defined]
    if missing:
        raise ConfigurationError(f"{path.name} does not define required services: {', '.join(missing)}")

    result = ReconciledTopology(services=[])
    for descriptor in descriptors:
        if descriptor.name in defined:
            result.services.append(descriptor)
        else:
            logger.info("optional service %s not in %s", descriptor.name, path.name)
            result.dropped.append(descriptor.name)
    return result
