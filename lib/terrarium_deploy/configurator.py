from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Mapping

from .envfile import atomic_write_text, read_env_content, update_env_content
from .errors import ConfigurationError, TemplateNotFoundError
from .secret_store import (
    DEFAULT_SECRET_SPECS,
    PLACEHOLDER,
    SecretSpec,
    SecretState,
    SecretStore,
    is_placeholder,
    secret_spec_for_key,
)

logger = logging.getLogger(__name__)

ACTIVE_CONFIG_NAME = ".env"
PRODUCTION_DATA_ROOT = Path("/opt/terrarium-git/data")


class DeploymentTarget(str, Enum):
    STAGING = "staging"
    PRODUCTION = "production"


TEMPLATE_CANDIDATES: dict[DeploymentTarget, tuple[str, ...]] = {
    DeploymentTarget.STAGING: (".env.staging", ".env.example"),
    DeploymentTarget.PRODUCTION: (".env.production",),
}


def data_root_overrides(data_root: Path) -> dict[str, str]:
    root = str(data_root)
    return {
        "DATA_ROOT": root,
        "POSTGRES_DATA": f"{root}/postgres",
        "GITEA_DATA": f"{root}/gitea",
        "MINIO_DATA": f"{root}/minio",
    }


def target_overrides(target: DeploymentTarget) -> dict[str, str]:
    if target is DeploymentTarget.PRODUCTION:
        return data_root_overrides(PRODUCTION_DATA_ROOT)
    return {}


class EnvironmentConfig(Mapping[str, str]):
    """Read-only snapshot of the active configuration."""

    def __init__(self, values: Mapping[str, str], *, path: Path, target: DeploymentTarget):
        self._values = MappingProxyType(dict(values))
        self.path = path
        self.target = target

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"EnvironmentConfig(path={str(self.path)!r}, target={self.target.value!r}, keys={len(self)})"

    def get_bool(self, key: str, default: bool = False) -> bool:
        raw = self.get(key)
        if raw is None or not raw.strip():
            return default
        return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class MaterializeReport:
    seeded_from: Path | None = None
    generated: list[str] = field(default_factory=list)
    adopted: list[str] = field(default_factory=list)
    overridden: list[str] = field(default_factory=list)
    written: bool = False


class EnvironmentConfigurator:
    def __init__(
        self,
        project_dir: Path,
        store: SecretStore,
        *,
        specs: tuple[SecretSpec, ...] = DEFAULT_SECRET_SPECS,
        environ: Mapping[str, str] | None = None,
    ):
        self.project_dir = Path(project_dir)
        self.store = store
        self.specs = specs
        self.environ = os.environ if environ is None else environ
        self.last_report = MaterializeReport()

    @property
    def active_path(self) -> Path:
        return self.project_dir / ACTIVE_CONFIG_NAME

    def template_for(self, target: DeploymentTarget) -> Path:
        candidates = TEMPLATE_CANDIDATES[target]
        for name in candidates:
            path = self.project_dir / name
            if path.is_file():
                return path
        raise TemplateNotFoundError(target.value, list(candidates))

    def materialize(
        self,
        target: DeploymentTarget,
        overrides: Mapping[str, str] | None = None,
        *,
        template: Path | None = None,
        defaults: Mapping[str, str] | None = None,
    ) -> EnvironmentConfig:
        """Seed, fill secrets, apply overrides and persist the active configuration.

        ``overrides`` always replace the stored value; ``defaults`` only fill keys
        that are missing, empty or still hold the placeholder.
        """
        report = MaterializeReport()
        self.last_report = report

        if self.active_path.exists():
            original = self.active_path.read_text(encoding="utf-8")
            content = original
        else:
            seed = template or self.template_for(target)
            if not seed.is_file():
                raise TemplateNotFoundError(target.value, [str(seed)])
            original = None
            content = seed.read_text(encoding="utf-8")
            report.seeded_from = seed
            logger.info("seeding %s from %s", self.active_path, seed)

        current = read_env_content(content)
        updates: dict[str, str] = {}
        for spec in (*self.specs, *self._sentinel_specs(current, overrides)):
            existing = {key: current.get(key) for key in spec.keys}
            if all(not is_placeholder(value) for value in existing.values()):
                if self.store.read(spec.name, spec.keys).state is SecretState.ABSENT:
                    report.adopted.append(spec.name)
                self.store.adopt(spec, {key: str(value) for key, value in existing.items()})
                continue
            writes_before = self.store.writes
            values = self.store.ensure_spec(spec)
            if self.store.writes > writes_before:
                report.generated.append(spec.name)
            updates.update({key: value for key, value in values.items() if current.get(key) != value})

        for key, value in (defaults or {}).items():
            if is_placeholder(current.get(key)) and value:
                updates[key] = value

        for key, value in {**target_overrides(target), **(overrides or {})}.items():
            if current.get(key) != value:
                updates[key] = value
                report.overridden.append(key)

        if updates:
            content = update_env_content(content, updates)
        if content != original:
            atomic_write_text(self.active_path, content, mode=0o600)
            report.written = True
            logger.debug("wrote %s (%d keys updated)", self.active_path, len(updates))

        return self.load(target)

    def _sentinel_specs(self, current: Mapping[str, str], overrides: Mapping[str, str] | None) -> list[SecretSpec]:
        """One generated secret per remaining sentinel key the known specs do not cover."""
        covered = {key for spec in self.specs for key in spec.keys} | set(overrides or {})
        return [
            secret_spec_for_key(key)
            for key, value in current.items()
            if key not in covered and value.strip() == PLACEHOLDER
        ]

    def load(self, target: DeploymentTarget) -> EnvironmentConfig:
        """Re-read the persisted configuration and layer process environment overrides."""
        if not self.active_path.exists():
            raise ConfigurationError(f"Active configuration not found: {self.active_path}")
        values = read_env_content(self.active_path.read_text(encoding="utf-8"))
        for key in list(values):
            env_value = self.environ.get(key)
            if env_value:
                values[key] = env_value
        leftover = sorted(key for key, value in values.items() if value.strip() == PLACEHOLDER)
        if leftover:
            raise ConfigurationError(
                f"Configuration still has placeholder values for: {', '.join(leftover)}"
            )
        return EnvironmentConfig(values, path=self.active_path, target=target)

    def set_value(self, key: str, value: str) -> None:
        if not self.active_path.exists():
            raise ConfigurationError(f"Active configuration not found: {self.active_path}")
        content = self.active_path.read_text(encoding="utf-8")
        atomic_write_text(self.active_path, update_env_content(content, {key: value}), mode=0o600)
