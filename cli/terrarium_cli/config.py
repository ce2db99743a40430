from __future__ import annotations

import os
import tomllib
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import tomli_w
from platformdirs import user_config_dir

from terrarium_deploy.bootstrap import DEFAULT_ADMIN_EMAIL, DEFAULT_ADMIN_USERNAME
from terrarium_deploy.configurator import DeploymentTarget
from terrarium_deploy.runner import DEFAULT_LOG_TAIL

APP_NAME = "terrarium-git"
CONFIG_FILENAME = "config.toml"
ENV_PROJECT_DIR = "TERRARIUM_PROJECT_DIR"


@dataclass
class InstallerConfig:
    project_dir: str = ""
    target: str = DeploymentTarget.STAGING.value
    admin_username: str = DEFAULT_ADMIN_USERNAME
    admin_email: str = DEFAULT_ADMIN_EMAIL
    health_log_tail: int = DEFAULT_LOG_TAIL


CONFIG_KEYS = tuple(f.name for f in fields(InstallerConfig))


def config_path() -> str:
    return f"{user_config_dir(APP_NAME)}/{CONFIG_FILENAME}"


def default_config() -> InstallerConfig:
    return InstallerConfig()


def ensure_parent_dir(path: str) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)


def to_toml(cfg: InstallerConfig) -> dict[str, Any]:
    return {key: value for key, value in asdict(cfg).items() if value not in (None, "")}


def from_toml(data: dict[str, Any]) -> InstallerConfig:
    cfg = default_config()
    for key in CONFIG_KEYS:
        if key not in data:
            continue
        try:
            cfg = _with_value(cfg, key, str(data[key]))
        except ValueError:
            # an unusable stored value falls back to the default
            continue
    return cfg


def _with_value(cfg: InstallerConfig, key: str, raw: str) -> InstallerConfig:
    value = raw.strip()
    if key == "target":
        value = DeploymentTarget(value.lower()).value
        setattr(cfg, key, value)
    elif key == "health_log_tail":
        lines = int(value)
        if lines <= 0:
            raise ValueError("health_log_tail must be positive")
        cfg.health_log_tail = lines
    elif key == "project_dir":
        cfg.project_dir = str(Path(value).expanduser()) if value else ""
    elif key in CONFIG_KEYS:
        setattr(cfg, key, value)
    else:
        raise KeyError(key)
    return cfg


def load_config() -> InstallerConfig:
    path = config_path()
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        return default_config()
    return from_toml(data)


def save_config(cfg: InstallerConfig) -> str:
    path = config_path()
    ensure_parent_dir(path)
    with open(path, "wb") as f:
        f.write(tomli_w.dumps(to_toml(cfg)).encode("utf-8"))
    os.chmod(path, 0o600)
    return path


def set_config_value(key: str, raw: str) -> InstallerConfig:
    """Validate and persist one key. Raises KeyError or ValueError."""
    cfg = _with_value(load_config(), key, raw)
    save_config(cfg)
    return cfg


def resolve_project_dir(cfg: InstallerConfig, override: Path | None = None) -> Path:
    if override is not None:
        return override.expanduser().resolve()
    env_value = os.getenv(ENV_PROJECT_DIR, "").strip()
    if env_value:
        return Path(env_value).expanduser().resolve()
    if cfg.project_dir:
        return Path(cfg.project_dir).expanduser().resolve()
    return Path.cwd()


def resolve_target(cfg: InstallerConfig, override: str | None = None) -> DeploymentTarget:
    raw = (override or cfg.target or DeploymentTarget.STAGING.value).strip().lower()
    return DeploymentTarget(raw)
