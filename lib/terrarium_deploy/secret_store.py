from __future__ import annotations

import logging
import secrets
import shutil
import string
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping

from .envfile import atomic_write_text, read_env_content
from .errors import SecretStoreError

logger = logging.getLogger(__name__)

PLACEHOLDER = "GENERATE_ME_FIRST"
PASSWORD_LENGTH = 24
_PASSWORD_ALPHABET = string.ascii_letters + string.digits

Generator = Callable[[], str]


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


def generate_minio_user() -> str:
    return f"admin-{secrets.token_hex(4)}"


def is_placeholder(value: str | None) -> bool:
    return value is None or not value.strip() or value.strip() == PLACEHOLDER


class SecretState(str, Enum):
    GENERATED = "generated"
    ABSENT = "absent"


@dataclass(frozen=True)
class SecretRecord:
    name: str
    path: Path
    state: SecretState
    values: dict[str, str] = field(default_factory=dict)
    policy: str = "generate-once"

    @property
    def value(self) -> str | None:
        if self.state is not SecretState.GENERATED:
            return None
        return self.values.get(self.name)


@dataclass(frozen=True)
class SecretSpec:
    """A stored credential and the configuration keys it fills."""

    name: str
    generators: Mapping[str, Generator]

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(self.generators)


DEFAULT_SECRET_SPECS: tuple[SecretSpec, ...] = (
    SecretSpec("postgres-password", {"POSTGRES_PASSWORD": generate_password}),
    SecretSpec("admin-password", {"ADMIN_PASSWORD": generate_password}),
    SecretSpec(
        "minio-credentials",
        {"MINIO_ROOT_USER": generate_minio_user, "MINIO_ROOT_PASSWORD": generate_password},
    ),
)


def secret_spec_for_key(key: str) -> SecretSpec:
    return SecretSpec(key.lower().replace("_", "-"), {key: generate_password})


class SecretStore:
    """Directory of owner-only credential files, each written at most once.

    A single-value record holds the raw value; a multi-value record holds
    ``KEY=value`` lines. Empty files and stored placeholders read as absent.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.writes = 0

    def path_for(self, name: str) -> Path:
        return self.root / name

    def read(self, name: str, keys: tuple[str, ...] | None = None) -> SecretRecord:
        path = self.path_for(name)
        try:
            content = path.read_text(encoding="utf-8") if path.exists() else ""
        except OSError as exc:
            raise SecretStoreError(f"Cannot read secret {name} at {path}: {exc}") from exc

        if keys and len(keys) > 1:
            values = read_env_content(content)
            complete = all(not is_placeholder(values.get(key)) for key in keys)
            if not complete:
                return SecretRecord(name=name, path=path, state=SecretState.ABSENT)
            return SecretRecord(
                name=name,
                path=path,
                state=SecretState.GENERATED,
                values={key: values[key] for key in keys},
            )

        value = content.strip()
        if is_placeholder(value):
            return SecretRecord(name=name, path=path, state=SecretState.ABSENT)
        return SecretRecord(name=name, path=path, state=SecretState.GENERATED, values={name: value})

    def ensure(self, name: str, generator: Generator) -> str:
        record = self.read(name)
        if record.state is SecretState.GENERATED:
            logger.debug("secret %s already stored", name)
            return record.values[name]
        value = generator()
        self._write(name, value + "\n")
        logger.debug("secret %s generated", name)
        return value

    def ensure_many(self, name: str, generators: Mapping[str, Generator]) -> dict[str, str]:
        keys = tuple(generators)
        record = self.read(name, keys)
        if record.state is SecretState.GENERATED:
            return dict(record.values)
        values = {key: gen() for key, gen in generators.items()}
        self._write(name, "".join(f"{key}={value}\n" for key, value in values.items()))
        return values

    def ensure_spec(self, spec: SecretSpec) -> dict[str, str]:
        if len(spec.generators) == 1:
            (key, generator), = spec.generators.items()
            return {key: self.ensure(spec.name, generator)}
        return self.ensure_many(spec.name, spec.generators)

    def adopt(self, spec: SecretSpec, values: Mapping[str, str]) -> dict[str, str]:
        """Store values found in an existing configuration, unless a record exists."""
        record = self.read(spec.name, spec.keys)
        if record.state is SecretState.GENERATED:
            if len(spec.keys) == 1:
                return {spec.keys[0]: record.values[spec.name]}
            return dict(record.values)
        if len(spec.keys) == 1:
            key = spec.keys[0]
            return {key: self.ensure(spec.name, lambda: values[key])}
        return self.ensure_many(spec.name, {key: (lambda k=key: values[k]) for key in spec.keys})

    def records(self, specs: tuple[SecretSpec, ...] = DEFAULT_SECRET_SPECS) -> list[SecretRecord]:
        """Read every stored record; multi-value records need their spec to be listed in ``specs``."""
        if not self.root.is_dir():
            return []
        keys_by_name = {spec.name: spec.keys for spec in specs}
        return [
            self.read(path.name, keys_by_name.get(path.name))
            for path in sorted(self.root.iterdir())
            if path.is_file() and not path.name.startswith(".")
        ]

    def purge(self) -> bool:
        if not self.root.exists():
            return False
        shutil.rmtree(self.root)
        return True

    def _write(self, name: str, content: str) -> None:
        path = self.path_for(name)
        try:
            self.root.mkdir(mode=0o700, parents=True, exist_ok=True)
            atomic_write_text(path, content, mode=0o600)
        except OSError as exc:
            raise SecretStoreError(f"Cannot write secret {name} to {path}: {exc}") from exc
        self.writes += 1
