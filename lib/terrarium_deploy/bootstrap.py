from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from .runner import CommandRunner, output_of
from .topology import CONTAINER_PREFIX, GITEA_CONTAINER

logger = logging.getLogger(__name__)

MINIO_CONTAINER = f"{CONTAINER_PREFIX}minio"
GITEA_EXEC_USER = "1000:1000"
DEFAULT_ADMIN_USERNAME = "terrarium-admin"
DEFAULT_ADMIN_EMAIL = "admin@terrarium.network"
DEFAULT_OIDC_PROVIDER = "Pocket ID"
DEFAULT_OIDC_SCOPES = "openid email profile"
DEFAULT_LFS_BUCKET = "terrarium-git-lfs-01"

_EXISTS_MARKERS = ("already exists", "already own it", "user already exists", "login source already exists")


class BootstrapStatus(str, Enum):
    CREATED = "created"
    EXISTS = "exists"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class BootstrapResult:
    resource: str
    status: BootstrapStatus
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not BootstrapStatus.FAILED


def _looks_like_exists(output: str) -> bool:
    lowered = output.lower()
    return any(marker in lowered for marker in _EXISTS_MARKERS)


class AdminBootstrapper:
    """Creates post bring-up resources; every operation is safe to repeat.

    Failures are returned as ``FAILED`` results and never raised, since a
    missing admin or auth source can be fixed after the stack is running.
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        gitea_container: str = GITEA_CONTAINER,
        minio_container: str = MINIO_CONTAINER,
    ):
        self.runner = runner
        self.gitea_container = gitea_container
        self.minio_container = minio_container

    def _gitea(self, args: list[str], *, as_user: bool = False) -> subprocess.CompletedProcess[str]:
        cmd = ["docker", "exec"]
        if as_user:
            cmd += ["--user", GITEA_EXEC_USER]
        return self.runner([*cmd, self.gitea_container, "gitea", "admin", *args])

    def _mc(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        return self.runner(["docker", "exec", self.minio_container, "mc", *args])

    def ensure_admin(self, config: Mapping[str, str]) -> BootstrapResult:
        username = config.get("ADMIN_USERNAME") or DEFAULT_ADMIN_USERNAME
        email = config.get("ADMIN_EMAIL") or DEFAULT_ADMIN_EMAIL
        resource = f"admin user '{username}'"

        listing = self._gitea(["user", "list"])
        if listing.returncode == 0 and any(username in line.split() for line in (listing.stdout or "").splitlines()):
            return BootstrapResult(resource, BootstrapStatus.EXISTS)

        password = config.get("ADMIN_PASSWORD")
        if not password:
            return BootstrapResult(resource, BootstrapStatus.FAILED, "ADMIN_PASSWORD is not set")

        res = self._gitea(
            [
                "user",
                "create",
                "--username",
                username,
                "--password",
                password,
                "--email",
                email,
                "--admin",
                "--must-change-password=false",
            ],
            as_user=True,
        )
        output = output_of(res)
        if res.returncode == 0:
            return BootstrapResult(resource, BootstrapStatus.CREATED)
        if _looks_like_exists(output):
            return BootstrapResult(resource, BootstrapStatus.EXISTS, output or None)
        logger.debug("admin create failed: %s", output)
        return BootstrapResult(resource, BootstrapStatus.FAILED, output or f"exit code {res.returncode}")

    def ensure_auth_source(self, config: Mapping[str, str]) -> BootstrapResult:
        provider = config.get("OIDC_PROVIDER_NAME") or DEFAULT_OIDC_PROVIDER
        resource = f"auth source '{provider}'"
        enabled = (config.get("OIDC_ENABLED") or "true").strip().lower() == "true"
        if not enabled:
            return BootstrapResult(resource, BootstrapStatus.SKIPPED, "OIDC is disabled in configuration")

        required = ("OIDC_CLIENT_ID", "OIDC_CLIENT_SECRET", "OIDC_DISCOVERY_URL")
        missing = [key for key in required if not config.get(key)]
        if missing:
            return BootstrapResult(resource, BootstrapStatus.SKIPPED, f"missing {', '.join(missing)}")

        listing = self._gitea(["auth", "list"])
        if listing.returncode == 0 and provider.lower() in (listing.stdout or "").lower():
            return BootstrapResult(resource, BootstrapStatus.EXISTS)

        res = self._gitea(
            [
                "auth",
                "add-oauth",
                "--name",
                provider,
                "--provider",
                "openidConnect",
                "--key",
                config["OIDC_CLIENT_ID"],
                "--secret",
                config["OIDC_CLIENT_SECRET"],
                "--auto-discover-url",
                config["OIDC_DISCOVERY_URL"],
                "--scopes",
                DEFAULT_OIDC_SCOPES,
            ],
            as_user=True,
        )
        output = output_of(res)
        if res.returncode == 0:
            return BootstrapResult(resource, BootstrapStatus.CREATED)
        if _looks_like_exists(output):
            return BootstrapResult(resource, BootstrapStatus.EXISTS, output or None)
        return BootstrapResult(resource, BootstrapStatus.FAILED, output or f"exit code {res.returncode}")

    def ensure_lfs_bucket(self, config: Mapping[str, str]) -> BootstrapResult:
        bucket = config.get("MINIO_LFS_BUCKET") or DEFAULT_LFS_BUCKET
        resource = f"LFS bucket '{bucket}'"
        user = config.get("MINIO_ROOT_USER")
        password = config.get("MINIO_ROOT_PASSWORD")
        if not user or not password:
            return BootstrapResult(resource, BootstrapStatus.SKIPPED, "MinIO credentials are not configured")

        alias = self._mc(["alias", "set", "local", "http://localhost:9000", user, password])
        if alias.returncode != 0:
            return BootstrapResult(resource, BootstrapStatus.FAILED, output_of(alias) or "mc alias set failed")
        if self._mc(["ls", f"local/{bucket}"]).returncode == 0:
            return BootstrapResult(resource, BootstrapStatus.EXISTS)
        res = self._mc(["mb", f"local/{bucket}"])
        output = output_of(res)
        if res.returncode == 0:
            return BootstrapResult(resource, BootstrapStatus.CREATED)
        if _looks_like_exists(output):
            return BootstrapResult(resource, BootstrapStatus.EXISTS, output or None)
        return BootstrapResult(resource, BootstrapStatus.FAILED, output or f"exit code {res.returncode}")

    def run_all(self, config: Mapping[str, str]) -> list[BootstrapResult]:
        return [
            self.ensure_lfs_bucket(config),
            self.ensure_admin(config),
            self.ensure_auth_source(config),
        ]
