from __future__ import annotations

import logging
import os
import socket
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from .bootstrap import BootstrapResult, BootstrapStatus
from .envfile import read_env_content
from .errors import PrerequisiteError
from .runner import CommandRunner, output_of

logger = logging.getLogger(__name__)

MIN_CORES = 4
MIN_RAM_GB = 4
RECOMMENDED_RAM_GB = 8
MIN_UBUNTU_MAJOR = 22

CA_INSTALLER_URL = "https://certs.terrarium.network/install.sh"
DATA_SUBDIRS = ("postgres", "gitea", "minio")

_SSH_CLIENT_CONFIG = """Host *
    StrictHostKeyChecking no
    UserKnownHostsFile /dev/null
    IdentityFile ~/.ssh/id_ed25519
"""


@dataclass
class HostReport:
    os_name: str | None = None
    cores: int | None = None
    ram_gb: int | None = None
    recommended_runners: int | None = None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def recommended_runners(ram_gb: int) -> int:
    if ram_gb >= 32:
        return 8
    if ram_gb >= 16:
        return 5
    if ram_gb >= 8:
        return 3
    return 2


def read_os_release(path: Path = Path("/etc/os-release")) -> dict[str, str]:
    if not path.exists():
        return {}
    values = read_env_content(path.read_text(encoding="utf-8"))
    return {key: value.strip('"') for key, value in values.items()}


def read_ram_gb(meminfo: Path = Path("/proc/meminfo")) -> int | None:
    if not meminfo.exists():
        return None
    for line in meminfo.read_text(encoding="utf-8").splitlines():
        if line.startswith("MemTotal:"):
            parts = line.split()
            if len(parts) >= 2 and parts[1].isdigit():
                return int(parts[1]) // 1024 // 1024
    return None


def check_host(
    *,
    os_release: dict[str, str] | None = None,
    cores: int | None = None,
    ram_gb: int | None = None,
) -> HostReport:
    release = read_os_release() if os_release is None else os_release
    cores = os.cpu_count() if cores is None else cores
    ram_gb = read_ram_gb() if ram_gb is None else ram_gb

    report = HostReport(os_name=release.get("PRETTY_NAME") or release.get("ID"), cores=cores, ram_gb=ram_gb)
    if not release:
        report.warnings.append("Could not detect OS version")
    elif release.get("ID") == "ubuntu":
        major = (release.get("VERSION_ID") or "0").split(".", 1)[0]
        if major.isdigit() and int(major) < MIN_UBUNTU_MAJOR:
            report.warnings.append(f"Ubuntu {release.get('VERSION_ID')} detected. Recommended: Ubuntu 24.04 LTS")

    if cores is not None and cores < MIN_CORES:
        report.warnings.append(f"CPU cores: {cores} (minimum: {MIN_CORES})")

    if ram_gb:
        if ram_gb < MIN_RAM_GB:
            report.errors.append(f"RAM: {ram_gb}GB (minimum: {MIN_RAM_GB}GB). Please add more memory.")
        elif ram_gb < RECOMMENDED_RAM_GB:
            report.warnings.append(f"RAM: {ram_gb}GB (recommended: {RECOMMENDED_RAM_GB}GB)")
        report.recommended_runners = recommended_runners(ram_gb)
    return report


def create_data_directories(data_root: Path) -> list[Path]:
    created = []
    try:
        for name in DATA_SUBDIRS:
            path = data_root / name
            path.mkdir(parents=True, exist_ok=True)
            os.chmod(path, 0o755)
            created.append(path)
        os.chmod(data_root, 0o755)
    except PermissionError as exc:
        raise PrerequisiteError(
            f"Cannot create data directories under {data_root}: {exc}. "
            f"Create it with: sudo mkdir -p {data_root} && sudo chown $(id -u):$(id -g) {data_root}"
        ) from exc
    return created


def ensure_runner_ssh_key(ssh_dir: Path, runner: CommandRunner) -> BootstrapResult:
    key_path = ssh_dir / "id_ed25519"
    resource = f"runner SSH key {key_path}"
    ssh_dir.mkdir(parents=True, exist_ok=True)
    status = BootstrapStatus.EXISTS
    if not key_path.exists():
        res = runner(
            [
                "ssh-keygen",
                "-t",
                "ed25519",
                "-f",
                str(key_path),
                "-N",
                "",
                "-C",
                f"terrarium-git-runner@{socket.gethostname()}",
            ]
        )
        if res.returncode != 0:
            return BootstrapResult(resource, BootstrapStatus.FAILED, output_of(res) or "ssh-keygen failed")
        status = BootstrapStatus.CREATED

    config_path = ssh_dir / "config"
    config_path.write_text(_SSH_CLIENT_CONFIG, encoding="utf-8")
    os.chmod(key_path, 0o600)
    pub_path = key_path.with_suffix(".pub")
    if pub_path.exists():
        os.chmod(pub_path, 0o644)
    os.chmod(config_path, 0o644)
    return BootstrapResult(resource, status)


def install_root_ca(*, url: str = CA_INSTALLER_URL, timeout: float = 30.0) -> BootstrapResult:
    """Fetch the external root CA installer and pipe it to ``sudo bash``."""
    resource = "root CA"
    try:
        response = httpx.get(url, timeout=timeout, verify=False, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        return BootstrapResult(resource, BootstrapStatus.FAILED, f"download failed: {exc}")
    cmd = ["bash"] if hasattr(os, "geteuid") and os.geteuid() == 0 else ["sudo", "bash"]
    try:
        res = subprocess.run(cmd, input=response.text, text=True, capture_output=True, check=False)
    except FileNotFoundError as exc:
        return BootstrapResult(resource, BootstrapStatus.FAILED, str(exc))
    if res.returncode != 0:
        return BootstrapResult(resource, BootstrapStatus.FAILED, output_of(res) or f"exit code {res.returncode}")
    return BootstrapResult(resource, BootstrapStatus.CREATED)
