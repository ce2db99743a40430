from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

INSTALL_MARKER_NAME = ".installed"


@dataclass(frozen=True)
class DeploymentState:
    marker: Path
    installed_at: datetime | None

    @property
    def installed(self) -> bool:
        return self.installed_at is not None


def marker_path(project_dir: Path) -> Path:
    return Path(project_dir) / INSTALL_MARKER_NAME


def read_state(project_dir: Path) -> DeploymentState:
    marker = marker_path(project_dir)
    if not marker.exists():
        return DeploymentState(marker=marker, installed_at=None)
    mtime = marker.stat().st_mtime
    return DeploymentState(marker=marker, installed_at=datetime.fromtimestamp(mtime, tz=timezone.utc))


def mark_installed(project_dir: Path, *, now: datetime | None = None) -> DeploymentState:
    """Touch the empty marker; its mtime is the completion time."""
    marker = marker_path(project_dir)
    marker.touch(exist_ok=True)
    when = now or datetime.now(timezone.utc)
    ts = when.timestamp()
    os.utime(marker, (ts, ts))
    return read_state(project_dir)


def clear_state(project_dir: Path) -> bool:
    marker = marker_path(project_dir)
    if not marker.exists():
        return False
    marker.unlink()
    return True
