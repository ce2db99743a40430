from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from filelock import FileLock, Timeout

from .errors import LockHeldError


def lock_path_for(config_path: Path) -> Path:
    return config_path.with_name(config_path.name + ".lock")


@contextmanager
def deployment_lock(config_path: Path, *, timeout: float = 0) -> Iterator[FileLock]:
    """Advisory lock keyed by the active configuration path."""
    path = lock_path_for(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lock = FileLock(str(path))
    try:
        lock.acquire(timeout=timeout)
    except Timeout as exc:
        raise LockHeldError(f"Another installer run holds {path}. Wait for it to finish and retry.") from exc
    try:
        yield lock
    finally:
        lock.release()
