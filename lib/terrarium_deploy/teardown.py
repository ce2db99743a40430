from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from .configurator import ACTIVE_CONFIG_NAME
from .runner import Compose
from .secret_store import SecretStore
from .state import clear_state, marker_path

logger = logging.getLogger(__name__)

DESTROY_CONFIRMATION = "DESTROY"


@dataclass
class TeardownResult:
    cancelled: bool
    removed: list[Path] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class TeardownController:
    def __init__(
        self,
        project_dir: Path,
        compose: Compose,
        store: SecretStore,
        *,
        extra_paths: Iterable[Path] = (),
    ):
        self.project_dir = Path(project_dir)
        self.compose = compose
        self.store = store
        self.extra_paths = [Path(p) for p in extra_paths]

    def destroy(self, confirmation_token: str | None) -> TeardownResult:
        if confirmation_token != DESTROY_CONFIRMATION:
            logger.info("teardown cancelled")
            return TeardownResult(cancelled=True)

        result = TeardownResult(cancelled=False)
        res = self.compose.down(volumes=True)
        if res.returncode != 0:
            result.warnings.append((res.stderr or "").strip() or "docker compose down failed")

        for path in self.extra_paths:
            if not path.exists():
                continue
            try:
                if path.is_dir():
                    shutil.rmtree(path)
                else:
                    path.unlink()
            except OSError as exc:
                result.warnings.append(f"Could not remove {path}: {exc}")
                continue
            result.removed.append(path)

        if self.store.purge():
            result.removed.append(self.store.root)
        active = self.project_dir / ACTIVE_CONFIG_NAME
        if active.exists():
            active.unlink()
            result.removed.append(active)
        if clear_state(self.project_dir):
            result.removed.append(marker_path(self.project_dir))
        return result
