from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import Mapping

_KEY_RE = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=")


def read_env_content(content: str) -> dict[str, str]:
    data: dict[str, str] = {}
    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        data[key.strip()] = value.strip()
    return data


def read_env_file(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    return read_env_content(path.read_text(encoding="utf-8"))


def update_env_content(content: str, updates: Mapping[str, str]) -> str:
    """Rewrite ``KEY=value`` lines in place, appending keys that are missing.

    Comments, blank lines and line order are preserved.
    """
    pending = dict(updates)
    out: list[str] = []
    for raw in content.splitlines():
        match = _KEY_RE.match(raw)
        if match and match.group(1) in pending:
            key = match.group(1)
            out.append(f"{key}={pending.pop(key)}")
            continue
        out.append(raw)
    for key, value in pending.items():
        out.append(f"{key}={value}")
    return "\n".join(out) + "\n"


def atomic_write_text(path: Path, content: str, *, mode: int = 0o600) -> None:
    """Write via a temp file in the same directory and rename over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
