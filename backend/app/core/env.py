"""Minimal .env loader for the ingestion runner.

Search order:
- ``COINLENS_ENV_FILE`` if set (explicit path wins, nothing else is read)
- repo root ``.env``
- ``backend/.env``

Existing environment variables are never overwritten unless ``override=True``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import MutableMapping, Optional


ENV_FILE_VAR = "COINLENS_ENV_FILE"

# backend/app/core/env.py -> repo root
REPO_ROOT = Path(__file__).resolve().parents[3]


def parse_env_line(line: str) -> tuple[str, str] | None:
    line = line.strip()
    if not line or line.startswith("#") or "=" not in line:
        return None
    if line.startswith("export "):
        line = line[len("export "):].lstrip()
    key, value = line.split("=", 1)
    key = key.strip()
    value = value.strip()
    if not key:
        return None
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return key, value


def _candidates(environ: MutableMapping[str, str]) -> list[Path]:
    explicit = environ.get(ENV_FILE_VAR)
    if explicit:
        return [Path(explicit)]
    return [REPO_ROOT / ".env", REPO_ROOT / "backend" / ".env"]


def load_env_if_present(
    *,
    override: bool = False,
    environ: Optional[MutableMapping[str, str]] = None,
) -> list[Path]:
    """Load .env files into ``environ`` (default ``os.environ``).

    Returns the files that were actually read.
    """
    target = os.environ if environ is None else environ
    loaded: list[Path] = []

    for path in _candidates(target):
        if not path.is_file():
            continue
        try:
            content = path.read_text(encoding="utf-8")
        except OSError:
            continue
        loaded.append(path)
        for raw in content.splitlines():
            parsed = parse_env_line(raw)
            if parsed is None:
                continue
            key, value = parsed
            if not override and key in target:
                continue
            target[key] = value

    return loaded
