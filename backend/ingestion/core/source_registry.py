from __future__ import annotations

"""Source registry and YAML loader.

- Sources are switched on/off in config, not code.
- Execution order follows the configured priority.
- Disabled sources are skipped silently.
- Unhealthy sources are skipped when a health monitor is supplied.
- Credentials are never written in the YAML; entries name the env vars holding them.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from ingestion.core.health import SourceHealthMonitor
from ingestion.core.source_config import SourceConfiguration
from ingestion.core.value_objects import SourceType


_PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}

_RESERVED_KEYS = frozenset({"enabled", "type", "name", "priority", "credentials_env"})


@dataclass(frozen=True, slots=True)
class RegisteredSource:
    config: SourceConfiguration
    priority: str = "low"


@dataclass(frozen=True, slots=True)
class SourceRegistry:
    sources: list[RegisteredSource]

    def enabled_sources(self, health: Optional[SourceHealthMonitor] = None) -> list[SourceConfiguration]:
        """Active sources in priority order, minus unhealthy ones when ``health`` is given."""
        enabled = [s for s in self.sources if s.config.is_active]
        if health is not None:
            enabled = [s for s in enabled if not health.is_unhealthy(s.config.source_id)]
        ordered = sorted(enabled, key=lambda s: (_PRIORITY_RANK.get(s.priority, 9), s.config.source_id))
        return [s.config for s in ordered]

    def get(self, source_id: str) -> Optional[SourceConfiguration]:
        for s in self.sources:
            if s.config.source_id == source_id:
                return s.config
        return None


def _resolve_credentials(mapping: Any, environ: Mapping[str, str]) -> Optional[dict[str, Any]]:
    if not isinstance(mapping, dict):
        return None
    creds = {str(k): environ.get(str(v)) for k, v in mapping.items()}
    creds = {k: v for k, v in creds.items() if v}
    return creds or None


def load_sources_yaml(path: Path, *, environ: Optional[Mapping[str, str]] = None) -> SourceRegistry:
    env = os.environ if environ is None else environ
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict) or "sources" not in raw or not isinstance(raw["sources"], dict):
        raise ValueError("Invalid sources.yaml: expected top-level mapping with 'sources'.")

    sources: list[RegisteredSource] = []
    for key, cfg in raw["sources"].items():
        if not isinstance(cfg, dict):
            continue
        sources.append(
            RegisteredSource(
                config=SourceConfiguration(
                    source_id=str(key),
                    source_type=SourceType.parse(cfg.get("type", "")),
                    name=str(cfg.get("name") or key),
                    config={k: v for k, v in cfg.items() if k not in _RESERVED_KEYS},
                    credentials=_resolve_credentials(cfg.get("credentials_env"), env),
                    is_active=bool(cfg.get("enabled", False)),
                ),
                priority=str(cfg.get("priority", "low")),
            )
        )

    return SourceRegistry(sources=sources)
