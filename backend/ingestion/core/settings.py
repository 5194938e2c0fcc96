from __future__ import annotations

"""Runtime settings for the ingestion job.

Configuration is via environment variables only (.env loaded by the process runner).
"""

import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.env import load_env_if_present


ENV_PREFIX = "COINLENS_"

DEFAULT_SOURCES_YAML = Path(__file__).resolve().parents[1] / "config" / "sources.yaml"


class IngestionSettings(BaseModel):
    sources_yaml: Path = DEFAULT_SOURCES_YAML
    pipeline_concurrency: int = Field(default=8, ge=1)

    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_failure_window_ms: int = Field(default=60_000, ge=1)
    breaker_reset_timeout_ms: int = Field(default=30_000, ge=0)
    breaker_success_threshold: int = Field(default=2, ge=1)

    retry_max_attempts: int = Field(default=3, ge=1)
    retry_initial_delay_ms: int = Field(default=2000, ge=0)
    retry_max_delay_ms: int = Field(default=30_000, ge=0)

    http_timeout_seconds: float = Field(default=20.0, gt=0)
    rendering_service_url: Optional[str] = None
    rendering_api_key: Optional[str] = None

    skip_unhealthy_sources: bool = True
    health_history_jobs: int = Field(default=20, ge=1)

    database_url: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "IngestionSettings":
        if environ is None:
            load_env_if_present()
            environ = os.environ

        values: dict[str, object] = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is not None and raw != "":
                values[name] = raw

        # DATABASE_URL is shared with the rest of the backend.
        if "database_url" not in values and environ.get("DATABASE_URL"):
            values["database_url"] = environ["DATABASE_URL"]

        return cls.model_validate(values)
