from __future__ import annotations

"""Source configuration: what to collect, from where, with which credentials.

Credentials are opaque here; decrypting or refreshing them is the adapter's job.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Optional
from urllib.parse import urlparse

from ingestion.core.value_objects import SourceType


MAX_NAME_LENGTH = 255

_URL_REQUIRED = frozenset({SourceType.WEB, SourceType.RSS, SourceType.WIKIPEDIA})


@dataclass(frozen=True, slots=True)
class ConfigValidation:
    is_valid: bool
    errors: list[str]


@dataclass(frozen=True, slots=True)
class SourceConfiguration:
    source_id: str
    source_type: SourceType
    name: str
    config: dict[str, Any] = field(default_factory=dict)
    credentials: Optional[dict[str, Any]] = None
    is_active: bool = True

    @property
    def url(self) -> Optional[str]:
        value = self.config.get("url")
        return str(value) if value else None

    def validate_config(self) -> ConfigValidation:
        errors: list[str] = []

        if not (self.source_id or "").strip():
            errors.append("Source id is required")

        if not (self.name or "").strip():
            errors.append("Source name is required")
        elif len(self.name) > MAX_NAME_LENGTH:
            errors.append(f"Source name must be at most {MAX_NAME_LENGTH} characters")

        if self.source_type.requires_auth() and not self.credentials:
            errors.append(f"Source type {self.source_type.value} requires credentials")

        if self.source_type in _URL_REQUIRED:
            url = self.url
            if not url:
                errors.append(f"Source type {self.source_type.value} requires a url")
            else:
                parsed = urlparse(url)
                if parsed.scheme not in ("http", "https") or not parsed.netloc:
                    errors.append(f"Invalid source url: {url}")

        return ConfigValidation(is_valid=not errors, errors=errors)

    def activate(self) -> "SourceConfiguration":
        return replace(self, is_active=True)

    def deactivate(self) -> "SourceConfiguration":
        return replace(self, is_active=False)

    def to_dict(self) -> dict[str, Any]:
        # Credentials are never serialized alongside job state.
        return {
            "source_id": self.source_id,
            "source_type": self.source_type.value,
            "name": self.name,
            "config": dict(self.config),
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, credentials: Optional[dict[str, Any]] = None) -> "SourceConfiguration":
        return cls(
            source_id=str(data["source_id"]),
            source_type=SourceType.parse(data["source_type"]),
            name=str(data.get("name", "")),
            config=dict(data.get("config") or {}),
            credentials=credentials,
            is_active=bool(data.get("is_active", True)),
        )
