"""Content quality gate.

Runs after normalization, before dedup. A rejected item is not an exception:
the caller gets a ``ValidationResult`` with every failing rule's message.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from ingestion.core.value_objects import ContentMetadata


MIN_CONTENT_LENGTH = 10
MAX_CONTENT_LENGTH = 1_000_000
MAX_CONTROL_CHAR_RATIO = 0.1

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_REPLACEMENT_CHAR = "�"


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


class ContentValidationService:
    """Quality rules for normalized content."""

    def __init__(
        self,
        *,
        min_length: int = MIN_CONTENT_LENGTH,
        max_length: int = MAX_CONTENT_LENGTH,
        max_control_ratio: float = MAX_CONTROL_CHAR_RATIO,
    ):
        self.min_length = min_length
        self.max_length = max_length
        self.max_control_ratio = max_control_ratio

    def meets_minimum_length(self, content: str) -> bool:
        return len((content or "").strip()) >= self.min_length

    def has_valid_encoding(self, content: str) -> bool:
        content = content or ""
        if _REPLACEMENT_CHAR in content:
            return False
        if not content:
            return True
        control = len(_CONTROL_CHARS.findall(content))
        return control / len(content) <= self.max_control_ratio

    def has_required_metadata(self, metadata: Optional[ContentMetadata]) -> bool:
        return metadata is not None and metadata.has_required_fields()

    def validate_quality(self, content: str, metadata: Optional[ContentMetadata]) -> ValidationResult:
        errors: list[str] = []
        content = content or ""

        if not content.strip():
            errors.append("Content cannot be empty or only whitespace")
        elif not self.meets_minimum_length(content):
            errors.append(f"Content is too short (minimum {self.min_length} characters)")

        if len(content) > self.max_length:
            errors.append(f"Content exceeds maximum length ({self.max_length} characters)")

        if not self.has_valid_encoding(content):
            errors.append("Content contains invalid encoding or characters")

        if not self.has_required_metadata(metadata):
            errors.append("Metadata is missing required fields (title or source_url)")

        return ValidationResult(is_valid=not errors, errors=errors)
