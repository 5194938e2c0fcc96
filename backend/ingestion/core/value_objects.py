from __future__ import annotations

"""Immutable value types for the content domain.

Every type validates itself at construction time and raises a subclass of
``InvalidValueError``. Once built, an instance is known-good and can be shared
freely between pipeline stages and threads.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlparse

from ingestion.core.errors import (
    InvalidAssetTag,
    InvalidContentMetadata,
    InvalidHashFormat,
    InvalidSourceType,
)
from ingestion.core.time_common import to_utc, utc_now


class SourceType(str, Enum):
    """Kinds of upstream source the pipeline can collect from."""

    WEB = "web"
    RSS = "rss"
    SOCIAL_MEDIA = "social_media"
    PDF = "pdf"
    OCR = "ocr"
    WIKIPEDIA = "wikipedia"

    @classmethod
    def parse(cls, value: "str | SourceType") -> "SourceType":
        if isinstance(value, SourceType):
            return value
        key = str(value or "").strip().lower()
        for member in cls:
            if member.value == key:
                return member
        raise InvalidSourceType(f"Invalid source type: {value!r}")

    def requires_auth(self) -> bool:
        return self in (SourceType.SOCIAL_MEDIA, SourceType.WIKIPEDIA)

    def original_format(self) -> str:
        return _ORIGINAL_FORMATS[self]

    def is_markup(self) -> bool:
        """True for sources whose raw payload is HTML/XML rather than plain text."""
        return self in (SourceType.WEB, SourceType.RSS, SourceType.SOCIAL_MEDIA, SourceType.WIKIPEDIA)


_ORIGINAL_FORMATS = {
    SourceType.WEB: "text/html",
    SourceType.SOCIAL_MEDIA: "text/html",
    SourceType.WIKIPEDIA: "text/html",
    SourceType.RSS: "application/rss+xml",
    SourceType.PDF: "application/pdf",
    SourceType.OCR: "image/*",
}


_HEX64 = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True, slots=True)
class ContentHash:
    """SHA-256 digest of normalized content, as 64 lowercase hex characters."""

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str) or not _HEX64.match(self.value):
            raise InvalidHashFormat(
                f"Invalid content hash (expected 64 lowercase hex chars): {self.value!r}"
            )

    @classmethod
    def create(cls, value: str) -> "ContentHash":
        return cls(value)

    def __str__(self) -> str:
        return self.value


_SYMBOL = re.compile(r"^[A-Z]{1,10}$")
_CONFIDENCE_EPSILON = 0.001


@dataclass(frozen=True, slots=True, eq=False)
class AssetTag:
    """A crypto asset mentioned in a piece of content, with a detection confidence."""

    symbol: str
    confidence: float

    def __post_init__(self) -> None:
        symbol = str(self.symbol or "").strip().upper()
        if not _SYMBOL.match(symbol):
            raise InvalidAssetTag(
                f"Invalid asset symbol {self.symbol!r}: expected 1-10 letters A-Z"
            )
        try:
            confidence = float(self.confidence)
        except (TypeError, ValueError) as exc:
            raise InvalidAssetTag(f"Invalid confidence {self.confidence!r}") from exc
        if not 0.0 <= confidence <= 1.0:
            raise InvalidAssetTag(f"Confidence must be within [0, 1], got {confidence}")
        object.__setattr__(self, "symbol", symbol)
        object.__setattr__(self, "confidence", confidence)

    @classmethod
    def create(cls, symbol: str, confidence: float) -> "AssetTag":
        return cls(symbol, confidence)

    def is_high_confidence(self) -> bool:
        return self.confidence > 0.8

    def is_medium_confidence(self) -> bool:
        return 0.5 <= self.confidence <= 0.8

    def is_low_confidence(self) -> bool:
        return self.confidence < 0.5

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AssetTag):
            return NotImplemented
        return self.symbol == other.symbol and abs(self.confidence - other.confidence) < _CONFIDENCE_EPSILON

    def __hash__(self) -> int:
        # Symbol only: confidences equal within epsilon must hash alike.
        return hash(self.symbol)

    def __str__(self) -> str:
        return f"{self.symbol} ({self.confidence * 100:.1f}%)"

    def to_dict(self) -> dict[str, Any]:
        return {"symbol": self.symbol, "confidence": self.confidence}


_LANGUAGE = re.compile(r"^[a-z]{2}(-[A-Z]{2})?$")


def _is_absolute_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc)


@dataclass(frozen=True, slots=True)
class ContentMetadata:
    """Descriptive fields about a content item. All fields are optional."""

    title: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[datetime] = None
    language: Optional[str] = None
    source_url: Optional[str] = None

    def __post_init__(self) -> None:
        errors: list[str] = []

        if self.source_url is not None and not _is_absolute_url(self.source_url):
            errors.append(f"Invalid source URL: {self.source_url}")

        if self.language is not None and not _LANGUAGE.match(self.language):
            errors.append(f"Invalid language code: {self.language}")

        if self.published_at is not None:
            published = to_utc(self.published_at)
            if published > utc_now():
                errors.append("Published date cannot be in the future")
            object.__setattr__(self, "published_at", published)

        if errors:
            raise InvalidContentMetadata("; ".join(errors))

    @classmethod
    def create(
        cls,
        *,
        title: Optional[str] = None,
        author: Optional[str] = None,
        published_at: Optional[datetime] = None,
        language: Optional[str] = None,
        source_url: Optional[str] = None,
    ) -> "ContentMetadata":
        return cls(
            title=title or None,
            author=author or None,
            published_at=published_at,
            language=language or None,
            source_url=source_url or None,
        )

    @classmethod
    def empty(cls) -> "ContentMetadata":
        return cls()

    def has_required_fields(self) -> bool:
        return bool(self.title) or bool(self.source_url)

    def is_complete(self) -> bool:
        return all(
            (
                self.title,
                self.author,
                self.published_at is not None,
                self.language,
                self.source_url,
            )
        )

    def merged_with(self, fallback: "ContentMetadata") -> "ContentMetadata":
        """Return a copy where fields missing here are taken from ``fallback``."""
        return ContentMetadata(
            title=self.title or fallback.title,
            author=self.author or fallback.author,
            published_at=self.published_at or fallback.published_at,
            language=self.language or fallback.language,
            source_url=self.source_url or fallback.source_url,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "author": self.author,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "language": self.language,
            "source_url": self.source_url,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "ContentMetadata":
        if not data:
            return cls.empty()
        published = data.get("published_at")
        if isinstance(published, str):
            published = datetime.fromisoformat(published)
        return cls.create(
            title=data.get("title"),
            author=data.get("author"),
            published_at=published,
            language=data.get("language"),
            source_url=data.get("source_url"),
        )
