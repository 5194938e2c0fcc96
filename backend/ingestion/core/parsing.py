from __future__ import annotations

"""Markup -> markdown conversion with strategy dispatch by source type.

Strategies are injected; this module only decides which one runs, times it,
merges metadata and applies the JS-rendering fallback for web pages.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional, Protocol

from ingestion.core.errors import UnsupportedSourceType
from ingestion.core.js_rendering import JsRenderingDetector
from ingestion.core.value_objects import ContentMetadata, SourceType

logger = logging.getLogger("coinlens.ingestion.parsing")

FALLBACK_MIN_MARKDOWN = 200

WARN_EMPTY_MARKDOWN = "Parsing produced empty markdown content"
WARN_NO_TITLE = "Could not extract title from content"


@dataclass(frozen=True, slots=True)
class ParsingOptions:
    preserve_links: bool = True
    preserve_images: bool = False
    code_block_style: str = "fenced"
    heading_style: str = "atx"
    remove_selectors: tuple[str, ...] = ("script", "style", "nav", "footer", "aside", "noscript")
    url: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ExtractedMetadata:
    title: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[datetime] = None
    description: Optional[str] = None
    language: Optional[str] = None
    source_url: Optional[str] = None

    def to_content_metadata(self) -> ContentMetadata:
        return ContentMetadata.create(
            title=self.title,
            author=self.author,
            published_at=self.published_at,
            language=self.language,
            source_url=self.source_url,
        )


@dataclass(frozen=True, slots=True)
class ParsingInfo:
    parser: str
    original_format: str
    conversion_time_ms: float
    warnings: list[str] = field(default_factory=list)
    fallback_used: bool = False


@dataclass(frozen=True, slots=True)
class ParsedContent:
    markdown: str
    extracted_metadata: ExtractedMetadata
    parsing_info: ParsingInfo


class ParsingStrategy(Protocol):
    name: str

    async def parse(self, raw_content: str, options: ParsingOptions) -> str:
        ...

    async def extract_metadata(self, raw_content: str) -> ExtractedMetadata:
        ...


class ContentParser:
    """
    Picks a strategy per source type:
    - WEB, SOCIAL_MEDIA, WIKIPEDIA -> html strategy
    - RSS -> rss strategy
    - PDF, OCR -> UnsupportedSourceType
    """

    def __init__(
        self,
        html_strategy: ParsingStrategy,
        rss_strategy: ParsingStrategy,
        *,
        rich_strategy: Optional[ParsingStrategy] = None,
        js_detector: Optional[JsRenderingDetector] = None,
        options: Optional[ParsingOptions] = None,
    ):
        self._strategies: dict[SourceType, ParsingStrategy] = {
            SourceType.WEB: html_strategy,
            SourceType.SOCIAL_MEDIA: html_strategy,
            SourceType.WIKIPEDIA: html_strategy,
            SourceType.RSS: rss_strategy,
        }
        self._rich_strategy = rich_strategy
        self._js_detector = js_detector
        self._options = options or ParsingOptions()

    def select_strategy(self, source_type: SourceType) -> ParsingStrategy:
        strategy = self._strategies.get(source_type)
        if strategy is None:
            raise UnsupportedSourceType(source_type.value)
        return strategy

    def supports(self, source_type: SourceType) -> bool:
        return source_type in self._strategies

    async def parse(
        self,
        raw_content: str,
        source_type: SourceType,
        metadata: Optional[ContentMetadata] = None,
    ) -> ParsedContent:
        strategy = self.select_strategy(source_type)
        url = self._options.url or (metadata.source_url if metadata else None)
        options = replace(self._options, url=url)

        started = time.perf_counter()
        markdown, extracted = await asyncio.gather(
            strategy.parse(raw_content, options),
            strategy.extract_metadata(raw_content),
        )
        parser_name = strategy.name
        fallback_used = False

        if self._should_try_fallback(source_type, markdown, raw_content, url):
            rendered = await self._try_fallback(raw_content, options)
            if rendered:
                markdown = rendered
                parser_name = self._rich_strategy.name  # type: ignore[union-attr]
                fallback_used = True

        elapsed_ms = max(0.0, (time.perf_counter() - started) * 1000)

        merged = self._merge_metadata(extracted, metadata)
        warnings: list[str] = []
        if not markdown.strip():
            warnings.append(WARN_EMPTY_MARKDOWN)
        if not merged.title:
            warnings.append(WARN_NO_TITLE)

        return ParsedContent(
            markdown=markdown,
            extracted_metadata=merged,
            parsing_info=ParsingInfo(
                parser=parser_name,
                original_format=source_type.original_format(),
                conversion_time_ms=elapsed_ms,
                warnings=warnings,
                fallback_used=fallback_used,
            ),
        )

    def _should_try_fallback(self, source_type: SourceType, markdown: str, raw: str, url: Optional[str]) -> bool:
        if source_type != SourceType.WEB:
            return False
        if self._rich_strategy is None or self._js_detector is None or not url:
            return False
        if len(markdown) >= FALLBACK_MIN_MARKDOWN:
            return False
        return self._js_detector.needs_js_rendering(raw, url)

    async def _try_fallback(self, raw: str, options: ParsingOptions) -> str:
        rich = self._rich_strategy
        if rich is None:
            return ""
        try:
            rendered = await rich.parse(raw, options)
        except Exception:  # noqa: BLE001
            logger.warning("Rich rendering fallback failed for %s; keeping primary markdown", options.url, exc_info=True)
            return ""
        return rendered if rendered and rendered.strip() else ""

    @staticmethod
    def _merge_metadata(extracted: ExtractedMetadata, provided: Optional[ContentMetadata]) -> ExtractedMetadata:
        if provided is None:
            return extracted
        return replace(
            extracted,
            title=extracted.title or provided.title,
            author=extracted.author or provided.author,
            published_at=extracted.published_at or provided.published_at,
        )
