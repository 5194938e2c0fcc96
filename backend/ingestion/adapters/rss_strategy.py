from __future__ import annotations

"""RSS/Atom parsing strategy.

Accepts either a whole feed document or a single entry's HTML body (which is
what the feed adapter emits per item). Entry bodies go through the HTML
strategy so both paths produce the same markdown dialect.
"""

import io
from datetime import datetime
from typing import Any, Optional

import feedparser

from ingestion.adapters.html_strategy import extract_html_metadata, html_to_markdown
from ingestion.core.parsing import ExtractedMetadata, ParsingOptions
from ingestion.core.time_common import UTC, to_utc, utc_now


def _to_utc_struct(st: Any) -> Optional[datetime]:
    try:
        return to_utc(datetime(*st[:6], tzinfo=UTC))
    except (TypeError, ValueError):
        return None


def entry_time(entry: Any) -> Optional[datetime]:
    # feedparser provides .published_parsed / .updated_parsed (time.struct_time)
    for key in ("published_parsed", "updated_parsed"):
        st = entry.get(key) if hasattr(entry, "get") else getattr(entry, key, None)
        if st:
            dt = _to_utc_struct(st)
            if dt is not None and dt <= utc_now():
                return dt
    return None


def entry_body(entry: Any) -> str:
    """Richest HTML body the entry carries: content:encoded, then summary."""
    contents = entry.get("content") or []
    for c in contents:
        value = c.get("value") if hasattr(c, "get") else None
        if value:
            return str(value)
    return str(entry.get("summary") or entry.get("description") or "")


def parse_feed(raw: str) -> Any:
    # A stream keeps feedparser from treating the text as a URL or file path.
    return feedparser.parse(io.BytesIO((raw or "").encode("utf-8")))


def _is_feed(parsed: Any) -> bool:
    return bool(parsed.get("version")) and bool(parsed.get("entries") or parsed.get("feed"))


class RssParsingStrategy:
    name = "RssParsingStrategy"

    async def parse(self, raw_content: str, options: ParsingOptions) -> str:
        parsed = parse_feed(raw_content)
        if not _is_feed(parsed):
            return html_to_markdown(raw_content, options)

        blocks: list[str] = []
        for entry in parsed.entries or []:
            parts: list[str] = []
            title = (entry.get("title") or "").strip()
            if title:
                parts.append(f"## {title}")
            body = html_to_markdown(entry_body(entry), options)
            if body:
                parts.append(body)
            link = entry.get("link")
            if link and options.preserve_links:
                parts.append(f"[{link}]({link})")
            if parts:
                blocks.append("\n\n".join(parts))
        return "\n\n".join(blocks).strip()

    async def extract_metadata(self, raw_content: str) -> ExtractedMetadata:
        parsed = parse_feed(raw_content)
        if not _is_feed(parsed):
            return extract_html_metadata(raw_content)

        feed = parsed.get("feed", {})
        first = parsed.entries[0] if parsed.entries else {}
        link = feed.get("link") or (first.get("link") if first else None)
        language = (feed.get("language") or "").strip() or None
        if language and "-" in language:
            lang, region = language.split("-", 1)
            language = f"{lang.lower()}-{region.upper()}"
        elif language:
            language = language.lower()

        return ExtractedMetadata(
            title=(feed.get("title") or "").strip() or None,
            author=(feed.get("author") or (first.get("author") if first else None)) or None,
            published_at=entry_time(feed) or (entry_time(first) if first else None),
            description=(feed.get("subtitle") or feed.get("description") or "").strip() or None,
            language=language,
            source_url=link if link and str(link).startswith(("http://", "https://")) else None,
        )
