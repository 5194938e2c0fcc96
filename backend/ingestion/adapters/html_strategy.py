"""
HTML parsing strategy.

Converts a web page (or an HTML fragment) to markdown:
- Drops non-content elements (scripts, styles, nav chrome, hidden nodes)
- Narrows to the main content node when the page has one
- Converts with markdownify using atx headings and "-" bullets

Metadata comes from the document head (OpenGraph, meta tags, canonical link).
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Optional

from bs4 import BeautifulSoup, Comment
from markdownify import markdownify as md
from readability import Document

from ingestion.core.parsing import ExtractedMetadata, ParsingOptions
from ingestion.core.time_common import to_utc, utc_now

logger = logging.getLogger("coinlens.ingestion.html")

# Pages whose readable body is shorter than this are converted whole.
MIN_READABLE_TEXT = 200

_HIDDEN_STYLE = re.compile(r"(display:\s*none|visibility:\s*hidden)", re.I)
_LANG = re.compile(r"^([a-zA-Z]{2})(?:[-_]([a-zA-Z]{2}))?$")


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def clean_html(html: str, remove_selectors: tuple[str, ...] = ()) -> BeautifulSoup:
    soup = _soup(html)

    for element in soup.find_all(["script", "style", "noscript", "iframe", "svg", "template"]):
        element.decompose()

    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    for element in soup.find_all(attrs={"hidden": True}):
        element.decompose()
    for element in soup.find_all(attrs={"style": _HIDDEN_STYLE}):
        element.decompose()

    for selector in remove_selectors:
        for element in soup.select(selector):
            element.decompose()

    return soup


def _main_content_html(soup: BeautifulSoup) -> str:
    main = soup.find("article") or soup.find("main")
    if main is not None:
        return str(main)

    body = soup.body or soup
    full = str(body)
    try:
        readable = Document(str(soup)).summary(html_partial=True)
    except Exception:  # noqa: BLE001
        logger.debug("readability failed; converting whole body", exc_info=True)
        return full
    if len(_soup(readable).get_text(" ", strip=True)) >= MIN_READABLE_TEXT:
        return readable
    return full


def html_to_markdown(html: str, options: Optional[ParsingOptions] = None) -> str:
    options = options or ParsingOptions()
    soup = clean_html(html, options.remove_selectors)
    content = _main_content_html(soup)

    strip: list[str] = []
    if not options.preserve_links:
        strip.append("a")
    if not options.preserve_images:
        strip.append("img")

    markdown = md(
        content,
        heading_style=options.heading_style,
        bullets="-",
        strip=strip or None,
        escape_underscores=False,
        escape_asterisks=False,
        escape_misc=False,
    )

    markdown = re.sub(r"\n{3,}", "\n\n", markdown)
    lines = [line.rstrip() for line in markdown.split("\n")]
    return "\n".join(lines).strip()


def _meta(soup: BeautifulSoup, *names: str) -> Optional[str]:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
        if tag and tag.get("content"):
            value = str(tag["content"]).strip()
            if value:
                return value
    return None


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = to_utc(datetime.fromisoformat(text))
    except ValueError:
        return None
    return dt if dt <= utc_now() else None


def _normalize_language(value: Optional[str]) -> Optional[str]:
    m = _LANG.match((value or "").strip())
    if not m:
        return None
    lang = m.group(1).lower()
    region = m.group(2)
    return f"{lang}-{region.upper()}" if region else lang


def extract_html_metadata(html: str) -> ExtractedMetadata:
    soup = _soup(html)

    title = _meta(soup, "og:title", "twitter:title")
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip() or None
    if not title:
        h1 = soup.find("h1")
        if h1:
            title = h1.get_text(strip=True) or None

    published = _meta(soup, "article:published_time", "date", "pubdate")
    if not published:
        time_tag = soup.find("time", attrs={"datetime": True})
        if time_tag:
            published = str(time_tag["datetime"])

    source_url = None
    canonical = soup.find("link", attrs={"rel": "canonical"})
    if canonical and canonical.get("href", "").startswith(("http://", "https://")):
        source_url = canonical["href"]
    if not source_url:
        og_url = _meta(soup, "og:url")
        if og_url and og_url.startswith(("http://", "https://")):
            source_url = og_url

    html_tag = soup.find("html")
    language = _normalize_language(html_tag.get("lang") if html_tag else None)

    return ExtractedMetadata(
        title=title,
        author=_meta(soup, "author", "article:author"),
        published_at=_parse_datetime(published),
        description=_meta(soup, "og:description", "description"),
        language=language,
        source_url=source_url,
    )


class HtmlParsingStrategy:
    name = "HtmlParsingStrategy"

    async def parse(self, raw_content: str, options: ParsingOptions) -> str:
        return html_to_markdown(raw_content, options)

    async def extract_metadata(self, raw_content: str) -> ExtractedMetadata:
        return extract_html_metadata(raw_content)
