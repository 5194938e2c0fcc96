from __future__ import annotations

"""Content normalization: whitespace/encoding cleanup, metadata extraction and
crypto asset detection.

Everything here is deterministic text processing. Regexes are compiled once at
import time; the service itself holds no state and is safe to share.
"""

import logging
import re
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse

from ingestion.core.errors import InvalidContentMetadata
from ingestion.core.time_common import UTC, utc_now
from ingestion.core.value_objects import AssetTag, ContentMetadata, SourceType

logger = logging.getLogger("coinlens.ingestion.normalization")


_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_MULTI_SPACE = re.compile(r" {3,}")
_MULTI_NEWLINE = re.compile(r"\n{3,}")

_HTML_COMMENT = re.compile(r"<!--[\s\S]*?-->")
_HTML_TAG = re.compile(r"<[^>]*>")
_HASHTAG = re.compile(r"#\s+(\w+)")
_MENTION = re.compile(r"@\s+(\w+)")
_SINGLE_QUOTES = re.compile(r"[`‘’‚‛´]")
_DOUBLE_QUOTES = re.compile(r"[“”„]")
_WIKI_LINK_LABELLED = re.compile(r"\[\[([^\]|]+)\|([^\]]+)\]\]")
_WIKI_LINK = re.compile(r"\[\[([^\]]+)\]\]")

_HEADING = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_FIRST_SENTENCE = re.compile(r"^([^.!?]+[.!?])")

_NAME = r"([A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)*?)"
_AUTHOR_PATTERNS = [
    re.compile(r"\bwritten\s+by\s+" + _NAME + r"[ \t]*(?:\n|$)", re.IGNORECASE | re.MULTILINE),
    re.compile(r"\bby\s+" + _NAME + r"[ \t]*(?:\n|$)", re.IGNORECASE | re.MULTILINE),
    re.compile(r"\bauthor:\s*" + _NAME + r"[ \t]*(?:\n|$)", re.IGNORECASE | re.MULTILINE),
]

_ISO_DATE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
_LONG_DATE = re.compile(
    r"\b(January|February|March|April|May|June|July|August|September|October|November|December)"
    r"\s+(\d{1,2}),\s+(\d{4})\b",
    re.IGNORECASE,
)
_SHORT_DATE = re.compile(
    r"\b(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\s+(\d{1,2}),\s+(\d{4})\b",
    re.IGNORECASE,
)

_ENGLISH_WORDS = re.compile(r"\b(the|and|is|in|to|of|a|for|on|with)\b", re.IGNORECASE)
_ENGLISH_MIN_MATCHES = 6

_URL = re.compile(r"https?://[^\s<>\"]+", re.IGNORECASE)

MAX_TITLE_LENGTH = 200

# symbol -> alternation of names it goes by (symbol included)
CRYPTO_ASSETS: dict[str, str] = {
    "BTC": r"bitcoin|btc",
    "ETH": r"ethereum|eth",
    "USDT": r"tether|usdt",
    "BNB": r"binance\s*coin|bnb",
    "SOL": r"solana|sol",
    "XRP": r"ripple|xrp",
    "ADA": r"cardano|ada",
    "DOGE": r"dogecoin|doge",
    "DOT": r"polkadot|dot",
    "MATIC": r"polygon|matic",
    "AVAX": r"avalanche|avax",
    "LINK": r"chainlink|link",
    "UNI": r"uniswap|uni",
    "ATOM": r"cosmos|atom",
    "LTC": r"litecoin|ltc",
}


def _compile_asset_patterns() -> dict[str, tuple[re.Pattern[str], re.Pattern[str]]]:
    return {
        symbol: (
            re.compile(rf"\b(?:{names})\b", re.IGNORECASE),
            re.compile(rf"\b{symbol}\b", re.IGNORECASE),
        )
        for symbol, names in CRYPTO_ASSETS.items()
    }


_ASSET_PATTERNS = _compile_asset_patterns()


def _mention_confidence(count: int) -> float:
    if count >= 3:
        return 0.9
    if count == 2:
        return 0.75
    return 0.6


class ContentNormalizationService:
    def normalize(self, raw_content: str, source_type: SourceType) -> str:
        text = raw_content or ""
        text = _CONTROL_CHARS.sub("", text)
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        text = _MULTI_SPACE.sub("  ", text)
        text = _MULTI_NEWLINE.sub("\n\n", text)
        text = text.strip()
        return self._apply_source_rules(text, source_type).strip()

    def _apply_source_rules(self, text: str, source_type: SourceType) -> str:
        if source_type == SourceType.WEB:
            return _HTML_COMMENT.sub("", text)
        if source_type == SourceType.RSS:
            return _HTML_TAG.sub("", text)
        if source_type == SourceType.SOCIAL_MEDIA:
            text = _HASHTAG.sub(r"#\1", text)
            return _MENTION.sub(r"@\1", text)
        if source_type in (SourceType.PDF, SourceType.OCR):
            # Common OCR misreads.
            text = text.replace("|", "I")
            text = _SINGLE_QUOTES.sub("'", text)
            return _DOUBLE_QUOTES.sub('"', text)
        if source_type == SourceType.WIKIPEDIA:
            text = _WIKI_LINK_LABELLED.sub(r"\2", text)
            return _WIKI_LINK.sub(r"\1", text)
        return text

    # -- metadata ------------------------------------------------------------

    def extract_metadata(self, raw_content: str, source_type: SourceType) -> ContentMetadata:
        content = raw_content or ""
        fields = {
            "title": self.extract_title(content, source_type),
            "author": self.extract_author(content),
            "published_at": self.extract_published_date(content),
            "language": self.detect_language(content),
            "source_url": self.extract_source_url(content),
        }
        try:
            return ContentMetadata.create(**fields)
        except InvalidContentMetadata:
            # Extraction is best-effort; drop whatever the value type rejects.
            logger.debug("Discarding unusable extracted metadata", exc_info=True)
            return ContentMetadata.create(title=fields["title"], author=fields["author"])

    def extract_title(self, content: str, source_type: SourceType) -> Optional[str]:
        for line in content.split("\n"):
            line = line.strip()
            if line:
                if len(line) <= MAX_TITLE_LENGTH:
                    return line.lstrip("#").strip() or line
                break

        heading = _HEADING.search(content)
        if heading:
            return heading.group(1).strip()

        if source_type == SourceType.SOCIAL_MEDIA:
            sentence = _FIRST_SENTENCE.match(content.strip())
            if sentence:
                return sentence.group(1).strip()

        return None

    def extract_author(self, content: str) -> Optional[str]:
        for pattern in _AUTHOR_PATTERNS:
            m = pattern.search(content)
            if m:
                return m.group(1).strip()
        return None

    def extract_published_date(self, content: str) -> Optional[datetime]:
        now = utc_now()
        candidates: list[datetime] = []

        m = _ISO_DATE.search(content)
        if m:
            try:
                candidates.append(datetime.strptime(m.group(1), "%Y-%m-%d"))
            except ValueError:
                pass

        for pattern, fmt in ((_LONG_DATE, "%B %d %Y"), (_SHORT_DATE, "%b %d %Y")):
            m = pattern.search(content)
            if m:
                try:
                    candidates.append(datetime.strptime(" ".join(m.groups()), fmt))
                except ValueError:
                    pass

        for dt in candidates:
            dt = dt.replace(tzinfo=UTC)
            if dt <= now:
                return dt
        return None

    def detect_language(self, content: str) -> Optional[str]:
        if len(_ENGLISH_WORDS.findall(content)) >= _ENGLISH_MIN_MATCHES:
            return "en"
        return None

    def extract_source_url(self, content: str) -> Optional[str]:
        m = _URL.search(content)
        if not m:
            return None
        url = m.group(0)
        parsed = urlparse(url)
        if not parsed.netloc:
            return None
        return url

    # -- assets --------------------------------------------------------------

    def detect_assets(self, content: str) -> set[AssetTag]:
        found: dict[str, float] = {}
        for symbol, (names, ticker) in _ASSET_PATTERNS.items():
            count = len(names.findall(content))
            if count == 0:
                continue
            confidence = _mention_confidence(count)
            if ticker.search(content):
                confidence = min(confidence + 0.1, 1.0)
            found[symbol] = max(found.get(symbol, 0.0), confidence)
        return {AssetTag.create(symbol, confidence) for symbol, confidence in found.items()}
