from __future__ import annotations

"""RSS adapter.

Scope:
- Fetch an RSS/Atom feed through the NetworkClient.
- Emit one ContentCollected per entry, carrying the entry's HTML body and the
  feed-level fields (title, link, author, time) as metadata.

Non-goals (explicit):
- No retries here; the job runner owns retry and circuit breaking.
- No parsing to markdown; that is the pipeline's job.
"""

import logging
import re
from typing import Any, Optional

from ingestion.adapters.rss_strategy import entry_body, entry_time, parse_feed
from ingestion.core.adapter import BaseAdapter
from ingestion.core.errors import FetchError, InvalidContentMetadata
from ingestion.core.events import ContentCollected
from ingestion.core.network_client import NetworkClient
from ingestion.core.source_config import SourceConfiguration
from ingestion.core.time_common import utc_now
from ingestion.core.value_objects import ContentMetadata, SourceType

logger = logging.getLogger("coinlens.ingestion.rss")


def _strip_html(text: str) -> str:
    # Titles in feeds often carry inline markup.
    t = re.sub(r"<[^>]+>", " ", text or "")
    t = re.sub(r"\s+", " ", t).strip()
    return t


def _entry_metadata(entry: Any) -> ContentMetadata:
    title = _strip_html(str(entry.get("title") or "")) or None
    link = str(entry.get("link") or "").strip() or None
    author = str(entry.get("author") or "").strip() or None
    try:
        return ContentMetadata.create(
            title=title,
            author=author,
            published_at=entry_time(entry),
            source_url=link,
        )
    except InvalidContentMetadata:
        return ContentMetadata.create(title=title, author=author)


class RssAdapter(BaseAdapter):
    source_type = SourceType.RSS

    def __init__(self, client: NetworkClient, *, max_items: Optional[int] = None):
        self._client = client
        self._max_items = max_items

    async def collect(self, source: SourceConfiguration, job_id: str) -> list[ContentCollected]:
        if not source.url:
            raise FetchError(f"Source {source.source_id} has no url")

        body = await self._client.fetch_text(source.url)
        feed = parse_feed(body)
        if feed.get("bozo") and not feed.get("entries"):
            raise FetchError(f"Unparseable feed for {source.source_id}: {feed.get('bozo_exception')}")

        limit = self._max_items or source.config.get("max_items")
        entries = list(feed.entries or [])
        if limit:
            entries = entries[: int(limit)]

        collected_at = utc_now()
        items: list[ContentCollected] = []
        for entry in entries:
            raw = entry_body(entry) or str(entry.get("title") or "")
            if not raw.strip():
                continue
            items.append(
                ContentCollected(
                    source_id=source.source_id,
                    job_id=job_id,
                    raw_content=raw,
                    source_type=SourceType.RSS,
                    collected_at=collected_at,
                    metadata=_entry_metadata(entry),
                )
            )

        logger.info(f"Collected {len(items)} entries from {source.source_id}")
        return items
