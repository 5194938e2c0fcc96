from __future__ import annotations

"""Single-page web adapter (WEB and WIKIPEDIA sources).

Fetches the configured URL and emits the raw HTML as one item. Conversion,
including the JS-rendering fallback, happens in the pipeline's parser.
"""

import logging

from ingestion.core.adapter import BaseAdapter
from ingestion.core.errors import FetchError
from ingestion.core.events import ContentCollected
from ingestion.core.network_client import NetworkClient
from ingestion.core.source_config import SourceConfiguration
from ingestion.core.time_common import utc_now
from ingestion.core.value_objects import ContentMetadata, SourceType

logger = logging.getLogger("coinlens.ingestion.web")


class WebPageAdapter(BaseAdapter):
    def __init__(self, client: NetworkClient, source_type: SourceType = SourceType.WEB):
        self._client = client
        self.source_type = source_type

    async def collect(self, source: SourceConfiguration, job_id: str) -> list[ContentCollected]:
        url = source.url
        if not url:
            raise FetchError(f"Source {source.source_id} has no url")

        headers = {}
        token = (source.credentials or {}).get("token")
        if token:
            headers["Authorization"] = f"Bearer {token}"

        html = await self._client.fetch_text(url, headers=headers or None)
        if not html.strip():
            logger.info(f"Empty page for {source.source_id}")
            return []

        return [
            ContentCollected(
                source_id=source.source_id,
                job_id=job_id,
                raw_content=html,
                source_type=self.source_type,
                collected_at=utc_now(),
                metadata=ContentMetadata.create(source_url=url),
            )
        ]
