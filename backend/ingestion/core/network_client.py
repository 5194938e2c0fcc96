"""
NetworkClient.

The single gateway adapters use for outbound HTTP. It does not retry and does
not swallow errors: retries and circuit breaking belong to the job runner, and
the raised httpx exception types drive ErrorRecord classification.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

logger = logging.getLogger("coinlens.ingestion.network")

DEFAULT_HEADERS: Dict[str, str] = {
    "User-Agent": "Mozilla/5.0 (compatible; CoinLensIngest/1.0; +https://coinlens.invalid/bot)",
    "Accept": "text/html,application/xhtml+xml,application/rss+xml,application/atom+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


class NetworkClient:
    def __init__(
        self,
        *,
        timeout: float = 20.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={**DEFAULT_HEADERS, **(headers or {})},
            transport=transport,
        )

    async def fetch_text(self, url: str, *, headers: Optional[Dict[str, str]] = None) -> str:
        """GET ``url`` and return the decoded body. Raises on transport or HTTP errors."""
        resp = await self._client.get(url, headers=headers)
        resp.raise_for_status()
        logger.debug(f"Fetched {url}: {resp.status_code} ({len(resp.content)} bytes)")
        return resp.text

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "NetworkClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
