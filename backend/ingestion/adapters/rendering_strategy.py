"""
Rich rendering strategy.

Asks an external headless-browser scraping service to render a URL and return
markdown. Only used as a fallback for JS-heavy web pages, so every failure
(HTTP error, open circuit, bad payload) degrades to an empty string.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ingestion.adapters.html_strategy import extract_html_metadata
from ingestion.core.circuit_breaker import CircuitBreaker
from ingestion.core.parsing import ExtractedMetadata, ParsingOptions

logger = logging.getLogger("coinlens.ingestion.rendering")

SCRAPE_PATH = "/v1/scrape"


class RichRenderingStrategy:
    name = "RichRenderingStrategy"

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client = client
        self._breaker = breaker

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _scrape(self, url: str, options: ParsingOptions) -> str:
        payload = {
            "url": url,
            "formats": ["markdown"],
            "onlyMainContent": True,
            "excludeTags": list(options.remove_selectors),
        }
        if self._client is not None:
            resp = await self._client.post(
                self.base_url + SCRAPE_PATH, json=payload, headers=self._headers(), timeout=self._timeout
            )
        else:
            async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                resp = await client.post(self.base_url + SCRAPE_PATH, json=payload, headers=self._headers())
        resp.raise_for_status()
        body = resp.json()
        if not body.get("success"):
            raise ValueError(f"Rendering service reported failure: {body.get('error')}")
        return str((body.get("data") or {}).get("markdown") or "")

    async def parse(self, raw_content: str, options: ParsingOptions) -> str:
        if not options.url:
            return ""
        try:
            if self._breaker is not None:
                return await self._breaker.execute(lambda: self._scrape(options.url, options))
            return await self._scrape(options.url, options)
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Rendering failed for {options.url}: {type(e).__name__}: {e}")
            return ""

    async def extract_metadata(self, raw_content: str) -> ExtractedMetadata:
        return extract_html_metadata(raw_content)
