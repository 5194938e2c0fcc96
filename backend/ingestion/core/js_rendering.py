from __future__ import annotations

"""Heuristic: does this page need a JavaScript-capable renderer?

Used only to decide whether a short WEB parse deserves a second attempt through
the rich-rendering strategy. Pure function of (html, url).
"""

import re
from typing import Optional
from urllib.parse import urlparse


JS_HEAVY_DOMAINS = (
    "tradingview.com",
    "dexscreener.com",
    "coingecko.com",
    "coinmarketcap.com",
)

SPA_MARKERS = (
    "__NEXT_DATA__",
    "data-reactroot",
    "ng-app",
    "data-v-",
    "__NUXT__",
    'id="root"',
    'id="app"',
)

MIN_VISIBLE_TEXT = 500

_SCRIPT_STYLE = re.compile(r"<(script|style|noscript)\b[^>]*>[\s\S]*?</\1>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")
_WS = re.compile(r"\s+")


def _host(url: Optional[str]) -> str:
    if not url:
        return ""
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def visible_text(html: str) -> str:
    text = _SCRIPT_STYLE.sub(" ", html or "")
    text = _TAG.sub(" ", text)
    return _WS.sub(" ", text).strip()


class JsRenderingDetector:
    def __init__(self, domains: tuple[str, ...] = JS_HEAVY_DOMAINS, markers: tuple[str, ...] = SPA_MARKERS):
        self._domains = tuple(d.lower() for d in domains)
        self._markers = markers

    def is_js_heavy_domain(self, url: Optional[str]) -> bool:
        host = _host(url)
        return any(host == d or host.endswith("." + d) for d in self._domains)

    def has_spa_marker(self, html: str) -> bool:
        return any(m in (html or "") for m in self._markers)

    def needs_js_rendering(self, html: str, url: Optional[str] = None) -> bool:
        if self.is_js_heavy_domain(url):
            return True
        if not self.has_spa_marker(html):
            return False
        return len(visible_text(html)) < MIN_VISIBLE_TEXT
