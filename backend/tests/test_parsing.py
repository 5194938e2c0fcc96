from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from ingestion.adapters.html_strategy import HtmlParsingStrategy, clean_html, extract_html_metadata, html_to_markdown
from ingestion.adapters.rss_strategy import RssParsingStrategy
from ingestion.core.errors import UnsupportedSourceType
from ingestion.core.js_rendering import JsRenderingDetector
from ingestion.core.parsing import (
    WARN_EMPTY_MARKDOWN,
    WARN_NO_TITLE,
    ContentParser,
    ExtractedMetadata,
    ParsingOptions,
)
from ingestion.core.value_objects import ContentMetadata, SourceType


UTC = timezone.utc


class FakeStrategy:
    def __init__(self, name: str, markdown: str = "", metadata: ExtractedMetadata | None = None, fail: bool = False):
        self.name = name
        self.markdown = markdown
        self.metadata = metadata or ExtractedMetadata()
        self.fail = fail
        self.calls: list[ParsingOptions] = []

    async def parse(self, raw_content: str, options: ParsingOptions) -> str:
        self.calls.append(options)
        if self.fail:
            raise RuntimeError("renderer down")
        return self.markdown

    async def extract_metadata(self, raw_content: str) -> ExtractedMetadata:
        return self.metadata


SPA_SHELL = '<html><body><div id="root"></div><script>window.__NEXT_DATA__={}</script></body></html>'


def _parser(html: FakeStrategy, rss: FakeStrategy | None = None, rich: FakeStrategy | None = None) -> ContentParser:
    return ContentParser(
        html,
        rss or FakeStrategy("rss", "rss markdown"),
        rich_strategy=rich,
        js_detector=JsRenderingDetector(),
    )


def test_strategy_selection():
    html, rss = FakeStrategy("html"), FakeStrategy("rss")
    parser = _parser(html, rss)
    assert parser.select_strategy(SourceType.WEB) is html
    assert parser.select_strategy(SourceType.SOCIAL_MEDIA) is html
    assert parser.select_strategy(SourceType.WIKIPEDIA) is html
    assert parser.select_strategy(SourceType.RSS) is rss
    assert not parser.supports(SourceType.PDF)


@pytest.mark.parametrize("source_type", [SourceType.PDF, SourceType.OCR])
def test_unsupported_types(source_type):
    parser = _parser(FakeStrategy("html"))
    with pytest.raises(UnsupportedSourceType) as exc:
        asyncio.run(parser.parse("%PDF-1.7", source_type))
    assert str(exc.value) == f"No parsing strategy available for source type: {source_type.value}"


def test_parse_reports_info_and_merges_metadata():
    published = datetime(2024, 1, 1, tzinfo=UTC)
    html = FakeStrategy("HtmlParsingStrategy", "# Hello\n\nbody", ExtractedMetadata(title="From page"))
    provided = ContentMetadata.create(author="Jane Doe", published_at=published, source_url="https://example.com/a")

    parsed = asyncio.run(_parser(html).parse("<h1>Hello</h1>", SourceType.WEB, provided))

    assert parsed.markdown == "# Hello\n\nbody"
    assert parsed.extracted_metadata.title == "From page"
    assert parsed.extracted_metadata.author == "Jane Doe"
    assert parsed.extracted_metadata.published_at == published
    assert parsed.parsing_info.parser == "HtmlParsingStrategy"
    assert parsed.parsing_info.original_format == "text/html"
    assert parsed.parsing_info.conversion_time_ms >= 0
    assert parsed.parsing_info.warnings == []
    assert not parsed.parsing_info.fallback_used
    assert html.calls[0].url == "https://example.com/a"


def test_parse_warnings():
    parsed = asyncio.run(_parser(FakeStrategy("html", "")).parse("<div></div>", SourceType.WEB))
    assert parsed.parsing_info.warnings == [WARN_EMPTY_MARKDOWN, WARN_NO_TITLE]


def test_js_fallback_used_for_spa_shell():
    rich = FakeStrategy("RichRenderingStrategy", "# Rendered\n\n" + "text " * 50)
    parser = _parser(FakeStrategy("html", ""), rich=rich)
    meta = ContentMetadata.create(source_url="https://app.example.com/")

    parsed = asyncio.run(parser.parse(SPA_SHELL, SourceType.WEB, meta))

    assert parsed.parsing_info.fallback_used
    assert parsed.parsing_info.parser == "RichRenderingStrategy"
    assert parsed.markdown.startswith("# Rendered")


def test_js_fallback_failure_keeps_primary():
    rich = FakeStrategy("RichRenderingStrategy", fail=True)
    parser = _parser(FakeStrategy("html", "tiny"), rich=rich)
    meta = ContentMetadata.create(source_url="https://www.tradingview.com/chart/")

    parsed = asyncio.run(parser.parse(SPA_SHELL, SourceType.WEB, meta))

    assert len(rich.calls) == 1
    assert not parsed.parsing_info.fallback_used
    assert parsed.markdown == "tiny"


def test_js_fallback_not_used_for_rss_or_without_url():
    rich = FakeStrategy("RichRenderingStrategy", "rendered")
    parser = _parser(FakeStrategy("html", ""), FakeStrategy("rss", ""), rich=rich)
    asyncio.run(parser.parse(SPA_SHELL, SourceType.RSS, ContentMetadata.create(source_url="https://x.example")))
    asyncio.run(parser.parse(SPA_SHELL, SourceType.WEB))
    assert rich.calls == []


def test_spa_shell_without_rich_renderer_keeps_primary():
    parser = _parser(FakeStrategy("html", "tiny"))
    meta = ContentMetadata.create(source_url="https://app.example.com/")

    parsed = asyncio.run(parser.parse(SPA_SHELL, SourceType.WEB, meta))

    assert parsed.markdown == "tiny"
    assert not parsed.parsing_info.fallback_used
    assert parsed.parsing_info.parser == "html"
    assert asyncio.run(parser._try_fallback(SPA_SHELL, ParsingOptions(url="https://app.example.com/"))) == ""


def test_js_detector():
    d = JsRenderingDetector()
    assert d.is_js_heavy_domain("https://www.coingecko.com/en/coins/bitcoin")
    assert not d.is_js_heavy_domain("https://notcoingecko.com/")
    assert d.needs_js_rendering(SPA_SHELL, "https://example.com")
    long_page = '<div id="app">' + "<p>" + "readable text " * 60 + "</p></div>"
    assert not d.needs_js_rendering(long_page, "https://example.com")
    assert not d.needs_js_rendering("<p>plain</p>", None)


ARTICLE_PAGE = """
<html lang="en-us">
<head>
  <title>Fallback title</title>
  <meta property="og:title" content="ETF flows hit record">
  <meta name="author" content="Jane Doe">
  <meta property="article:published_time" content="2024-02-01T10:00:00Z">
  <link rel="canonical" href="https://news.example.com/etf-flows">
</head>
<body>
  <nav>Home | Markets</nav>
  <article>
    <h1>ETF flows hit record</h1>
    <p>Spot <b>bitcoin</b> funds saw inflows. <a href="https://example.com/data">Data</a></p>
    <!-- ad slot -->
    <div style="display: none">hidden promo</div>
    <ul><li>One</li><li>Two</li></ul>
    <img src="https://example.com/chart.png" alt="chart">
  </article>
  <footer>Copyright</footer>
  <script>track()</script>
</body>
</html>
"""


def test_clean_html_removes_noise():
    text = clean_html(ARTICLE_PAGE, ("nav", "footer")).get_text(" ", strip=True)
    assert "track()" not in text
    assert "hidden promo" not in text
    assert "ad slot" not in text
    assert "Markets" not in text
    assert "Copyright" not in text


def test_html_to_markdown_article():
    markdown = html_to_markdown(ARTICLE_PAGE)
    assert markdown.startswith("# ETF flows hit record")
    assert "**bitcoin**" in markdown
    assert "[Data](https://example.com/data)" in markdown
    assert "- One" in markdown
    assert "chart.png" not in markdown
    assert "Copyright" not in markdown


def test_html_to_markdown_without_links():
    markdown = html_to_markdown(ARTICLE_PAGE, ParsingOptions(preserve_links=False))
    assert "](https://example.com/data)" not in markdown
    assert "Data" in markdown


def test_extract_html_metadata():
    meta = extract_html_metadata(ARTICLE_PAGE)
    assert meta.title == "ETF flows hit record"
    assert meta.author == "Jane Doe"
    assert meta.published_at == datetime(2024, 2, 1, 10, 0, tzinfo=UTC)
    assert meta.source_url == "https://news.example.com/etf-flows"
    assert meta.language == "en-US"
    assert meta.to_content_metadata().is_complete()


def test_html_strategy_is_a_parsing_strategy():
    strategy = HtmlParsingStrategy()
    markdown = asyncio.run(strategy.parse("<h2>Sub</h2><p>Body</p>", ParsingOptions()))
    assert markdown == "## Sub\n\nBody"


FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
<channel>
  <title>Crypto Desk</title>
  <link>https://desk.example.com/</link>
  <language>en-us</language>
  <item>
    <title>Bitcoin climbs</title>
    <link>https://desk.example.com/btc</link>
    <description>&lt;p&gt;BTC rose &lt;b&gt;5%&lt;/b&gt;.&lt;/p&gt;</description>
    <pubDate>Mon, 01 Jan 2024 12:00:00 GMT</pubDate>
  </item>
  <item>
    <title>Ether steady</title>
    <link>https://desk.example.com/eth</link>
    <description>ETH flat.</description>
  </item>
</channel>
</rss>
"""


def test_rss_strategy_feed_document():
    strategy = RssParsingStrategy()
    markdown = asyncio.run(strategy.parse(FEED, ParsingOptions()))
    assert "## Bitcoin climbs" in markdown
    assert "BTC rose **5%**." in markdown
    assert "[https://desk.example.com/btc](https://desk.example.com/btc)" in markdown
    assert markdown.index("Bitcoin climbs") < markdown.index("Ether steady")

    meta = asyncio.run(strategy.extract_metadata(FEED))
    assert meta.title == "Crypto Desk"
    assert meta.language == "en-US"
    assert meta.source_url == "https://desk.example.com/"
    assert meta.published_at == datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def test_rss_strategy_entry_fragment_falls_back_to_html():
    strategy = RssParsingStrategy()
    markdown = asyncio.run(strategy.parse("<p>Solana <em>upgrade</em> ships</p>", ParsingOptions()))
    assert markdown == "Solana *upgrade* ships"
