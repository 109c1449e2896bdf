from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.errors import MalformedResponseError, ProviderError
from app.models.schemas import SearchItem
from app.tools.extract_providers import DirectFetchExtractor, _parse_jina_markdown
from app.tools.page_fetcher import FetchResult
from app.tools.search_providers import (
    SiteDiscoverySearchProvider,
    TavilySearchProvider,
    _map_brave_results,
)

LONG_ARTICLE = (
    "<html><head><title>Grid report</title>"
    '<meta name="description" content="Quarterly grid numbers"></head>'
    "<body><nav>Home About</nav><article><h1>Grid report</h1>"
    + "".join(f"<p>Paragraph {i} covers battery storage growth in detail.</p>" for i in range(12))
    + "</article><footer>Copyright</footer></body></html>"
)


def _fetcher(result: FetchResult):
    async def fetch(url: str, timeout: float) -> FetchResult:
        return result

    return fetch


def test_brave_results_ranked_by_position():
    payload = {
        "web": {
            "results": [
                {"url": "https://a.com", "title": "A", "description": "first"},
                {"url": "", "title": "skipped"},
                {"url": "https://b.com", "title": "B", "extra_snippets": ["x", "y"], "age": "2 days"},
            ]
        }
    }
    results = _map_brave_results(payload, "brave")

    assert [r.url for r in results] == ["https://a.com", "https://b.com"]
    assert results[0].score == 1.0
    assert results[1].snippet == "x y"
    assert results[1].published_date == "2 days"


def test_brave_malformed_payload():
    with pytest.raises(MalformedResponseError):
        _map_brave_results({"web": {"results": "nope"}}, "brave")


@pytest.mark.asyncio
async def test_tavily_maps_results():
    client = MagicMock()
    client.search = AsyncMock(
        return_value={
            "results": [
                {"url": "https://a.com", "title": "A", "content": "snip", "score": 0.7},
                {"title": "no url"},
            ]
        }
    )
    with patch("tavily.AsyncTavilyClient", return_value=client):
        results = await TavilySearchProvider("key").search("q", max_results=5, time_range="week")

    assert len(results) == 1
    assert results[0].provider == "tavily"
    assert results[0].snippet == "snip"
    kwargs = client.search.await_args.kwargs
    assert kwargs["max_results"] == 5
    assert kwargs["time_range"] == "week"


def test_tavily_unavailable_without_key():
    assert TavilySearchProvider("").available is False


@pytest.mark.asyncio
async def test_site_discovery_carries_plain_page_text():
    items = [
        SearchItem(
            url="https://a.com/1",
            title="One",
            description="d1",
            markdown="# One\n\nStorage doubled.\n\n---\nSource: https://a.com/1",
            text="Storage doubled.",
            fetched_at="t",
        ),
        SearchItem(url="https://a.com/2", title="Two", description="d2", markdown="# Two", text="Two body.", fetched_at="t"),
    ]
    gate = SimpleNamespace(search=AsyncMock(return_value=SimpleNamespace(items=items)))
    results = await SiteDiscoverySearchProvider(gate, country="sa").search("q", max_results=4)

    assert [r.content for r in results] == ["Storage doubled.", "Two body."]
    assert results[0].score > results[1].score
    gate.search.assert_awaited_once_with("q", limit=4, country="sa")
    assert "text" not in items[0].model_dump(by_alias=True)


@pytest.mark.asyncio
async def test_site_discovery_empty_is_typed():
    gate = SimpleNamespace(search=AsyncMock(return_value=SimpleNamespace(items=[])))
    with pytest.raises(ProviderError) as excinfo:
        await SiteDiscoverySearchProvider(gate).search("q", max_results=4)
    assert excinfo.value.kind == "empty"


@pytest.mark.asyncio
async def test_direct_extractor_reads_article():
    page = FetchResult("https://a.com/r", True, 200, LONG_ARTICLE, 12)
    extracted = await DirectFetchExtractor(fetcher=_fetcher(page)).extract("https://a.com/r")

    assert extracted.title == "Grid report"
    assert extracted.description == "Quarterly grid numbers"
    assert "battery storage growth" in extracted.content
    assert "Copyright" not in extracted.content
    assert extracted.method.startswith("direct:")


@pytest.mark.asyncio
async def test_direct_extractor_fetch_failures_are_typed():
    timed_out = FetchResult("https://a.com", False, 0, "", 9000, error="Timeout", timed_out=True)
    with pytest.raises(ProviderError) as excinfo:
        await DirectFetchExtractor(fetcher=_fetcher(timed_out)).extract("https://a.com")
    assert excinfo.value.kind == "timeout"

    forbidden = FetchResult("https://a.com", False, 403, "", 10, error="HTTP 403")
    with pytest.raises(ProviderError) as excinfo:
        await DirectFetchExtractor(fetcher=_fetcher(forbidden)).extract("https://a.com")
    assert excinfo.value.kind == "http_error"


@pytest.mark.asyncio
async def test_direct_extractor_empty_page_is_malformed():
    empty = FetchResult("https://a.com", True, 200, "<html><body></body></html>", 10)
    with pytest.raises(MalformedResponseError):
        await DirectFetchExtractor(fetcher=_fetcher(empty)).extract("https://a.com")


def test_jina_markdown_parsing():
    body = (
        "Title: Grid report\n"
        "URL Source: https://a.com/r\n\n"
        "Markdown Content:\n"
        "# Grid report\n\nStorage   grew.\n"
    )
    page = _parse_jina_markdown("https://a.com/r", body, 1000)
    assert page.title == "Grid report"
    assert page.content == "# Grid report Storage grew."
    assert page.method == "jina_reader"


def test_jina_empty_document():
    with pytest.raises(MalformedResponseError):
        _parse_jina_markdown("https://a.com", "Title: x\nMarkdown Content:\n   ", 1000)
