from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from app.errors import MalformedResponseError, ProviderError

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"

FRESHNESS_MAP = {
    "day": "pd",
    "week": "pw",
    "month": "pm",
    "year": "py",
}


@dataclass
class SearchResult:
    """One hit from any search provider, normalized."""

    url: str
    title: str
    snippet: str = ""
    score: float = 0.0
    provider: str = ""
    published_date: str | None = None
    # Full page text when the provider already fetched it (site discovery).
    content: str = ""


class SearchProvider(Protocol):
    name: str

    @property
    def available(self) -> bool: ...

    async def search(
        self,
        query: str,
        *,
        max_results: int,
        time_range: str | None = None,
    ) -> list[SearchResult]: ...


class TavilySearchProvider:
    name = "tavily"

    def __init__(self, api_key: str, *, search_depth: str = "advanced"):
        self._api_key = api_key
        self._search_depth = search_depth

    @property
    def available(self) -> bool:
        return bool(self._api_key)

    async def search(
        self,
        query: str,
        *,
        max_results: int,
        time_range: str | None = None,
    ) -> list[SearchResult]:
        from tavily import AsyncTavilyClient

        client = AsyncTavilyClient(api_key=self._api_key)
        kwargs: dict[str, Any] = {
            "query": query,
            "search_depth": self._search_depth,
            "max_results": max_results,
        }
        if time_range:
            kwargs["time_range"] = time_range
        response = await client.search(**kwargs)
        if not isinstance(response, dict):
            raise MalformedResponseError("Tavily returned a non-object payload")

        return [
            SearchResult(
                url=r.get("url", ""),
                title=r.get("title", ""),
                snippet=r.get("content", "") or "",
                score=float(r.get("score", 0.0) or 0.0),
                provider=self.name,
                published_date=r.get("published_date"),
            )
            for r in response.get("results", [])
            if r.get("url")
        ]


def _map_brave_results(payload: dict[str, Any], provider: str) -> list[SearchResult]:
    raw_results = payload.get("web", {}).get("results", [])
    if not isinstance(raw_results, list):
        raise MalformedResponseError("Brave payload has no web.results list")
    total = max(len(raw_results), 1)
    mapped: list[SearchResult] = []
    for idx, item in enumerate(raw_results):
        if not item.get("url"):
            continue
        extra = " ".join(item.get("extra_snippets", []) or []).strip()
        # Brave has no relevance score; rank position stands in for it.
        mapped.append(
            SearchResult(
                url=item["url"],
                title=item.get("title", ""),
                snippet=(item.get("description", "") or "").strip() or extra,
                score=max(0.0, 1.0 - (idx / total)),
                provider=provider,
                published_date=item.get("age"),
            )
        )
    return mapped


class BraveSearchProvider:
    name = "brave"

    def __init__(self, api_key: str, *, timeout: float = 30.0):
        self._api_key = api_key
        self._timeout = timeout

    @property
    def available(self) -> bool:
        return bool(self._api_key)

    async def search(
        self,
        query: str,
        *,
        max_results: int,
        time_range: str | None = None,
    ) -> list[SearchResult]:
        params: dict[str, Any] = {"q": query, "count": max_results}
        if time_range in FRESHNESS_MAP:
            params["freshness"] = FRESHNESS_MAP[time_range]

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(
                BRAVE_SEARCH_URL,
                params=params,
                headers={
                    "Accept": "application/json",
                    "X-Subscription-Token": self._api_key,
                },
            )
            response.raise_for_status()
            try:
                payload = response.json()
            except ValueError as exc:
                raise MalformedResponseError("Brave returned invalid JSON") from exc
        return _map_brave_results(payload, self.name)


class SiteDiscoverySearchProvider:
    """Keyless search: crawl the configured source catalog's sitemaps.

    Delegates to a SourceReliabilityGate; the pages it returns are already
    extracted, so their plain text travels in `SearchResult.content` while
    the markdown rendering stays on the gated search response.
    """

    name = "site_discovery"

    def __init__(self, gate: Any, *, country: str | None = None):
        self._gate = gate
        self._country = country

    @property
    def available(self) -> bool:
        return self._gate is not None

    async def search(
        self,
        query: str,
        *,
        max_results: int,
        time_range: str | None = None,
    ) -> list[SearchResult]:
        outcome = await self._gate.search(query, limit=max_results, country=self._country)
        if not outcome.items:
            raise ProviderError("No relevant pages found on catalog sources", kind="empty")
        return [
            SearchResult(
                url=item.url,
                title=item.title,
                snippet=item.description,
                score=1.0 - (idx / max(len(outcome.items), 1)),
                provider=self.name,
                content=item.text,
            )
            for idx, item in enumerate(outcome.items)
        ]
