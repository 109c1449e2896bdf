"""Source reliability gate.

Probes a catalog of known sources (plus caller seed URLs) before any
expensive work, discovers candidate pages from their sitemaps, and enforces
strict mode: too few reachable sources, or too few useful pages after
extraction, raises StrictModeFailure instead of returning degraded results.
"""
from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Sequence
from urllib.parse import urljoin, urlparse

from loguru import logger

from app.config import settings
from app.errors import StrictModeFailure, UrlNotAllowedError
from app.models.research import SourceStatus, utc_now
from app.models.schemas import SearchItem, SearchResponse, SearchSummary
from app.tools.content_extractor import extract_main_content
from app.tools.page_fetcher import Fetcher, default_fetcher
from app.tools.web_utils import extract_domain, validate_public_url


@dataclass(frozen=True)
class CatalogSource:
    name: str
    base_url: str
    category: str


RESEARCH_SOURCES: dict[str, tuple[CatalogSource, ...]] = {
    "general": (
        CatalogSource("Reuters", "https://www.reuters.com", "news"),
        CatalogSource("Bloomberg", "https://www.bloomberg.com", "financial"),
        CatalogSource("CNBC", "https://www.cnbc.com", "financial"),
        CatalogSource("BBC", "https://www.bbc.com", "news"),
    ),
    "saudi": (
        CatalogSource("Saudi Exchange", "https://www.saudiexchange.sa", "official"),
        CatalogSource("Tadawul", "https://www.tadawul.com.sa", "official"),
        CatalogSource("Capital Market Authority", "https://cma.org.sa", "regulator"),
        CatalogSource("Argaam", "https://www.argaam.com", "news"),
        CatalogSource("Mubasher", "https://english.mubasher.info", "news"),
    ),
    "tech": (
        CatalogSource("TechCrunch", "https://techcrunch.com", "news"),
        CatalogSource("Ars Technica", "https://arstechnica.com", "news"),
        CatalogSource("The Verge", "https://www.theverge.com", "news"),
    ),
    "academic": (
        CatalogSource("arXiv", "https://arxiv.org", "academic"),
        CatalogSource("PubMed", "https://pubmed.ncbi.nlm.nih.gov", "academic"),
    ),
}

DOMAIN_PATTERNS = (
    ("saudi", re.compile(r"\b(saudi|tasi|tadawul|nomu|riyadh|ksa|mena|gcc)\b")),
    ("tech", re.compile(r"\b(tech|software|ai|machine learning|startup|silicon|app)\b")),
    ("academic", re.compile(r"\b(research|study|paper|academic|science|journal)\b")),
)

KEYWORD_STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "to", "for", "of", "on", "in", "with", "by",
        "from", "during", "as", "at", "into", "this", "that", "these", "those",
        "report", "generate", "provide", "analysis", "what", "how", "why", "when",
        "where", "which", "who", "please", "can", "could", "would", "should",
    }
)
MAX_KEYWORDS = 15
MAX_SEED_URLS = 20
MAX_CANDIDATE_URLS = 150
MAX_SITEMAPS = 3
MIN_PAGE_WORDS = 50
MARKDOWN_CHARS = 3000
DEFAULT_SITEMAPS = ("/sitemap.xml", "/sitemap_index.xml", "/news-sitemap.xml")

LOC_PATTERN = re.compile(r"<loc>\s*([^<]+?)\s*</loc>", re.IGNORECASE)
ROBOTS_SITEMAP_PATTERN = re.compile(r"^\s*Sitemap:\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE)


def _host(url: str) -> str:
    return urlparse(url if "://" in url else f"https://{url}").hostname or ""


def detect_query_domains(query: str, country: str | None = None) -> list[str]:
    lowered = query.lower()
    domains = [name for name, pattern in DOMAIN_PATTERNS if pattern.search(lowered)]
    if (country or "").strip().lower() == "sa" or "saudi" in domains:
        return ["saudi"]
    return domains or ["general"]


def keywords_from_query(query: str) -> list[str]:
    words = re.sub(r"[^a-z0-9\s]", " ", query.lower()).split()
    kept = [w for w in words if len(w) >= 3 and w not in KEYWORD_STOP_WORDS]
    return list(dict.fromkeys(kept))[:MAX_KEYWORDS]


def parse_sitemap_urls(xml: str) -> list[str]:
    return [u for u in LOC_PATTERN.findall(xml or "") if u.startswith("http")]


def score_url(url: str, keywords: Sequence[str], *, year: int | None = None) -> int:
    """Rank a candidate page by its URL alone."""
    u = url.lower()
    current_year = year or datetime.now(timezone.utc).year
    score = sum(3 for k in keywords if k in u)

    if str(current_year) in u:
        score += 5
    if str(current_year - 1) in u:
        score += 3

    if "news" in u or "article" in u:
        score += 2
    if "press" in u or "announcement" in u:
        score += 2
    if "report" in u or "analysis" in u:
        score += 3
    if "ipo" in u or "listing" in u:
        score += 4
    if "disclosure" in u:
        score += 3

    if "login" in u or "signup" in u or "register" in u:
        score -= 10
    if "cart" in u or "checkout" in u:
        score -= 10
    if "privacy" in u or "terms" in u or "cookie" in u:
        score -= 5
    if ".pdf" in u:
        score -= 2
    return score


def build_recommendations(statuses: Sequence[SourceStatus], min_sources: int) -> list[str]:
    reachable = sum(1 for s in statuses if s.status == "success")
    recommendations: list[str] = []
    timed_out = [s.name for s in statuses if s.status == "timeout"]
    failed = [s.name for s in statuses if s.status == "failed"]
    blocked = [s.name for s in statuses if s.status == "blocked"]
    empty = [s.name for s in statuses if s.status == "no_content"]

    if timed_out:
        recommendations.append(f"Retry later; these sources timed out: {', '.join(timed_out)}")
    if failed:
        recommendations.append(f"Check that these sources are online: {', '.join(failed)}")
    if blocked:
        recommendations.append(f"Remove disallowed source URLs: {', '.join(blocked)}")
    if empty:
        recommendations.append(f"No pages discovered on: {', '.join(empty)}")
    if 0 < reachable < min_sources:
        recommendations.append(f"Lower minSources to {reachable} or disable strict mode")
    recommendations.append("Add seed URLs for sources you trust")
    return recommendations


@dataclass
class ProbeOutcome:
    status: SourceStatus
    urls: list[str] = field(default_factory=list)


@dataclass
class GateSearchOutcome:
    items: list[SearchItem]
    source_statuses: list[SourceStatus]
    keywords: list[str]
    domains: list[str]
    country: str | None = None

    @property
    def reachable(self) -> int:
        return sum(1 for s in self.source_statuses if s.status == "success")

    def summary(self) -> SearchSummary:
        return SearchSummary(
            sources_checked=len(self.source_statuses),
            sources_reachable=self.reachable,
            sources_unreachable=len(self.source_statuses) - self.reachable,
            total_pages_found=sum(s.pages_found for s in self.source_statuses),
            total_pages_extracted=len(self.items),
            keywords=self.keywords,
            domains=self.domains,
        )

    def to_response(self, *, strict_mode: bool) -> SearchResponse:
        return SearchResponse(
            data=self.items,
            total_results=len(self.items),
            country=self.country,
            strict_mode=strict_mode,
            source_statuses=self.source_statuses,
            summary=self.summary(),
        )


class SourceReliabilityGate:
    def __init__(
        self,
        *,
        fetcher: Fetcher | None = None,
        probe_timeout: float | None = None,
        sitemap_timeout: float | None = None,
        robots_timeout: float | None = None,
        page_timeout: float | None = None,
        max_parallel: int | None = None,
        max_page_chars: int | None = None,
        catalog: dict[str, tuple[CatalogSource, ...]] | None = None,
    ):
        self.fetcher = fetcher or default_fetcher(settings.max_html_bytes)
        self.probe_timeout = probe_timeout or settings.probe_timeout
        self.sitemap_timeout = sitemap_timeout or settings.sitemap_timeout
        self.robots_timeout = robots_timeout or settings.robots_timeout
        self.page_timeout = page_timeout or settings.page_fetch_timeout
        self.max_parallel = max(1, max_parallel or settings.max_parallel_probes)
        self.max_page_chars = max_page_chars or settings.extractor_max_page_chars
        self.catalog = catalog if catalog is not None else RESEARCH_SOURCES

    # --- source selection ---

    def select_sources(
        self,
        query: str,
        *,
        country: str | None = None,
        seed_urls: Iterable[str] = (),
    ) -> tuple[list[CatalogSource], list[str]]:
        domains = detect_query_domains(query, country)
        sources = [s for domain in domains for s in self.catalog.get(domain, ())]
        for seed in [u for u in seed_urls if isinstance(u, str) and u.strip()][:MAX_SEED_URLS]:
            name = extract_domain(seed if "://" in seed else f"https://{seed}") or seed
            sources.append(CatalogSource(name, seed.strip(), "custom"))
        return sources, domains

    # --- probing ---

    async def _discover_sitemaps(self, base_url: str) -> list[str]:
        found: list[str] = []
        robots = await self.fetcher(urljoin(base_url, "/robots.txt"), self.robots_timeout)
        if robots.ok and robots.text:
            for listed in ROBOTS_SITEMAP_PATTERN.findall(robots.text):
                try:
                    found.append(validate_public_url(listed))
                except UrlNotAllowedError:
                    logger.warning(f"Ignoring disallowed sitemap in {base_url}/robots.txt: {listed}")
        found.extend(urljoin(base_url, path) for path in DEFAULT_SITEMAPS)
        return list(dict.fromkeys(found))

    async def _collect_candidate_urls(self, base_url: str) -> list[str]:
        sitemaps = (await self._discover_sitemaps(base_url))[:MAX_SITEMAPS]
        responses = await asyncio.gather(
            *(self.fetcher(sm, self.sitemap_timeout) for sm in sitemaps)
        )
        urls: list[str] = []
        for response in responses:
            if not response.ok or not response.text:
                continue
            for url in parse_sitemap_urls(response.text):
                if len(urls) >= MAX_CANDIDATE_URLS:
                    return urls
                urls.append(url)
        return urls

    async def _probe_one(self, source: CatalogSource) -> ProbeOutcome:
        status = SourceStatus(name=source.name, base_url=source.base_url)
        try:
            safe_url = validate_public_url(source.base_url)
        except UrlNotAllowedError as exc:
            status.status = "blocked"
            status.error = str(exc)
            return ProbeOutcome(status)

        probe = await self.fetcher(safe_url, self.probe_timeout)
        status.response_time = probe.response_time_ms
        if not probe.ok:
            status.status = "timeout" if probe.timed_out else "failed"
            status.error = probe.error or f"HTTP {probe.status_code}"
            return ProbeOutcome(status)

        urls = await self._collect_candidate_urls(safe_url)
        if not urls and probe.text.strip():
            urls = [safe_url]
        status.pages_found = len(urls)
        status.status = "success" if urls else "no_content"
        return ProbeOutcome(status, urls)

    async def probe(self, sources: Sequence[CatalogSource]) -> list[ProbeOutcome]:
        """Probe every source with bounded concurrency and wait for all of them."""
        semaphore = asyncio.Semaphore(self.max_parallel)

        async def bounded(source: CatalogSource) -> ProbeOutcome:
            async with semaphore:
                return await self._probe_one(source)

        results = await asyncio.gather(
            *(bounded(s) for s in sources), return_exceptions=True
        )
        outcomes: list[ProbeOutcome] = []
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                logger.warning(f"Probe crashed for {source.base_url}: {result}")
                outcomes.append(
                    ProbeOutcome(
                        SourceStatus(
                            name=source.name,
                            base_url=source.base_url,
                            status="failed",
                            error=str(result) or type(result).__name__,
                        )
                    )
                )
            else:
                outcomes.append(result)
        return outcomes

    # --- strict mode ---

    def enforce_reachability(
        self, statuses: Sequence[SourceStatus], min_sources: int
    ) -> None:
        reachable = sum(1 for s in statuses if s.status == "success")
        if reachable < min_sources:
            raise StrictModeFailure(
                f"Strict Mode: Only {reachable}/{min_sources} required sources were accessible",
                source_statuses=list(statuses),
                recommendations=build_recommendations(statuses, min_sources),
                phase="reachability",
            )

    def enforce_useful_content(
        self,
        found: int,
        *,
        min_sources: int,
        limit: int,
        statuses: Sequence[SourceStatus],
    ) -> None:
        required = min(min_sources, limit)
        if found < required:
            raise StrictModeFailure(
                f"Strict Mode: Only {found} relevant pages found (minimum {required} required)",
                source_statuses=list(statuses),
                recommendations=build_recommendations(statuses, min_sources),
                phase="extraction",
            )

    async def check(
        self,
        query: str,
        *,
        strict_mode: bool = False,
        min_sources: int = 2,
        country: str | None = None,
        seed_urls: Iterable[str] = (),
    ) -> list[SourceStatus]:
        """Pre-flight reachability check. Raises StrictModeFailure in strict mode."""
        sources, domains = self.select_sources(query, country=country, seed_urls=seed_urls)
        statuses = [o.status for o in await self.probe(sources)]
        reachable = sum(1 for s in statuses if s.status == "success")
        logger.info(
            f"Reliability gate: {reachable}/{len(statuses)} sources reachable (domains={domains})"
        )
        if strict_mode:
            self.enforce_reachability(statuses, max(1, min_sources))
        return statuses

    # --- page extraction ---

    async def _fetch_page(self, url: str, keywords: Sequence[str]) -> SearchItem | None:
        try:
            safe_url = validate_public_url(url)
        except UrlNotAllowedError:
            return None
        response = await self.fetcher(safe_url, self.page_timeout)
        if not response.ok or not response.text:
            return None

        extracted = extract_main_content(safe_url, response.text, max_chars=self.max_page_chars)
        if not extracted.text or extracted.word_count < MIN_PAGE_WORDS:
            return None
        lowered = extracted.text.lower()
        if keywords and not any(k in lowered for k in keywords):
            return None

        title = extracted.title or extract_domain(safe_url)
        return SearchItem(
            url=safe_url,
            title=title,
            description=extracted.description or extracted.text[:200],
            markdown=(
                f"# {extracted.title or 'Source'}\n\n{extracted.text[:MARKDOWN_CHARS]}"
                f"\n\n---\nSource: {safe_url}"
            ),
            fetched_at=utc_now(),
            response_time=response.response_time_ms,
            word_count=extracted.word_count,
            text=extracted.text,
        )

    async def extract_pages(self, urls: Sequence[str], keywords: Sequence[str]) -> list[SearchItem]:
        semaphore = asyncio.Semaphore(self.max_parallel)

        async def bounded(url: str) -> SearchItem | None:
            async with semaphore:
                return await self._fetch_page(url, keywords)

        results = await asyncio.gather(*(bounded(u) for u in urls), return_exceptions=True)
        items: list[SearchItem] = []
        for url, result in zip(urls, results):
            if isinstance(result, BaseException):
                logger.warning(f"Page extraction crashed for {url}: {result}")
            elif result is not None:
                items.append(result)
        return items

    async def search(
        self,
        query: str,
        *,
        limit: int = 12,
        country: str | None = None,
        seed_urls: Iterable[str] = (),
        strict_mode: bool = False,
        min_sources: int = 2,
        deep_scrape: bool = True,
    ) -> GateSearchOutcome:
        """Reliability-gated site search over the catalog and seed URLs."""
        min_sources = max(1, min_sources)
        keywords = keywords_from_query(query)
        sources, domains = self.select_sources(query, country=country, seed_urls=seed_urls)
        logger.info(
            f"Gated search: {len(sources)} sources, domains={domains}, strict={strict_mode}"
        )

        outcomes = await self.probe(sources)
        statuses = [o.status for o in outcomes]
        if strict_mode:
            self.enforce_reachability(statuses, min_sources)

        scores: dict[str, int] = {}
        for outcome in outcomes:
            for url in outcome.urls:
                scores.setdefault(url, score_url(url, keywords))
        candidates = sorted(scores, key=lambda u: scores[u], reverse=True)[: limit * 3]

        items: list[SearchItem] = []
        if deep_scrape and candidates:
            items = (await self.extract_pages(candidates, keywords))[:limit]

        by_host = {_host(s.base_url): s for s in statuses}
        for item in items:
            status = by_host.get(_host(item.url))
            if status is not None:
                status.pages_extracted += 1

        if strict_mode:
            self.enforce_useful_content(
                len(items), min_sources=min_sources, limit=limit, statuses=statuses
            )

        return GateSearchOutcome(
            items=items,
            source_statuses=statuses,
            keywords=keywords,
            domains=domains,
            country=(country or "").strip().lower() or None,
        )
