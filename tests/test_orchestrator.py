from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from app.agents.orchestrator import ResearchOrchestrator, clamp_limit
from app.config import ProviderConfig, settings
from app.errors import ProviderError
from app.models.research import STATUS_ORDER, JobStatus
from app.models.schemas import RunOptions
from app.services.reliability_gate import CatalogSource, SourceReliabilityGate
from app.services.tool_adapter import ToolAdapter
from app.tools.extract_providers import ExtractedPage
from app.tools.page_fetcher import FetchResult
from app.tools.search_providers import SearchResult

CLAIM = "Battery storage capacity doubled in 2024."
PAGE_TEXT = CLAIM + " " + "Grid operators added storage across many regions. " * 10

HITS = [
    SearchResult(url="https://alpha.net/a", title="Alpha", snippet="alpha snippet", provider="fake"),
    SearchResult(url="https://beta.org/b/", title="Beta", snippet="beta snippet", provider="fake"),
    SearchResult(url="https://beta.org/b", title="Beta dup", snippet="dup", provider="fake"),
    SearchResult(url="https://www.reuters.com/c", title="Reuters", snippet="reuters snippet", provider="fake"),
]


class FakeSearch:
    name = "fake_search"

    def __init__(self, results=None, error=None, block: asyncio.Event | None = None):
        self.available = True
        self.results = results if results is not None else list(HITS)
        self.error = error
        self.block = block
        self.started = asyncio.Event()
        self.calls = []

    async def search(self, query, *, max_results, time_range=None):
        self.calls.append(query)
        self.started.set()
        if self.block is not None:
            await self.block.wait()
        if self.error is not None:
            raise self.error
        return list(self.results)


class FakeExtractor:
    name = "fake_extract"

    def __init__(self, content=PAGE_TEXT, error=None):
        self.available = True
        self.content = content
        self.error = error
        self.calls = []

    async def extract(self, url):
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return ExtractedPage(url=url, title=f"Page {len(self.calls)}", content=self.content, method="fake")


class CountingExtractor(FakeExtractor):
    """Tracks how many extractions are in flight at once."""

    def __init__(self, failing_url: str):
        super().__init__()
        self.failing_url = failing_url
        self.in_flight = 0
        self.peak = 0

    async def extract(self, url):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            if url == self.failing_url:
                raise RuntimeError("extractor crashed")
            return await super().extract(url)
        finally:
            self.in_flight -= 1


class ScriptedChat:
    """Answers summarize calls; every other capability is offline."""

    name = "scripted"

    def __init__(self, summary: str):
        self.summary = summary
        self.prompts: dict[str, list[str]] = {}

    async def complete(self, *, system, prompt, caller):
        self.prompts.setdefault(caller, []).append(prompt)
        if caller == "summarize":
            return SimpleNamespace(text=self.summary)
        raise RuntimeError("offline")


def _adapter(search=None, extractor=None, llm_clients=()) -> ToolAdapter:
    return ToolAdapter(
        ProviderConfig(provider_timeout=5.0, llm_timeout=5.0),
        search_providers=[search or FakeSearch()],
        extract_providers=[extractor or FakeExtractor()],
        llm_clients=list(llm_clients),
    )


def _down_fetcher():
    async def fetch(url: str, timeout: float) -> FetchResult:
        return FetchResult(url, False, 0, "", 5, error="Connection refused")

    return fetch


def _up_fetcher():
    async def fetch(url: str, timeout: float) -> FetchResult:
        if url.endswith((".xml", ".txt")):
            return FetchResult(url, False, 404, "", 5, error="HTTP 404")
        return FetchResult(url, True, 200, "<html><body>home</body></html>", 5)

    return fetch


def _gate(fetcher) -> SourceReliabilityGate:
    catalog = {
        "general": (
            CatalogSource("Alpha", "https://alpha.test", "news"),
            CatalogSource("Beta", "https://beta.test", "news"),
        )
    }
    return SourceReliabilityGate(fetcher=fetcher, catalog=catalog, probe_timeout=1)


def test_clamp_limit():
    assert clamp_limit(None) == 12
    assert clamp_limit(0) == 1
    assert clamp_limit(500) == 20


@pytest.mark.asyncio
async def test_full_run_reaches_completed_with_monotonic_progress():
    seen = []
    orchestrator = ResearchOrchestrator(
        "battery storage trends", adapter=_adapter(), on_progress=seen.append
    )
    job = await orchestrator.execute()

    assert job.status is JobStatus.COMPLETED
    assert [s.progress for s in seen] == [5, 15, 30, 50, 60, 75, 85, 100]
    ranks = [STATUS_ORDER.index(s.status) for s in seen]
    assert ranks == sorted(ranks)
    assert seen[-1].status is JobStatus.COMPLETED

    assert job.analysis.intent.value == "general_research"
    # trailing-slash duplicate collapsed
    assert [s.url for s in job.sources] == [
        "https://alpha.net/a",
        "https://beta.org/b/",
        "https://www.reuters.com/c",
    ]
    assert job.sources[2].reliability == 0.85
    assert all(s.summary for s in job.sources)

    assert len(job.findings) == 3
    assert all(f.verified for f in job.findings)
    assert all(len(f.source_ids) == 3 for f in job.findings)
    assert all(s.citations for s in job.sources)

    report = job.report
    assert report.title == "Research Report: battery storage trends"
    assert report.metadata.total_sources == 3
    assert report.metadata.verified_claims == 3
    assert report.metadata.generated_by == "local_template"


@pytest.mark.asyncio
async def test_run_stream_ends_with_terminal_snapshot():
    orchestrator = ResearchOrchestrator("battery storage trends", adapter=_adapter())
    snapshots = [job async for job in orchestrator.run()]

    assert snapshots[-1].status is JobStatus.COMPLETED
    progress = [s.progress for s in snapshots]
    assert progress == sorted(progress)
    assert sum(1 for s in snapshots if s.is_terminal) == 1


@pytest.mark.asyncio
async def test_snippet_used_when_extraction_fails():
    extractor = FakeExtractor(error=ProviderError("HTTP 403", kind="http_error"))
    job = await ResearchOrchestrator(
        "battery storage trends", adapter=_adapter(extractor=extractor)
    ).execute()

    assert job.status is JobStatus.COMPLETED
    assert [s.extraction_method for s in job.sources] == ["snippet"] * 3
    assert job.sources[0].content == "alpha snippet"
    assert job.sources[0].reliability == 0.5


@pytest.mark.asyncio
async def test_extraction_fan_out_respects_ceiling():
    hits = [
        SearchResult(url=f"https://site{i}.net/p", title=f"S{i}", snippet=f"snippet {i}", provider="fake")
        for i in range(12)
    ]
    extractor = CountingExtractor(failing_url="https://site3.net/p")
    job = await ResearchOrchestrator(
        "battery storage trends",
        adapter=_adapter(search=FakeSearch(results=hits), extractor=extractor),
        options=RunOptions(max_extract=12),
    ).execute()

    assert job.status is JobStatus.COMPLETED
    assert len(extractor.calls) == 11
    assert 1 <= extractor.peak <= settings.max_parallel_extract
    assert len(job.sources) == 12
    by_url = {s.url: s for s in job.sources}
    assert by_url["https://site3.net/p"].extraction_method == "snippet"


@pytest.mark.asyncio
async def test_summaries_feed_analysis_without_mutating_sources():
    chat = ScriptedChat("Storage capacity doubled.")
    orchestrator = ResearchOrchestrator(
        "battery storage trends", adapter=_adapter(llm_clients=[chat])
    )
    extracted = []
    original = orchestrator._extract

    async def capture(candidates):
        sources = await original(candidates)
        extracted.extend(sources)
        return sources

    orchestrator._extract = capture
    job = await orchestrator.execute()

    assert job.status is JobStatus.COMPLETED
    assert [s.summary for s in job.sources] == ["Storage capacity doubled."] * 3
    assert all(s.summary is None for s in extracted)
    assert "Storage capacity doubled." in chat.prompts["analyze"][0]
    assert "Grid operators" not in chat.prompts["analyze"][0]


@pytest.mark.asyncio
async def test_prefetched_content_skips_extraction():
    hits = [
        SearchResult(url="https://a.com/1", title="One", provider="site_discovery", content="# One\n\nBody."),
    ]
    extractor = FakeExtractor()
    job = await ResearchOrchestrator(
        "battery storage trends",
        adapter=_adapter(search=FakeSearch(results=hits), extractor=extractor),
    ).execute()

    assert extractor.calls == []
    assert job.sources[0].extraction_method == "site_discovery"


@pytest.mark.asyncio
async def test_url_query_extracts_without_searching():
    search = FakeSearch()
    extractor = FakeExtractor()
    job = await ResearchOrchestrator(
        "https://example.org/page", adapter=_adapter(search=search, extractor=extractor)
    ).execute()

    assert job.status is JobStatus.COMPLETED
    assert search.calls == []
    assert extractor.calls == ["https://example.org/page"]


@pytest.mark.asyncio
async def test_private_url_is_dropped_and_job_still_completes():
    extractor = FakeExtractor()
    job = await ResearchOrchestrator(
        "http://127.0.0.1/admin", adapter=_adapter(extractor=extractor)
    ).execute()

    assert job.status is JobStatus.COMPLETED
    assert job.sources == []
    assert job.findings == []
    assert extractor.calls == []
    assert job.report.metadata.confidence_score == 0.0


@pytest.mark.asyncio
async def test_search_exhaustion_is_stage_fatal():
    search = FakeSearch(error=ProviderError("no results", kind="empty"))
    job = await ResearchOrchestrator("battery storage trends", adapter=_adapter(search=search)).execute()

    assert job.status is JobStatus.FAILED
    assert job.failure_reason == "stage_fatal"
    assert job.error.startswith("All search providers failed")
    assert job.report is None


@pytest.mark.asyncio
async def test_strict_mode_fails_before_any_extraction():
    search = FakeSearch()
    extractor = FakeExtractor()
    orchestrator = ResearchOrchestrator(
        "battery storage trends",
        adapter=_adapter(search=search, extractor=extractor),
        options=RunOptions(strict_mode=True, min_sources=2),
        gate=_gate(_down_fetcher()),
    )
    job = await orchestrator.execute()

    assert job.status is JobStatus.FAILED
    assert job.failure_reason == "strict_mode"
    assert job.error == "Strict Mode: Only 0/2 required sources were accessible"
    assert search.calls == []
    assert extractor.calls == []
    failure = orchestrator.strict_mode_failure
    assert failure.phase == "reachability"
    assert {s.status for s in failure.source_statuses} == {"failed"}


@pytest.mark.asyncio
async def test_strict_mode_rejects_thin_extractions():
    orchestrator = ResearchOrchestrator(
        "battery storage trends",
        adapter=_adapter(extractor=FakeExtractor(content="too short")),
        options=RunOptions(strict_mode=True, min_sources=2),
        gate=_gate(_up_fetcher()),
    )
    job = await orchestrator.execute()

    assert job.status is JobStatus.FAILED
    assert job.failure_reason == "strict_mode"
    assert orchestrator.strict_mode_failure.phase == "extraction"
    assert len(job.sources) == 3


@pytest.mark.asyncio
async def test_cancel_during_search():
    search = FakeSearch(block=asyncio.Event())
    extractor = FakeExtractor()
    orchestrator = ResearchOrchestrator(
        "battery storage trends", adapter=_adapter(search=search, extractor=extractor)
    )
    task = asyncio.create_task(orchestrator.execute())
    await asyncio.wait_for(search.started.wait(), timeout=1)

    orchestrator.cancel()
    job = await asyncio.wait_for(task, timeout=1)

    assert job.status is JobStatus.FAILED
    assert job.failure_reason == "cancelled"
    assert job.error == "Research cancelled by caller"
    assert extractor.calls == []


@pytest.mark.asyncio
async def test_closing_stream_cancels_job():
    search = FakeSearch(block=asyncio.Event())
    orchestrator = ResearchOrchestrator("battery storage trends", adapter=_adapter(search=search))

    stream = orchestrator.run()
    first = await stream.__anext__()
    assert first.status is JobStatus.PLANNING
    await asyncio.wait_for(search.started.wait(), timeout=1)
    await stream.aclose()

    assert orchestrator.job.status is JobStatus.FAILED
    assert orchestrator.job.failure_reason == "cancelled"


@pytest.mark.asyncio
async def test_execute_runs_once():
    orchestrator = ResearchOrchestrator("battery storage trends", adapter=_adapter())
    await orchestrator.execute()
    with pytest.raises(RuntimeError):
        await orchestrator.execute()
