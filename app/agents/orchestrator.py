from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable

from loguru import logger

from app.config import settings
from app.errors import (
    ResearchCancelled,
    StageFailure,
    StrictModeFailure,
    UrlNotAllowedError,
)
from app.models.research import (
    FailureReason,
    JobStatus,
    ResearchJob,
    Source,
    SourceStatus,
    utc_now,
)
from app.models.schemas import RunOptions, ToolChainStep
from app.services.consolidation import ConsolidationEngine
from app.services.credibility import source_reliability
from app.services.intent_classifier import QueryIntentClassifier
from app.services.logger import log_research_step
from app.services.progress import ProgressBroadcaster
from app.services.reliability_gate import SourceReliabilityGate
from app.services.report_compiler import ReportCompiler
from app.services.tool_adapter import SearchOptions, ToolAdapter
from app.tools.search_providers import SearchResult
from app.tools.web_utils import extract_domain, validate_public_url

# Fixed progress checkpoints; analyzing reports twice (before and after summaries).
PLANNING_PROGRESS = 5
SEARCHING_PROGRESS = 15
EXTRACTING_PROGRESS = 30
ANALYZING_PROGRESS = 50
ANALYZING_FINDINGS_PROGRESS = 60
VERIFYING_PROGRESS = 75
COMPILING_PROGRESS = 85
COMPLETED_PROGRESS = 100

SEARCH_PROVIDER_PREFIX = "query"


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return settings.default_limit
    return max(settings.min_limit, min(int(limit), settings.max_limit))


class ResearchOrchestrator:
    """Runs one research job through the stage machine.

    pending -> planning -> searching -> extracting -> analyzing -> verifying
    -> compiling -> completed, with a side exit to failed from any
    non-terminal state. Only this object writes to the job; every transition
    publishes a snapshot.
    """

    def __init__(
        self,
        query: str,
        *,
        adapter: ToolAdapter,
        options: RunOptions | None = None,
        gate: SourceReliabilityGate | None = None,
        classifier: QueryIntentClassifier | None = None,
        on_progress: Callable[[ResearchJob], None] | None = None,
        broadcaster: ProgressBroadcaster | None = None,
    ):
        self.options = options or RunOptions()
        self.adapter = adapter
        self.gate = gate or SourceReliabilityGate()
        self.classifier = classifier or QueryIntentClassifier()
        self.engine = ConsolidationEngine(adapter)
        self.compiler = ReportCompiler(adapter)
        self.on_progress = on_progress
        self.broadcaster = broadcaster or ProgressBroadcaster()
        self.job = ResearchJob(query=query)

        self.limit = clamp_limit(self.options.limit)
        self.top_k = max(1, min(self.options.max_extract or settings.extract_top_k, self.limit))
        self.min_sources = max(1, self.options.min_sources)
        self.max_parallel_extract = max(1, settings.max_parallel_extract)
        self.max_parallel_summaries = max(1, settings.max_parallel_summaries)
        self.summarize_sources = settings.summarize_sources
        self.summary_max_chars = settings.summary_max_chars
        self.min_usable_chars = settings.min_usable_content_chars

        self.tool_chain: list[ToolChainStep] = []
        self.source_statuses: list[SourceStatus] = []
        self.strict_mode_failure: StrictModeFailure | None = None
        self._cancel_requested = False
        self._task: asyncio.Task | None = None
        self._started = False

    # --- control ---

    def cancel(self) -> None:
        """Stop scheduling stage work; the job ends failed with a cancellation reason."""
        self._cancel_requested = True
        if self._task is not None and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    def _checkpoint(self) -> None:
        if self._cancel_requested:
            raise ResearchCancelled()

    # --- state ---

    def _publish(self) -> None:
        snapshot = self.job.snapshot()
        if self.on_progress is not None:
            self.on_progress(snapshot)
        self.broadcaster.publish(snapshot)

    def _advance(self, status: JobStatus, progress: int, **data) -> None:
        self._checkpoint()
        self.job.status = status
        self.job.progress = max(self.job.progress, progress)
        self.job.updated_at = utc_now()
        log_research_step(self.job.id, status.value, "entered", data or None)
        self._publish()

    def _fail(self, message: str, reason: FailureReason) -> None:
        self.job.status = JobStatus.FAILED
        self.job.error = message
        self.job.failure_reason = reason
        self.job.updated_at = utc_now()
        log_research_step(self.job.id, JobStatus.FAILED.value, reason, {"error": message})
        self._publish()

    # --- entry points ---

    async def execute(self) -> ResearchJob:
        """Run the pipeline to a terminal state and return the final job."""
        if self._started:
            raise RuntimeError("ResearchOrchestrator.execute() may only run once")
        self._started = True
        self._task = asyncio.current_task()
        try:
            await self._pipeline()
        except asyncio.CancelledError:
            self._fail(str(ResearchCancelled()), "cancelled")
            if not self._cancel_requested:
                raise
            if self._task is not None:
                self._task.uncancel()
        except ResearchCancelled as exc:
            self._fail(str(exc), "cancelled")
        except StrictModeFailure as exc:
            self.strict_mode_failure = exc
            self._fail(exc.message, "strict_mode")
        except StageFailure as exc:
            self._fail(str(exc), "stage_fatal")
        except Exception as exc:
            logger.exception(f"Research job {self.job.id} failed unexpectedly")
            self._fail(f"Research failed: {exc}", "unexpected")
        return self.job.snapshot()

    async def run(self) -> AsyncIterator[ResearchJob]:
        """Execute in a task and yield a snapshot per transition.

        Closing the iterator early (e.g. the client disconnected) cancels the job.
        """
        updates = self.broadcaster.subscribe()
        task = asyncio.create_task(self.execute())
        try:
            async for snapshot in updates:
                yield snapshot
            await task
        finally:
            if not task.done():
                self.cancel()
                await asyncio.gather(task, return_exceptions=True)

    # --- stages ---

    async def _pipeline(self) -> None:
        query = self.job.query

        self._advance(JobStatus.PLANNING, PLANNING_PROGRESS)
        await self._plan(query)

        self._advance(JobStatus.SEARCHING, SEARCHING_PROGRESS, steps=len(self.tool_chain))
        candidates = await self._search()

        self._advance(JobStatus.EXTRACTING, EXTRACTING_PROGRESS, candidates=len(candidates))
        sources = await self._extract(candidates[: self.top_k])
        self.job.sources = sources
        if self.options.strict_mode:
            usable = sum(1 for s in sources if len(s.content.strip()) >= self.min_usable_chars)
            self.gate.enforce_useful_content(
                usable,
                min_sources=self.min_sources,
                limit=self.limit,
                statuses=self.source_statuses,
            )

        self._advance(JobStatus.ANALYZING, ANALYZING_PROGRESS, sources=len(sources))
        if self.summarize_sources and self.job.sources:
            await self._summarize()

        self._advance(JobStatus.ANALYZING, ANALYZING_FINDINGS_PROGRESS)
        findings = []
        if self.job.sources:
            findings = await self.engine.analyze(query, self.job.sources)
        self.job.findings = findings

        self._advance(JobStatus.VERIFYING, VERIFYING_PROGRESS, findings=len(findings))
        verification = self.engine.verify(self.job.findings, self.job.sources)
        self.job.findings = verification.findings
        for source in self.job.sources:
            source.citations.extend(verification.citations.get(source.id, []))

        self._advance(JobStatus.COMPILING, COMPILING_PROGRESS)
        report = await self.compiler.compile(query, self.job.findings, self.job.sources)
        self._checkpoint()
        self.job.report = report

        self._advance(JobStatus.COMPLETED, COMPLETED_PROGRESS)

    async def _plan(self, query: str) -> None:
        analysis = self.classifier.classify(query)
        self.job.analysis = analysis
        self.tool_chain = self.classifier.plan(query, analysis)
        logger.info(
            f"Job {self.job.id}: intent={analysis.intent.value} "
            f"({analysis.confidence:.2f}), {len(self.tool_chain)} tool steps"
        )

        if self.options.strict_mode or self.options.check_sources:
            self.source_statuses = await self.gate.check(
                query,
                strict_mode=self.options.strict_mode,
                min_sources=self.min_sources,
                country=self.options.country,
                seed_urls=self.options.seed_urls,
            )
            self._checkpoint()

    async def _search(self) -> list[SearchResult]:
        candidates: list[SearchResult] = []
        for step in self.tool_chain:
            if step.tool == "extract":
                candidates.extend(
                    SearchResult(url=url, title="", provider=SEARCH_PROVIDER_PREFIX) for url in step.urls
                )

        search_steps = [s for s in self.tool_chain if s.tool == "search" and s.query]
        outcomes = await asyncio.gather(
            *(
                self.adapter.search(
                    step.query,
                    SearchOptions(
                        max_results=int(step.params.get("max_results", self.limit)),
                        time_range=step.params.get("time_range"),
                    ),
                )
                for step in search_steps
            )
        )
        failures = []
        for outcome in outcomes:
            if outcome.ok:
                candidates.extend(outcome.value or [])
            else:
                failures.extend(outcome.failures)

        if search_steps and not any(o.ok for o in outcomes) and not candidates:
            summary = "; ".join(f"{f.provider}: {f.kind}" for f in failures) or "no providers"
            raise StageFailure("searching", f"All search providers failed ({summary})", failures)

        unique: dict[str, SearchResult] = {}
        for result in candidates:
            unique.setdefault(result.url.rstrip("/"), result)
        return list(unique.values())[: self.limit]

    def _source_from(
        self, url: str, title: str, content: str, method: str, *, snippet_only: bool = False
    ) -> Source:
        return Source(
            url=url,
            domain=extract_domain(url),
            title=title or "Untitled",
            content=content,
            reliability=source_reliability(url, snippet_only=snippet_only),
            extraction_method=method,
        )

    async def _extract_one(self, result: SearchResult) -> Source | None:
        try:
            url = validate_public_url(result.url)
        except UrlNotAllowedError as exc:
            logger.warning(f"Skipping disallowed URL {result.url}: {exc}")
            return None

        if result.content:
            return self._source_from(url, result.title, result.content, result.provider)

        extracted = await self.adapter.extract(url)
        if extracted.ok and extracted.value is not None:
            page = extracted.value
            return self._source_from(url, page.title or result.title, page.content, extracted.provider or "")

        if result.snippet:
            logger.info(f"Extraction failed for {url}; using search snippet")
            return self._source_from(url, result.title, result.snippet, "snippet", snippet_only=True)
        logger.info(f"Dropping {url}: {extracted.failure_summary}")
        return None

    async def _extract(self, candidates: list[SearchResult]) -> list[Source]:
        """Bounded fan-out over the candidates; waits for every worker to settle."""
        semaphore = asyncio.Semaphore(self.max_parallel_extract)

        async def bounded(result: SearchResult) -> Source | None:
            async with semaphore:
                self._checkpoint()
                return await self._extract_one(result)

        results = await asyncio.gather(*(bounded(c) for c in candidates), return_exceptions=True)
        sources: list[Source] = []
        for candidate, result in zip(candidates, results):
            if isinstance(result, ResearchCancelled):
                raise result
            if isinstance(result, BaseException):
                logger.warning(f"Extraction worker crashed for {candidate.url}: {result}")
            elif result is not None:
                sources.append(result)
        self._checkpoint()
        return sources

    async def _summarize(self) -> None:
        """Replace each source with a summarized copy; analyze reads the summaries."""
        semaphore = asyncio.Semaphore(self.max_parallel_summaries)

        async def bounded(source: Source) -> str | None:
            async with semaphore:
                result = await self.adapter.summarize(source.content, self.summary_max_chars)
                return result.value

        summaries = await asyncio.gather(*(bounded(s) for s in self.job.sources), return_exceptions=True)
        self._checkpoint()
        summarized: list[Source] = []
        for source, summary in zip(self.job.sources, summaries):
            if isinstance(summary, BaseException):
                logger.warning(f"Summary failed for {source.url}: {summary}")
                summarized.append(source)
            elif summary:
                summarized.append(source.model_copy(update={"summary": summary}))
            else:
                summarized.append(source)
        self.job.sources = summarized
