"""Capability facade over external providers.

Each capability walks an ordered list of provider strategies. Every provider
gets one attempt under its own timeout; failures are recorded as typed
ProviderFailure values and the next rung is tried. Nothing raises past this
module: callers get a ToolResult, which is either a value or the failure list.
"""
from __future__ import annotations

import asyncio
import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

import httpx
import openai

from app.config import ProviderConfig
from app.errors import (
    FailureKind,
    MalformedResponseError,
    ProviderError,
    ProviderFailure,
)
from app.llm_client import ChatClient, build_chat_clients
from app.models.research import Finding, Report, Source
from app.services.consolidation import basic_analysis
from app.services.logger import log_provider_call
from app.services.prompt_store import prompt_pair
from app.services.report_compiler import (
    compile_local_report,
    compile_markdown_report,
)
from app.tools.extract_providers import (
    DirectFetchExtractor,
    ExtractedPage,
    ExtractProvider,
    JinaReaderExtractor,
)
from app.tools.page_fetcher import Fetcher
from app.tools.search_providers import (
    BraveSearchProvider,
    SearchProvider,
    SearchResult,
    SiteDiscoverySearchProvider,
    TavilySearchProvider,
)
from app.tools.web_utils import truncate

T = TypeVar("T")

JSON_FENCE = re.compile(r"```(?:json)?\s*|\s*```")
SOURCE_CHARS_FOR_ANALYSIS = 500
LOCAL_PROVIDER = "local"


@dataclass
class ToolResult(Generic[T]):
    ok: bool
    value: T | None = None
    provider: str | None = None
    failures: list[ProviderFailure] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return bool(self.failures)

    @property
    def failure_summary(self) -> str:
        return "; ".join(f"{f.provider}: {f.kind} ({f.message})" for f in self.failures)


@dataclass
class SearchOptions:
    max_results: int = 10
    time_range: str | None = None


def classify_failure(exc: BaseException) -> tuple[FailureKind, str]:
    """Map an exception raised by a provider to a failure kind."""
    message = str(exc) or type(exc).__name__
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return "timeout", "Timeout"
    if isinstance(exc, ProviderError):
        return exc.kind, message
    if isinstance(exc, httpx.HTTPStatusError):
        return "http_error", f"HTTP {exc.response.status_code}"
    if isinstance(exc, httpx.HTTPError):
        return "http_error", message
    if isinstance(exc, openai.APITimeoutError):
        return "timeout", "Timeout"
    if isinstance(exc, openai.APIError):
        return "http_error", message
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return "malformed", message
    return "error", message


class ToolAdapter:
    """Search, extract, summarize, analyze and report behind fallback ladders.

    Built from an explicit ProviderConfig; never consults the environment.
    Strategy lists can be injected directly (tests, CLI experiments).
    """

    def __init__(
        self,
        config: ProviderConfig,
        *,
        search_providers: Sequence[SearchProvider] | None = None,
        extract_providers: Sequence[ExtractProvider] | None = None,
        llm_clients: Sequence[ChatClient] | None = None,
        gate: Any = None,
        fetcher: Fetcher | None = None,
    ):
        self.config = config
        self._fetcher = fetcher
        self._gate = gate
        self.search_providers = (
            list(search_providers)
            if search_providers is not None
            else self._build_search_providers()
        )
        self.extract_providers = (
            list(extract_providers)
            if extract_providers is not None
            else self._build_extract_providers()
        )
        self.llm_clients = (
            list(llm_clients) if llm_clients is not None else build_chat_clients(config)
        )

    # --- provider construction ---

    def _site_discovery_gate(self) -> Any:
        if self._gate is None:
            from app.services.reliability_gate import SourceReliabilityGate

            self._gate = SourceReliabilityGate(fetcher=self._fetcher)
        return self._gate

    def _build_search_providers(self) -> list[SearchProvider]:
        factories: dict[str, Callable[[], SearchProvider]] = {
            "tavily": lambda: TavilySearchProvider(self.config.tavily_api_key),
            "brave": lambda: BraveSearchProvider(
                self.config.brave_api_key, timeout=self.config.provider_timeout
            ),
            "site_discovery": lambda: SiteDiscoverySearchProvider(self._site_discovery_gate()),
        }
        return [factories[name]() for name in self.config.search_order if name in factories]

    def _build_extract_providers(self) -> list[ExtractProvider]:
        factories: dict[str, Callable[[], ExtractProvider]] = {
            "direct": lambda: DirectFetchExtractor(
                fetcher=self._fetcher,
                timeout=self.config.page_fetch_timeout,
                max_page_chars=self.config.max_page_chars,
                max_bytes=self.config.max_html_bytes,
            ),
            "jina_reader": lambda: JinaReaderExtractor(
                api_key=self.config.jina_api_key,
                base_url=self.config.jina_reader_base_url,
                timeout=self.config.provider_timeout,
                max_page_chars=self.config.max_page_chars,
            ),
        }
        return [factories[name]() for name in self.config.extract_order if name in factories]

    # --- ladder ---

    async def _run_ladder(
        self,
        capability: str,
        rungs: Sequence[tuple[str, bool, Callable[[], Awaitable[T]]]],
        timeout: float,
    ) -> ToolResult[T]:
        failures: list[ProviderFailure] = []
        for name, available, call in rungs:
            if not available:
                failures.append(ProviderFailure(name, "unavailable", "not configured"))
                log_provider_call(capability, name, "skipped", error="not configured")
                continue

            started = time.monotonic()
            try:
                value = await asyncio.wait_for(call(), timeout=timeout)
            except Exception as exc:
                kind, message = classify_failure(exc)
                failures.append(ProviderFailure(name, kind, message))
                log_provider_call(
                    capability,
                    name,
                    kind,
                    duration_ms=int((time.monotonic() - started) * 1000),
                    error=message,
                )
                continue

            log_provider_call(
                capability,
                name,
                "success",
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            return ToolResult(ok=True, value=value, provider=name, failures=failures)
        return ToolResult(ok=False, failures=failures)

    def _llm_rungs(
        self, caller: str, system: str, prompt: str, parse: Callable[[str], T]
    ) -> list[tuple[str, bool, Callable[[], Awaitable[T]]]]:
        def make_call(client: ChatClient) -> Callable[[], Awaitable[T]]:
            async def call() -> T:
                result = await client.complete(system=system, prompt=prompt, caller=caller)
                return parse(result.text)

            return call

        return [(client.name, True, make_call(client)) for client in self.llm_clients]

    # --- capabilities ---

    async def search(
        self, query: str, options: SearchOptions | None = None
    ) -> ToolResult[list[SearchResult]]:
        """Search ladder. No local default: exhaustion is a typed failure."""
        opts = options or SearchOptions()

        def make_call(provider: SearchProvider) -> Callable[[], Awaitable[list[SearchResult]]]:
            async def call() -> list[SearchResult]:
                results = await provider.search(
                    query, max_results=opts.max_results, time_range=opts.time_range
                )
                if not results:
                    raise ProviderError("no results", kind="empty")
                return results

            return call

        rungs = [(p.name, p.available, make_call(p)) for p in self.search_providers]
        return await self._run_ladder("search", rungs, self.config.provider_timeout)

    async def extract(self, url: str) -> ToolResult[ExtractedPage]:
        """Extraction ladder. Exhaustion is a typed failure; the caller may fall back to a snippet."""

        def make_call(provider: ExtractProvider) -> Callable[[], Awaitable[ExtractedPage]]:
            async def call() -> ExtractedPage:
                return await provider.extract(url)

            return call

        rungs = [(p.name, p.available, make_call(p)) for p in self.extract_providers]
        return await self._run_ladder("extract", rungs, self.config.provider_timeout)

    async def summarize(self, text: str, max_length: int = 500) -> ToolResult[str]:
        system, prompt = prompt_pair("summarize", text=text, max_length=max_length)

        def parse(raw: str) -> str:
            return raw.strip()

        result = await self._run_ladder(
            "summarize",
            self._llm_rungs("summarize", system, prompt, parse),
            self.config.llm_timeout,
        )
        if result.ok:
            return result
        return ToolResult(
            ok=True,
            value=truncate(text, max_length),
            provider=LOCAL_PROVIDER,
            failures=result.failures,
        )

    async def analyze(self, query: str, sources: list[Source]) -> ToolResult[list[Finding]]:
        known_ids = {s.id for s in sources}
        source_block = "\n\n".join(
            f"[{s.id}] ({s.domain}): {s.summary or s.content[:SOURCE_CHARS_FOR_ANALYSIS]}"
            for s in sources
        )
        system, prompt = prompt_pair("analyze", query=query, sources=source_block)

        def parse(raw: str) -> list[Finding]:
            return parse_findings(raw, known_ids)

        result = await self._run_ladder(
            "analyze",
            self._llm_rungs("analyze", system, prompt, parse),
            self.config.llm_timeout,
        )
        if result.ok:
            return result
        return ToolResult(
            ok=True,
            value=basic_analysis(sources),
            provider=LOCAL_PROVIDER,
            failures=result.failures,
        )

    async def generate_report(
        self, query: str, findings: list[Finding], sources: list[Source]
    ) -> ToolResult[Report]:
        findings_block = "\n".join(
            f"- {f.claim} (confidence: {f.confidence * 100:.0f}%)" for f in findings
        )
        sources_block = "\n".join(
            f"[{idx + 1}] {s.title} ({s.url})" for idx, s in enumerate(sources)
        )
        system, prompt = prompt_pair(
            "report", query=query, findings=findings_block, sources=sources_block
        )

        result = await self._run_ladder(
            "generate_report",
            self._llm_rungs("report", system, prompt, _require_text),
            self.config.llm_timeout,
        )
        if result.ok:
            report = compile_markdown_report(
                query, result.value, findings, sources, generated_by=result.provider
            )
            return ToolResult(ok=True, value=report, provider=result.provider, failures=result.failures)
        return ToolResult(
            ok=True,
            value=compile_local_report(query, findings, sources),
            provider=LOCAL_PROVIDER,
            failures=result.failures,
        )


def _require_text(raw: str) -> str:
    if not raw.strip():
        raise MalformedResponseError("empty report")
    return raw


def _clamp(value: Any, default: float = 0.5) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, number))


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


def parse_findings(raw: str, known_source_ids: set[str]) -> list[Finding]:
    """Parse the analyze payload. Code fences are tolerated; anything else malformed raises."""
    cleaned = JSON_FENCE.sub("", raw).strip()
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(f"analysis is not JSON: {exc.msg}") from exc
    items = payload.get("findings") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise MalformedResponseError("analysis payload has no findings list")

    findings: list[Finding] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        claim = str(item.get("claim") or "").strip()
        if not claim:
            continue
        findings.append(
            Finding(
                claim=claim,
                evidence=_str_list(item.get("evidence")),
                contradictions=_str_list(item.get("contradictions")),
                confidence=_clamp(item.get("confidence")),
                source_ids=[
                    sid
                    for sid in _str_list(item.get("sourceIds") or item.get("source_ids"))
                    if sid in known_source_ids
                ],
            )
        )
    if not findings:
        raise MalformedResponseError("analysis produced no usable findings")
    return findings
