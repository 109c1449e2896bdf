from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import Field

from app.models.research import CamelModel, QueryAnalysis, SourceStatus


# --- Requests ---


class RunOptions(CamelModel):
    strict_mode: bool = False
    min_sources: int = 2
    limit: Optional[int] = None
    check_sources: bool = False
    seed_urls: list[str] = Field(default_factory=list)
    country: Optional[str] = None
    max_extract: Optional[int] = None


class RunRequest(CamelModel):
    query: Optional[str] = None
    stream: bool = False
    options: RunOptions = Field(default_factory=RunOptions)


class SearchRequest(CamelModel):
    query: Optional[str] = None
    limit: Optional[int] = None
    country: Optional[str] = None
    strict_mode: bool = False
    min_sources: int = 2
    seed_urls: list[str] = Field(default_factory=list)
    deep_scrape: bool = True


class RouteRequest(CamelModel):
    query: Optional[str] = None


# --- Responses ---


class SearchItem(CamelModel):
    url: str
    title: str
    description: str = ""
    markdown: str = ""
    fetched_at: str
    source_status: Literal["success", "partial", "failed"] = "success"
    response_time: Optional[int] = None
    word_count: int = 0
    # plain extracted text for in-process consumers; not part of the response body
    text: str = Field(default="", exclude=True)


class SearchSummary(CamelModel):
    sources_checked: int
    sources_reachable: int
    sources_unreachable: int
    total_pages_found: int
    total_pages_extracted: int
    keywords: list[str] = Field(default_factory=list)
    domains: list[str] = Field(default_factory=list)


class SearchResponse(CamelModel):
    success: bool = True
    data: list[SearchItem] = Field(default_factory=list)
    total_results: int = 0
    search_method: str = "realtime_scrape"
    country: Optional[str] = None
    strict_mode: bool = False
    source_statuses: list[SourceStatus] = Field(default_factory=list)
    summary: SearchSummary


class ToolChainStep(CamelModel):
    tool: str
    query: Optional[str] = None
    urls: list[str] = Field(default_factory=list)
    params: dict[str, Any] = Field(default_factory=dict)


class RouteResponse(CamelModel):
    success: bool = True
    analysis: QueryAnalysis
    tool_chain: list[ToolChainStep] = Field(default_factory=list)
