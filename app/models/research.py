from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class JobStatus(str, Enum):
    PENDING = "pending"
    PLANNING = "planning"
    SEARCHING = "searching"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    VERIFYING = "verifying"
    COMPILING = "compiling"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Forward order of the state machine. FAILED is a side exit, not a step.
STATUS_ORDER: tuple[JobStatus, ...] = (
    JobStatus.PENDING,
    JobStatus.PLANNING,
    JobStatus.SEARCHING,
    JobStatus.EXTRACTING,
    JobStatus.ANALYZING,
    JobStatus.VERIFYING,
    JobStatus.COMPILING,
    JobStatus.COMPLETED,
)


class Intent(str, Enum):
    URL_SCRAPE = "url_scrape"
    PROFILE_LOOKUP = "profile_lookup"
    COMPANY_RESEARCH = "company_research"
    LEAD_ENRICHMENT = "lead_enrichment"
    NEWS_SEARCH = "news_search"
    DEEP_RESEARCH = "deep_research"
    GENERAL_RESEARCH = "general_research"


FailureReason = Literal["cancelled", "strict_mode", "stage_fatal", "unexpected"]
SourceState = Literal["success", "failed", "timeout", "blocked", "no_content"]


class Citation(CamelModel):
    id: str = Field(default_factory=lambda: new_id("cite"))
    text: str
    context: str
    confidence: float = 0.0


class Source(CamelModel):
    id: str = Field(default_factory=lambda: new_id("source"))
    url: str
    domain: str
    title: str = "Untitled"
    content: str = ""
    extracted_at: str = Field(default_factory=utc_now)
    reliability: float = 0.5
    citations: list[Citation] = Field(default_factory=list)
    summary: Optional[str] = None
    extraction_method: Optional[str] = None


class Finding(CamelModel):
    id: str = Field(default_factory=lambda: new_id("finding"))
    claim: str
    evidence: list[str] = Field(default_factory=list)
    confidence: float = 0.5
    source_ids: list[str] = Field(default_factory=list)
    contradictions: list[str] = Field(default_factory=list)
    verified: bool = False


class ReportSection(CamelModel):
    heading: str
    content: str = ""
    citations: list[str] = Field(default_factory=list)


class ReportMetadata(CamelModel):
    total_sources: int
    verified_claims: int
    confidence_score: float
    generated_at: str = Field(default_factory=utc_now)
    generated_by: str = "local_template"


class Report(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=lambda: new_id("report"))
    title: str
    summary: str
    sections: list[ReportSection] = Field(default_factory=list)
    citations: list[Citation] = Field(default_factory=list)
    metadata: ReportMetadata


class SourceStatus(CamelModel):
    name: str
    base_url: str
    status: SourceState = "failed"
    pages_found: int = 0
    pages_extracted: int = 0
    error: Optional[str] = None
    response_time: Optional[int] = None


class QueryAnalysis(CamelModel):
    intent: Intent
    confidence: float
    extracted_urls: list[str] = Field(default_factory=list)
    extracted_names: list[str] = Field(default_factory=list)
    extracted_companies: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    suggested_agents: list[str] = Field(default_factory=list)
    matched_rule: Optional[str] = None


class ResearchJob(CamelModel):
    id: str = Field(default_factory=lambda: new_id("job"))
    query: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    sources: list[Source] = Field(default_factory=list)
    findings: list[Finding] = Field(default_factory=list)
    report: Optional[Report] = None
    error: Optional[str] = None
    failure_reason: Optional[FailureReason] = None
    analysis: Optional[QueryAnalysis] = None
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def snapshot(self) -> "ResearchJob":
        """Deep copy handed to consumers so they never share mutable state."""
        return self.model_copy(deep=True)
