from __future__ import annotations

import re
from typing import TYPE_CHECKING

from app.models.research import (
    Citation,
    Finding,
    Report,
    ReportMetadata,
    ReportSection,
    Source,
)

if TYPE_CHECKING:
    from app.services.tool_adapter import ToolAdapter

CITATION_MARKER = re.compile(r"\[(\d+)\]")
HEADING_MARKER = re.compile(r"^#+\s*")
HEADING_PREFIXES = ("# ", "## ")
DEFAULT_SUMMARY = "Research completed."
LOCAL_GENERATOR = "local_template"


def parse_markdown_sections(markdown: str) -> list[ReportSection]:
    """Split a markdown report into sections.

    A line starting with "# " or "## " opens a section; every following line
    is appended to its content with a trailing newline, and each `[n]` marker
    on such a line is recorded in order. Text before the first heading is
    dropped. Deeper headings ("### ") are ordinary body lines.
    """
    sections: list[ReportSection] = []
    current: ReportSection | None = None
    for line in markdown.split("\n"):
        if line.startswith(HEADING_PREFIXES):
            if current is not None:
                sections.append(current)
            current = ReportSection(heading=HEADING_MARKER.sub("", line, count=1))
        elif current is not None:
            current.content += line + "\n"
            current.citations.extend(m.group(0) for m in CITATION_MARKER.finditer(line))
    if current is not None:
        sections.append(current)
    return sections


def build_citations(sources: list[Source]) -> list[Citation]:
    return [
        Citation(
            id=f"cite-{idx}",
            text=f"[{idx + 1}] {source.title}",
            context=source.url,
            confidence=source.reliability,
        )
        for idx, source in enumerate(sources)
    ]


def mean_confidence(findings: list[Finding]) -> float:
    if not findings:
        return 0.0
    return sum(f.confidence for f in findings) / len(findings)


def build_metadata(
    findings: list[Finding], sources: list[Source], generated_by: str
) -> ReportMetadata:
    return ReportMetadata(
        total_sources=len(sources),
        verified_claims=sum(1 for f in findings if f.verified),
        confidence_score=mean_confidence(findings),
        generated_by=generated_by,
    )


def report_title(query: str) -> str:
    return f"Research Report: {query}"


def compile_markdown_report(
    query: str,
    markdown: str,
    findings: list[Finding],
    sources: list[Source],
    *,
    generated_by: str,
) -> Report:
    sections = parse_markdown_sections(markdown)
    summary = sections[0].content.strip() if sections else ""
    return Report(
        title=report_title(query),
        summary=summary or DEFAULT_SUMMARY,
        sections=sections,
        citations=build_citations(sources),
        metadata=build_metadata(findings, sources, generated_by),
    )


def compile_local_report(query: str, findings: list[Finding], sources: list[Source]) -> Report:
    return Report(
        title=report_title(query),
        summary=f"Research completed with {len(sources)} sources and {len(findings)} findings.",
        sections=[
            ReportSection(
                heading="Key Findings",
                content="\n".join(f"- {f.claim}" for f in findings),
            ),
            ReportSection(
                heading="Sources",
                content="\n".join(
                    f"{idx + 1}. [{s.title}]({s.url})" for idx, s in enumerate(sources)
                ),
            ),
        ],
        citations=build_citations(sources),
        metadata=build_metadata(findings, sources, LOCAL_GENERATOR),
    )


class ReportCompiler:
    def __init__(self, adapter: "ToolAdapter"):
        self.adapter = adapter

    async def compile(self, query: str, findings: list[Finding], sources: list[Source]) -> Report:
        result = await self.adapter.generate_report(query, findings, sources)
        # generate_report always yields a report (local template on exhaustion)
        return result.value
