from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from app.models.research import Citation, Finding, Source

if TYPE_CHECKING:
    from app.services.tool_adapter import ToolAdapter

KEY_WORDS = 3
MIN_KEY_CHARS = 8
VERIFY_MIN_DOMAINS = 2
VERIFY_CONFIDENCE = 0.8
BASIC_ANALYSIS_SOURCES = 5
EVIDENCE_CHARS = 200

_NON_WORD = re.compile(r"[^\w\s]+")
_SPACES = re.compile(r"\s+")
_NUMBER = re.compile(r"\d+(?:[.,]\d+)*%?")


def normalize_claim(text: str) -> str:
    """Lowercase, punctuation to spaces, whitespace collapsed."""
    return _SPACES.sub(" ", _NON_WORD.sub(" ", (text or "").lower())).strip()


def claim_key(claim: str) -> str | None:
    """First three normalized words, or None when too short to be distinctive."""
    key = " ".join(normalize_claim(claim).split()[:KEY_WORDS])
    if len(key) < MIN_KEY_CHARS:
        return None
    return key


def _key_pattern(key: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(key)}\b")


def _numbers(claim: str) -> set[str]:
    return {n.replace(",", "") for n in _NUMBER.findall(claim or "")}


def basic_analysis(sources: list[Source]) -> list[Finding]:
    """Provider-free findings: the first sentence of each of the first five sources."""
    findings: list[Finding] = []
    usable = [s for s in sources if s.content.strip()]
    for source in usable[:BASIC_ANALYSIS_SOURCES]:
        content = source.content.strip()
        findings.append(
            Finding(
                claim=content.split(".")[0].strip() + ".",
                evidence=[content[:EVIDENCE_CHARS]],
                confidence=source.reliability,
                source_ids=[source.id],
            )
        )
    return findings


@dataclass
class VerificationResult:
    findings: list[Finding]
    # source id -> back-references to add to that source
    citations: dict[str, list[Citation]] = field(default_factory=dict)


def find_contradictions(findings: list[Finding]) -> dict[str, list[str]]:
    """Findings sharing a key but quoting different numbers contradict each other."""
    by_key: dict[str, list[Finding]] = {}
    for finding in findings:
        key = claim_key(finding.claim)
        if key:
            by_key.setdefault(key, []).append(finding)

    conflicts: dict[str, list[str]] = {}
    for group in by_key.values():
        for idx, left in enumerate(group):
            left_numbers = _numbers(left.claim)
            if not left_numbers:
                continue
            for right in group[idx + 1:]:
                right_numbers = _numbers(right.claim)
                if right_numbers and right_numbers != left_numbers:
                    conflicts.setdefault(left.id, []).append(f"Conflicts with: {right.claim}")
                    conflicts.setdefault(right.id, []).append(f"Conflicts with: {left.claim}")
    return conflicts


def verify_findings(findings: list[Finding], sources: list[Source]) -> VerificationResult:
    """Corroborate each finding against the extracted sources.

    A source corroborates a finding when the finding's key appears in the
    source text on word boundaries. Corroboration is counted per distinct
    domain. A finding is verified with two or more corroborating domains, or
    a provider confidence above 0.8.
    """
    normalized = [(s, normalize_claim(s.content)) for s in sources]
    conflicts = find_contradictions(findings)
    citations: dict[str, list[Citation]] = {}
    verified: list[Finding] = []

    for finding in findings:
        key = claim_key(finding.claim)
        supporting: list[Source] = []
        if key:
            pattern = _key_pattern(key)
            supporting = [s for s, text in normalized if pattern.search(text)]

        domains = {s.domain for s in supporting}
        source_ids = list(dict.fromkeys([*finding.source_ids, *(s.id for s in supporting)]))
        contradictions = list(
            dict.fromkeys([*finding.contradictions, *conflicts.get(finding.id, [])])
        )
        for source in supporting:
            citations.setdefault(source.id, []).append(
                Citation(text=finding.claim, context=source.url, confidence=finding.confidence)
            )

        verified.append(
            finding.model_copy(
                update={
                    "source_ids": source_ids,
                    "contradictions": contradictions,
                    "verified": len(domains) >= VERIFY_MIN_DOMAINS
                    or finding.confidence > VERIFY_CONFIDENCE,
                }
            )
        )
    return VerificationResult(findings=verified, citations=citations)


class ConsolidationEngine:
    """Turns extracted sources into checked findings."""

    def __init__(self, adapter: "ToolAdapter"):
        self.adapter = adapter

    async def analyze(self, query: str, sources: list[Source]) -> list[Finding]:
        result = await self.adapter.analyze(query, sources)
        return list(result.value or [])

    def verify(self, findings: list[Finding], sources: list[Source]) -> VerificationResult:
        return verify_findings(findings, sources)
