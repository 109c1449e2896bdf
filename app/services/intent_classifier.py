"""Query intent classification and tool-chain planning.

Pure and synchronous. The rule table is evaluated top to bottom and the first
matching rule wins; queries matching none fall through to general research.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from app.models.research import Intent, QueryAnalysis
from app.models.schemas import ToolChainStep

URL_PATTERN = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+", re.IGNORECASE)
LINKEDIN_PATTERN = re.compile(r"linkedin\.com/(in|company)/[\w-]+", re.IGNORECASE)
TWITTER_PATTERN = re.compile(r"twitter\.com/\w+|x\.com/\w+", re.IGNORECASE)

PROFILE_PATTERNS = (
    re.compile(r"\b(who is|about|profile|biography|background|career)\b", re.IGNORECASE),
    re.compile(r"\b(CEO|CFO|COO|chairman|director|founder|executive)\s+(of|at)\b", re.IGNORECASE),
    re.compile(r"linkedin\.com/in/", re.IGNORECASE),
    re.compile(r"\b(person|individual|leader|manager)\b.*\b(information|details|summary)\b", re.IGNORECASE),
)

COMPANY_PATTERNS = (
    re.compile(r"\b(company|corporation|inc|ltd|llc|plc|about company|company profile)\b", re.IGNORECASE),
    re.compile(r"\b(business|enterprise|organization|firm)\s+(information|details|overview)\b", re.IGNORECASE),
    re.compile(r"linkedin\.com/company/", re.IGNORECASE),
    re.compile(r"\b(sector|industry|market)\s+(analysis|research)\b", re.IGNORECASE),
)

LEAD_PATTERNS = (
    re.compile(r"\b(find|search|lookup|enrich|discover)\b.*\b(contact|email|phone)\b", re.IGNORECASE),
    re.compile(r"\b(lead|prospect|contact)\s+(enrichment|data|information)\b", re.IGNORECASE),
    re.compile(r"\b(person|ceo|founder)\b.*\b(email|contact|details)\b", re.IGNORECASE),
)

NEWS_PATTERNS = (
    re.compile(r"\b(latest|recent|breaking|today|news|announcement)\b", re.IGNORECASE),
    re.compile(r"\b(stock|market|trading|ipo|listing)\s+(news|update)\b", re.IGNORECASE),
    re.compile(r"\b(cma|regulation|violation|fine|approval)\b", re.IGNORECASE),
)

NAME_PATTERN = re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)+)\b")
NAME_STOPLIST = frozenset({"The", "What", "How", "Why", "When", "Where", "Which", "Who"})
# Name part is case-sensitive (capitalized words); only the suffix ignores case.
COMPANY_PATTERN = re.compile(
    r"\b([A-Z][a-zA-Z]*(?:\s+[A-Z][a-zA-Z]*)*)\s+"
    r"(?i:(Inc|Corp|Ltd|LLC|PLC|Co|Company|Group|Holdings))\b"
)

DEEP_QUERY_LENGTH = 100
DEEP_MARKERS = ("comprehensive", "analysis")
MAX_KEYWORDS = 10

STOP_WORDS = frozenset(
    """
    the a an is are was were be been being have has had do does did will would
    could should may might must shall can need dare ought used to of in for on
    with at by from as into through during before after above below between
    under again further then once here there when where why how all each few
    more most other some such no nor not only own same so than too very just
    and but if or because until while although though what who which this that
    these those i me my myself we our ours ourselves you your yours yourself
    yourselves he him his himself she her hers herself it its itself they them
    their theirs themselves
    """.split()
)

PROFILE_AUGMENT = "biography career background"
COMPANY_AUGMENT = "company profile financial overview"
MAX_SCRAPE_URLS = 5


@dataclass(frozen=True)
class Signals:
    query: str
    urls: tuple[str, ...]
    companies: tuple[str, ...]


@dataclass(frozen=True)
class IntentRule:
    name: str
    predicate: Callable[[Signals], bool]
    intent: Intent
    confidence: float
    suggested_agents: tuple[str, ...]


def _any(patterns: tuple[re.Pattern[str], ...], text: str) -> bool:
    return any(p.search(text) for p in patterns)


def is_profile_url(text: str) -> bool:
    return bool(LINKEDIN_PATTERN.search(text) or TWITTER_PATTERN.search(text))


def _is_deep(s: Signals) -> bool:
    lowered = s.query.lower()
    return len(s.query) > DEEP_QUERY_LENGTH or any(m in lowered for m in DEEP_MARKERS)


INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule(
        "url",
        lambda s: bool(s.urls),
        Intent.URL_SCRAPE,
        0.95,
        ("ai-scrape-command", "crawl4ai"),
    ),
    IntentRule(
        "profile",
        lambda s: _any(PROFILE_PATTERNS, s.query),
        Intent.PROFILE_LOOKUP,
        0.85,
        ("lead-enrichment", "ai-scrape-command", "wide-research"),
    ),
    IntentRule(
        "lead",
        lambda s: _any(LEAD_PATTERNS, s.query),
        Intent.LEAD_ENRICHMENT,
        0.9,
        ("lead-enrichment", "explorium-enrich"),
    ),
    IntentRule(
        "company",
        lambda s: _any(COMPANY_PATTERNS, s.query) or bool(s.companies),
        Intent.COMPANY_RESEARCH,
        0.85,
        ("wide-research", "explorium-enrich", "gpt-researcher"),
    ),
    IntentRule(
        "news",
        lambda s: _any(NEWS_PATTERNS, s.query),
        Intent.NEWS_SEARCH,
        0.8,
        ("news-search", "wide-research"),
    ),
    IntentRule(
        "deep",
        _is_deep,
        Intent.DEEP_RESEARCH,
        0.75,
        ("gpt-researcher", "research-orchestrator", "wide-research"),
    ),
)

DEFAULT_RULE = IntentRule(
    "default",
    lambda s: True,
    Intent.GENERAL_RESEARCH,
    0.5,
    ("wide-research", "research-search"),
)


def extract_urls(query: str) -> list[str]:
    return URL_PATTERN.findall(query)


def extract_names(query: str) -> list[str]:
    return [
        match
        for match in NAME_PATTERN.findall(query)
        if match.split()[0] not in NAME_STOPLIST
    ]


def extract_companies(query: str) -> list[str]:
    companies = []
    for match in COMPANY_PATTERN.finditer(query):
        words = match.group(1).split()
        while words and words[0] in NAME_STOPLIST:
            words.pop(0)
        if words:
            companies.append(" ".join([*words, match.group(2)]))
    return companies


def extract_keywords(query: str) -> list[str]:
    words = [w for w in query.lower().split() if len(w) > 2 and w not in STOP_WORDS]
    return words[:MAX_KEYWORDS]


def classify(query: str) -> QueryAnalysis:
    signals = Signals(
        query=query,
        urls=tuple(extract_urls(query)),
        companies=tuple(extract_companies(query)),
    )
    rule = next((r for r in INTENT_RULES if r.predicate(signals)), DEFAULT_RULE)

    intent = rule.intent
    agents = list(rule.suggested_agents)
    if intent is Intent.URL_SCRAPE and is_profile_url(query):
        intent = Intent.PROFILE_LOOKUP
        agents.append("lead-enrichment")

    return QueryAnalysis(
        intent=intent,
        confidence=rule.confidence,
        extracted_urls=list(signals.urls),
        extracted_names=extract_names(query),
        extracted_companies=list(signals.companies),
        keywords=extract_keywords(query),
        suggested_agents=agents,
        matched_rule=rule.name,
    )


def _strip_urls(query: str) -> str:
    return " ".join(URL_PATTERN.sub(" ", query).split())


def plan_tool_chain(query: str, analysis: QueryAnalysis) -> list[ToolChainStep]:
    """Ordered steps for the orchestrator: URL extraction and/or searches."""
    steps: list[ToolChainStep] = []
    urls = analysis.extracted_urls[:MAX_SCRAPE_URLS]
    if urls:
        steps.append(ToolChainStep(tool="extract", urls=urls))

    text = _strip_urls(query)
    intent = analysis.intent

    if intent is Intent.URL_SCRAPE:
        return steps

    if intent is Intent.PROFILE_LOOKUP:
        if text:
            steps.append(
                ToolChainStep(
                    tool="search",
                    query=f"{text} {PROFILE_AUGMENT}",
                    params={"max_results": 10},
                )
            )
    elif intent is Intent.LEAD_ENRICHMENT:
        steps.append(ToolChainStep(tool="search", query=text, params={"max_results": 10}))
    elif intent is Intent.COMPANY_RESEARCH:
        steps.append(
            ToolChainStep(
                tool="search",
                query=f"{text} {COMPANY_AUGMENT}",
                params={"max_results": 15},
            )
        )
        if len(text) > 50:
            steps.append(ToolChainStep(tool="search", query=text, params={"max_results": 10}))
    elif intent is Intent.NEWS_SEARCH:
        steps.append(
            ToolChainStep(
                tool="search",
                query=text,
                params={"max_results": 20, "time_range": "week"},
            )
        )
    elif intent is Intent.DEEP_RESEARCH:
        steps.append(ToolChainStep(tool="search", query=text, params={"max_results": 20}))
    else:
        steps.append(ToolChainStep(tool="search", query=text, params={"max_results": 15}))
    return steps


class QueryIntentClassifier:
    """Object face of `classify` and `plan_tool_chain` for injection."""

    rules = INTENT_RULES

    def classify(self, query: str) -> QueryAnalysis:
        return classify(query)

    def plan(self, query: str, analysis: QueryAnalysis) -> list[ToolChainStep]:
        return plan_tool_chain(query, analysis)
