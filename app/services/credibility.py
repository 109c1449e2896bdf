from __future__ import annotations

from typing import Literal

from app.tools.web_utils import extract_domain

Credibility = Literal["official", "premium", "verified", "suspicious", "unverified"]

OFFICIAL_DOMAINS = (
    "cma.gov.sa",
    "cma.org.sa",
    "tadawul.com.sa",
    "saudiexchange.sa",
    "sec.gov",
    "mof.gov.sa",
)

PREMIUM_DOMAINS = ("ft.com", "bloomberg.com", "wsj.com", "economist.com")

VERIFIED_DOMAINS = (
    "reuters.com",
    "cnbc.com",
    "bbc.com",
    "bbc.co.uk",
    "aljazeera.com",
    "arabnews.com",
    "argaam.com",
    "zawya.com",
    "gulfnews.com",
    "khaleejtimes.com",
    "thenationalnews.com",
    "mubasher.info",
    "theconversation.com",
    "marketscreener.com",
    "marketwatch.com",
    "finance.yahoo.com",
    "tradingview.com",
    "investing.com",
    "seekingalpha.com",
    "forbes.com",
    "fortune.com",
    "businessinsider.com",
    "techcrunch.com",
    "arstechnica.com",
    "theverge.com",
    "arxiv.org",
    "pubmed.ncbi.nlm.nih.gov",
)

SUSPICIOUS_MARKERS = ("example.com", "placeholder", "test.com", "fake")

RELIABILITY = {
    "official": 0.95,
    "premium": 0.9,
    "verified": 0.85,
    "unverified": 0.6,
    "suspicious": 0.3,
}
SNIPPET_PENALTY = 0.1


def _matches(domain: str, candidates: tuple[str, ...]) -> bool:
    return any(domain == d or domain.endswith("." + d) for d in candidates)


def classify_domain(url: str) -> Credibility:
    domain = extract_domain(url)
    if any(marker in domain for marker in SUSPICIOUS_MARKERS):
        return "suspicious"
    if _matches(domain, OFFICIAL_DOMAINS):
        return "official"
    if _matches(domain, PREMIUM_DOMAINS):
        return "premium"
    if _matches(domain, VERIFIED_DOMAINS):
        return "verified"
    return "unverified"


def source_reliability(url: str, *, snippet_only: bool = False) -> float:
    """Prior reliability of a source, from its domain's credibility tier."""
    score = RELIABILITY[classify_domain(url)]
    if snippet_only:
        score -= SNIPPET_PENALTY
    return round(max(0.0, min(1.0, score)), 2)
