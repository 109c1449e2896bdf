"""Tests for query intent classification and tool-chain planning."""
import pytest

from app.models.research import Intent
from app.services.intent_classifier import (
    INTENT_RULES,
    classify,
    extract_companies,
    extract_keywords,
    extract_names,
    plan_tool_chain,
)


class TestRuleTable:
    def test_rule_order_is_fixed(self):
        assert [r.name for r in INTENT_RULES] == [
            "url",
            "profile",
            "lead",
            "company",
            "news",
            "deep",
        ]

    def test_confidences(self):
        confidences = {r.intent: r.confidence for r in INTENT_RULES}
        assert confidences[Intent.URL_SCRAPE] == 0.95
        assert confidences[Intent.LEAD_ENRICHMENT] == 0.9
        assert confidences[Intent.DEEP_RESEARCH] == 0.75
        assert all(0.75 <= r.confidence <= 0.95 for r in INTENT_RULES)


class TestClassify:
    @pytest.mark.parametrize(
        "query",
        [
            "https://example.com/page",
            "summarize http://news.site.org/a?b=1 for me",
            "who is behind https://some-company.io/about",
        ],
    )
    def test_url_queries_route_to_scrape_with_high_confidence(self, query):
        analysis = classify(query)
        assert analysis.intent in (Intent.URL_SCRAPE, Intent.PROFILE_LOOKUP)
        assert analysis.confidence >= 0.9

    def test_bare_url(self):
        analysis = classify("https://example.com/page")
        assert analysis.intent == Intent.URL_SCRAPE
        assert analysis.extracted_urls == ["https://example.com/page"]
        assert analysis.matched_rule == "url"
        assert analysis.suggested_agents == ["ai-scrape-command", "crawl4ai"]

    def test_profile_url_upgrades_to_profile_lookup(self):
        analysis = classify("https://www.linkedin.com/in/jane-doe")
        assert analysis.intent == Intent.PROFILE_LOOKUP
        assert analysis.confidence == 0.95
        assert "lead-enrichment" in analysis.suggested_agents

    def test_ceo_query(self):
        analysis = classify("Who is the CEO of Example Corp")
        assert analysis.intent == Intent.PROFILE_LOOKUP
        assert "Example Corp" in analysis.extracted_companies
        assert "lead-enrichment" in analysis.suggested_agents

    def test_profile_beats_lead_when_both_match(self):
        analysis = classify("background and contact email for the founder")
        assert analysis.intent == Intent.PROFILE_LOOKUP

    def test_lead_enrichment(self):
        analysis = classify("find contact email for Acme sales team")
        assert analysis.intent == Intent.LEAD_ENRICHMENT
        assert analysis.confidence == 0.9

    def test_company_by_suffix_only(self):
        analysis = classify("Globex Holdings revenue")
        assert analysis.intent == Intent.COMPANY_RESEARCH
        assert analysis.extracted_companies == ["Globex Holdings"]

    def test_news(self):
        analysis = classify("latest tadawul listing news")
        assert analysis.intent == Intent.NEWS_SEARCH
        assert analysis.confidence == 0.8

    def test_deep_by_length(self):
        query = "x " * 60
        assert classify(query).intent == Intent.DEEP_RESEARCH

    def test_deep_by_marker(self):
        assert classify("a comprehensive look at solar panels").intent == Intent.DEEP_RESEARCH

    def test_default_general(self):
        analysis = classify("solar panels efficiency")
        assert analysis.intent == Intent.GENERAL_RESEARCH
        assert analysis.confidence == 0.5
        assert analysis.suggested_agents == ["wide-research", "research-search"]
        assert analysis.matched_rule == "default"

    def test_idempotent(self):
        query = "Who is the CEO of Example Corp"
        assert classify(query) == classify(query)


class TestExtraction:
    def test_names_skip_interrogatives(self):
        names = extract_names("What Happened to Jane Doe and The Beatles")
        assert "Jane Doe" in names
        assert all(not n.startswith(("What", "The")) for n in names)

    def test_company_name_must_be_capitalized(self):
        assert extract_companies("research the company") == []
        assert extract_companies("Initech LLC and Hooli inc") == ["Initech LLC", "Hooli inc"]

    def test_company_drops_leading_function_words(self):
        assert extract_companies("The Example Co reported growth") == ["Example Co"]
        assert extract_companies("Which Acme Corp subsidiary") == ["Acme Corp"]
        assert extract_companies("The Group") == []

    def test_keywords(self):
        keywords = extract_keywords("What is the market share of the top EV makers in 2024")
        assert keywords == ["market", "share", "top", "makers", "2024"]

    def test_keywords_capped_at_ten(self):
        query = " ".join(f"word{i}" for i in range(20))
        assert len(extract_keywords(query)) == 10


class TestPlanToolChain:
    def test_url_scrape_extracts_only(self):
        query = "https://example.com/page"
        steps = plan_tool_chain(query, classify(query))
        assert [s.tool for s in steps] == ["extract"]
        assert steps[0].urls == ["https://example.com/page"]

    def test_profile_url_adds_search_for_remaining_text(self):
        query = "Jane Doe https://linkedin.com/in/jane-doe"
        steps = plan_tool_chain(query, classify(query))
        assert [s.tool for s in steps] == ["extract", "search"]
        assert steps[1].query == "Jane Doe biography career background"

    def test_company_augmentation(self):
        query = "Globex Holdings revenue"
        steps = plan_tool_chain(query, classify(query))
        assert steps[0].query == "Globex Holdings revenue company profile financial overview"
        assert steps[0].params["max_results"] == 15

    def test_news_restricted_to_recent(self):
        query = "latest tadawul listing news"
        steps = plan_tool_chain(query, classify(query))
        assert steps[0].params["time_range"] == "week"

    def test_general_single_search(self):
        query = "solar panels efficiency"
        steps = plan_tool_chain(query, classify(query))
        assert len(steps) == 1
        assert steps[0].tool == "search"
        assert steps[0].query == query
