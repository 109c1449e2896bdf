from __future__ import annotations

import pytest

from app.services.prompt_store import prompt_pair, render_prompt


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt("summarize.user", max_length=300, text="Solar is cheap.")
    assert "300 characters" in prompt
    assert prompt.endswith("Solar is cheap.")


def test_prompt_pair_returns_system_and_user():
    system, user = prompt_pair("analyze", query="solar", sources="[s1] (a.com): text")
    assert "JSON" in system
    assert user.startswith("Query: solar")
    assert "[s1] (a.com): text" in user


def test_report_prompt_asks_for_numbered_citations():
    system, _ = prompt_pair("report", query="q", findings="- f", sources="[1] t (u)")
    assert "[1]" in system


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_render_prompt_raises_for_missing_value():
    with pytest.raises(KeyError):
        render_prompt("summarize.user", text="only text")
