import pytest

from app.errors import UrlNotAllowedError
from app.services.credibility import classify_domain, source_reliability
from app.tools.content_extractor import extract_main_content
from app.tools.web_utils import clean_content, extract_domain, truncate, validate_public_url


@pytest.mark.parametrize(
    "url",
    [
        "http://localhost:8000/admin",
        "http://127.0.0.1/",
        "http://10.0.0.5/internal",
        "http://192.168.1.1",
        "http://169.254.169.254/latest/meta-data",
        "http://[::1]/",
        "ftp://files.example.org/x",
        "file:///etc/passwd",
        "https://",
    ],
)
def test_rejects_non_public_targets(url):
    with pytest.raises(UrlNotAllowedError):
        validate_public_url(url)


def test_bare_host_gets_https():
    assert validate_public_url("reuters.com/markets") == "https://reuters.com/markets"
    assert validate_public_url(" http://bbc.com ") == "http://bbc.com"


def test_truncate_and_clean():
    assert truncate("abcdef", 3) == "abc..."
    assert truncate("abc", 3) == "abc"
    assert clean_content("  a \n\n b\t c ", 100) == "a b c"


def test_extract_domain_strips_www():
    assert extract_domain("https://www.Reuters.com/x") == "reuters.com"
    assert extract_domain("https://news.bbc.co.uk") == "news.bbc.co.uk"


def test_credibility_tiers():
    assert classify_domain("https://www.sec.gov/filing") == "official"
    assert classify_domain("https://markets.ft.com/data") == "premium"
    assert classify_domain("https://www.reuters.com/a") == "verified"
    assert classify_domain("https://example.com/a") == "suspicious"
    assert classify_domain("https://notft.com/a") == "unverified"


def test_reliability_snippet_penalty():
    assert source_reliability("https://reuters.com/a") == 0.85
    assert source_reliability("https://reuters.com/a", snippet_only=True) == 0.75
    assert source_reliability("https://blog.unknown.net") == 0.6


def test_extractor_falls_back_to_main_element():
    html = (
        "<html><head><meta property='og:title' content='OG Title'></head><body>"
        "<nav>menu links</nav><main><h2>Section heading</h2><p>Short body text.</p></main>"
        "<script>var x = 1;</script></body></html>"
    )
    extracted = extract_main_content("https://a.com", html)
    assert extracted.title == "OG Title"
    assert "Short body text." in extracted.text
    assert "menu links" not in extracted.text
    assert "var x" not in extracted.text
    assert "Section heading" in extracted.headings


def test_extractor_wraps_fragments_and_clips():
    extracted = extract_main_content("https://a.com", "<p>" + "word " * 100 + "</p>", max_chars=50)
    assert extracted.word_count == 100
    assert len(extracted.text) == 53
