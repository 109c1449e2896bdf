from __future__ import annotations

from dataclasses import dataclass, field

from bs4 import BeautifulSoup

from app.tools.web_utils import normalize_text, truncate

NOISE_SELECTORS = (
    "script",
    "style",
    "noscript",
    "nav",
    "footer",
    "aside",
    "header",
    ".ad",
    ".advertisement",
    ".social",
    ".comment",
)

MAIN_SELECTORS = ("article", "main", '[role="main"]', ".content", "#content")


@dataclass
class ExtractedContent:
    url: str
    title: str
    description: str
    text: str
    method: str
    word_count: int
    headings: list[str] = field(default_factory=list)


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return ""
    value = tag.get("content")
    return normalize_text(value) if isinstance(value, str) else ""


def _extract_title(soup: BeautifulSoup) -> str:
    title = _meta_content(soup, property="og:title")
    if title:
        return title
    h1 = soup.find("h1")
    if h1 is not None and h1.get_text(strip=True):
        return normalize_text(h1.get_text(" "))
    if soup.title and soup.title.string:
        return normalize_text(soup.title.string)
    return ""


def _extract_description(soup: BeautifulSoup) -> str:
    return _meta_content(soup, property="og:description") or _meta_content(
        soup, name="description"
    )


def _extract_with_trafilatura(raw_html: str) -> str:
    import trafilatura

    extracted = trafilatura.extract(raw_html, output_format="txt")
    if not isinstance(extracted, str):
        return ""
    return normalize_text(extracted)


def _extract_with_soup(soup: BeautifulSoup) -> tuple[str, list[str]]:
    root = None
    for selector in MAIN_SELECTORS:
        root = soup.select_one(selector)
        if root is not None:
            break
    if root is None:
        root = soup.body or soup
    for selector in NOISE_SELECTORS:
        for node in root.select(selector):
            node.decompose()

    headings: list[str] = []
    for heading in root.find_all(["h1", "h2", "h3"]):
        text = normalize_text(heading.get_text(" "))
        if 3 < len(text) < 150:
            headings.append(text)
    return normalize_text(root.get_text(" ")), headings


def extract_main_content(
    url: str,
    raw_content: str,
    *,
    max_chars: int = 20000,
) -> ExtractedContent:
    """Extract the readable body of a page.

    Trafilatura first; when it returns nothing usable, fall back to the first
    main-content element (article, main, ...) with boilerplate removed.
    """
    seems_html = "<html" in raw_content.lower() or "<body" in raw_content.lower()
    html = raw_content if seems_html else f"<html><body>{raw_content}</body></html>"
    soup = BeautifulSoup(html, "html.parser")
    title = _extract_title(soup)
    description = _extract_description(soup)

    method = "trafilatura"
    text = _extract_with_trafilatura(html)
    soup_text, headings = _extract_with_soup(soup)
    if len(text.split()) < 50 and len(soup_text) > len(text):
        text = soup_text
        method = "soup"

    clipped = truncate(text, max_chars)
    return ExtractedContent(
        url=url,
        title=title,
        description=description,
        text=clipped,
        method=method,
        word_count=len(text.split()),
        headings=headings,
    )
