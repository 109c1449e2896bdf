from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

import httpx

from app.errors import MalformedResponseError, ProviderError
from app.tools.content_extractor import extract_main_content
from app.tools.page_fetcher import Fetcher, default_fetcher
from app.tools.web_utils import clean_content

JINA_TITLE_PATTERN = re.compile(r"^Title:\s*(.+)$", re.MULTILINE)
JINA_CONTENT_MARKER = "Markdown Content:"


@dataclass
class ExtractedPage:
    url: str
    title: str
    content: str
    method: str
    description: str = ""
    word_count: int = 0


class ExtractProvider(Protocol):
    name: str

    @property
    def available(self) -> bool: ...

    async def extract(self, url: str) -> ExtractedPage: ...


class DirectFetchExtractor:
    """Fetch the page ourselves and pull out the readable body."""

    name = "direct"

    def __init__(
        self,
        *,
        fetcher: Fetcher | None = None,
        timeout: float = 12.0,
        max_page_chars: int = 20000,
        max_bytes: int = 1_500_000,
    ):
        self._fetcher = fetcher or default_fetcher(max_bytes)
        self._timeout = timeout
        self._max_page_chars = max_page_chars

    @property
    def available(self) -> bool:
        return True

    async def extract(self, url: str) -> ExtractedPage:
        result = await self._fetcher(url, self._timeout)
        if not result.ok:
            kind = "timeout" if result.timed_out else "http_error"
            raise ProviderError(result.error or "fetch failed", kind=kind)

        extracted = extract_main_content(url, result.text, max_chars=self._max_page_chars)
        if not extracted.text:
            raise MalformedResponseError(f"No readable content at {url}")
        return ExtractedPage(
            url=url,
            title=extracted.title,
            content=extracted.text,
            method=f"{self.name}:{extracted.method}",
            description=extracted.description,
            word_count=extracted.word_count,
        )


def _parse_jina_markdown(url: str, body: str, max_chars: int) -> ExtractedPage:
    title_match = JINA_TITLE_PATTERN.search(body)
    title = title_match.group(1).strip() if title_match else ""
    content = body
    if JINA_CONTENT_MARKER in body:
        content = body.split(JINA_CONTENT_MARKER, 1)[1]
    content = content.strip()
    if not content:
        raise MalformedResponseError("Jina Reader returned an empty document")
    return ExtractedPage(
        url=url,
        title=title,
        content=clean_content(content, max_chars),
        method="jina_reader",
        word_count=len(content.split()),
    )


class JinaReaderExtractor:
    """Jina Reader: GET <base>/<url>, markdown back. Works without a key at a lower rate limit."""

    name = "jina_reader"

    def __init__(
        self,
        *,
        api_key: str = "",
        base_url: str = "https://r.jina.ai",
        timeout: float = 30.0,
        max_page_chars: int = 20000,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_page_chars = max_page_chars

    @property
    def available(self) -> bool:
        return bool(self._base_url)

    async def extract(self, url: str) -> ExtractedPage:
        headers = {"X-Return-Format": "markdown"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(f"{self._base_url}/{url}", headers=headers)
            response.raise_for_status()
            body = response.text
        return _parse_jina_markdown(url, body, self._max_page_chars)
