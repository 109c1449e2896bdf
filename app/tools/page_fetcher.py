from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from app.errors import UrlNotAllowedError
from app.tools.web_utils import validate_public_url

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
)

DEFAULT_MAX_BYTES = 1_500_000
MAX_REDIRECTS = 5


@dataclass(slots=True)
class FetchResult:
    url: str
    ok: bool
    status_code: int
    text: str
    response_time_ms: int
    error: str | None = None
    timed_out: bool = False


Fetcher = Callable[[str, float], Awaitable[FetchResult]]


async def _get_public(
    client: httpx.AsyncClient, url: str, headers: dict[str, str], timeout: float
) -> httpx.Response:
    """GET with redirects followed by hand; every hop must be a public target."""
    current = validate_public_url(url)
    for _ in range(MAX_REDIRECTS + 1):
        response = await client.get(
            current, headers=headers, timeout=timeout, follow_redirects=False
        )
        if not response.is_redirect:
            return response
        current = validate_public_url(str(response.url.join(response.headers["location"])))
    raise httpx.TooManyRedirects(
        f"Exceeded {MAX_REDIRECTS} redirects", request=response.request
    )


async def fetch(
    url: str,
    timeout: float,
    *,
    max_bytes: int = DEFAULT_MAX_BYTES,
    client: httpx.AsyncClient | None = None,
) -> FetchResult:
    """GET a page with a hard timeout. Never raises; failures are typed."""
    started = time.monotonic()
    headers = {
        "User-Agent": random.choice(USER_AGENTS),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.5",
        "Accept-Language": "en-US,en;q=0.9",
        "Cache-Control": "no-cache",
    }

    def elapsed() -> int:
        return int((time.monotonic() - started) * 1000)

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as owned:
                response = await _get_public(owned, url, headers, timeout)
        else:
            response = await _get_public(client, url, headers, timeout)
    except UrlNotAllowedError as exc:
        return FetchResult(url, False, 0, "", elapsed(), error=str(exc))
    except httpx.TimeoutException:
        return FetchResult(url, False, 0, "", elapsed(), error="Timeout", timed_out=True)
    except httpx.HTTPError as exc:
        return FetchResult(url, False, 0, "", elapsed(), error=str(exc) or type(exc).__name__)

    if response.status_code >= 400:
        return FetchResult(
            url, False, response.status_code, "", elapsed(), error=f"HTTP {response.status_code}"
        )

    body = response.content[:max_bytes]
    text = body.decode(response.encoding or "utf-8", errors="ignore")
    return FetchResult(url, True, response.status_code, text, elapsed())


def default_fetcher(max_bytes: int = DEFAULT_MAX_BYTES) -> Fetcher:
    async def _fetch(url: str, timeout: float) -> FetchResult:
        return await fetch(url, timeout, max_bytes=max_bytes)

    return _fetch
