from __future__ import annotations

import ipaddress
import re
from urllib.parse import urlparse

from app.errors import UrlNotAllowedError

BLOCKED_HOSTS = {"localhost", "localhost.localdomain", "0.0.0.0", "::1", "ip6-localhost"}


def _is_private_host(hostname: str) -> bool:
    host = hostname.strip("[]").lower()
    if host in BLOCKED_HOSTS or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
        or address.is_multicast
    )


def validate_public_url(url: str) -> str:
    """Return a normalized public HTTP(S) URL or raise UrlNotAllowedError.

    Bare hosts get an https:// prefix. Loopback, private, link-local and
    reserved targets are rejected.
    """
    candidate = (url or "").strip()
    if not candidate:
        raise UrlNotAllowedError("URL is empty")
    if "://" not in candidate:
        candidate = f"https://{candidate}"

    parsed = urlparse(candidate)
    if parsed.scheme not in ("http", "https"):
        raise UrlNotAllowedError("Only HTTP/HTTPS URLs are allowed")
    hostname = parsed.hostname or ""
    if not hostname:
        raise UrlNotAllowedError("URL has no host")
    if _is_private_host(hostname):
        raise UrlNotAllowedError(f"URL target not allowed: {hostname}")
    return parsed.geturl()


def normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def truncate(text: str, max_length: int) -> str:
    """Cut to max_length and mark the cut with an ellipsis."""
    if max_length <= 0 or len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def clean_content(text: str, max_length: int = 8000) -> str:
    """Clean scraped content: collapse whitespace, trim to max length."""
    return truncate(normalize_text(text), max_length)


def extract_domain(url: str) -> str:
    """Extract host for display, without a leading www."""
    try:
        host = urlparse(url).netloc.lower()
    except Exception:
        return url
    if host.startswith("www."):
        host = host[4:]
    return host
