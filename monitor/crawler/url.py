"""URL identity, scope checks, and link extraction helpers.

URL identity in the monitor is the exact string: sitemap `<loc>` values are
only trimmed, and `hash_url` hashes the string as-is. Links discovered while
following pages are reduced to scheme, host and path before they are queued.
"""

from __future__ import annotations

from typing import Iterable
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from .types import hash_url

DEFAULT_ALLOWED_SCHEMES = ("http", "https")
SKIP_HREF_PREFIXES = ("javascript:", "mailto:", "tel:", "data:")


def is_http_url(url: str) -> bool:
    """Return True if URL is absolute and uses http(s)."""

    parsed = urlsplit(url)
    if not parsed.scheme or not parsed.netloc:
        return False
    return parsed.scheme.lower() in DEFAULT_ALLOWED_SCHEMES


def clean_loc(value: str | None) -> str | None:
    """Trim a sitemap `<loc>` value, returning None when it is not usable."""

    if value is None:
        return None
    candidate = value.strip()
    if not candidate or not is_http_url(candidate):
        return None
    return candidate


def strip_query_and_fragment(url: str) -> str:
    """Drop query string and fragment, keeping scheme, host and path."""

    parsed = urlsplit(url)
    return urlunsplit((parsed.scheme, parsed.netloc, parsed.path, "", ""))


def is_under_base(url: str, base_url: str) -> bool:
    """Return True when URL starts with the site's base URL prefix."""

    base = base_url.rstrip("/")
    if not url.startswith(base):
        return False
    rest = url[len(base):]
    # Reject sibling hosts such as https://example.com.evil/.
    return rest == "" or rest[0] in "/?#"


def filter_under_base(urls: Iterable[str], base_url: str) -> list[str]:
    """Keep URLs under base, dropping duplicates while preserving order."""

    output: list[str] = []
    seen: set[str] = set()
    for url in urls:
        if url in seen or not is_under_base(url, base_url):
            continue
        seen.add(url)
        output.append(url)
    return output


def resolve_url(base_url: str, href: str | None) -> str | None:
    """Resolve possibly relative link against base URL and validate scheme."""

    if href is None:
        return None

    candidate = href.strip()
    if not candidate or candidate.startswith("#"):
        return None

    lowered = candidate.lower()
    if any(lowered.startswith(prefix) for prefix in SKIP_HREF_PREFIXES):
        return None

    absolute = urljoin(base_url, candidate)
    if not is_http_url(absolute):
        return None
    return absolute


def extract_links_from_html(
    html: str | bytes,
    *,
    page_url: str,
    scope_base_url: str | None = None,
) -> list[str]:
    """Extract followable links from anchors in document order.

    Links carrying a fragment are skipped, query strings are removed, and when
    `scope_base_url` is set only links under that prefix are returned.
    """

    return links_from_soup(
        BeautifulSoup(html, "lxml"),
        page_url=page_url,
        scope_base_url=scope_base_url,
    )


def links_from_soup(
    soup: BeautifulSoup,
    *,
    page_url: str,
    scope_base_url: str | None = None,
) -> list[str]:
    """Same as `extract_links_from_html` for an already parsed document."""

    out: list[str] = []
    seen: set[str] = set()

    for element in soup.find_all(["a", "area"]):
        href = element.get("href")
        if not href:
            continue

        resolved = resolve_url(page_url, str(href))
        if not resolved or "#" in resolved:
            continue

        cleaned = strip_query_and_fragment(resolved)
        if scope_base_url is not None and not is_under_base(cleaned, scope_base_url):
            continue

        if cleaned in seen:
            continue
        seen.add(cleaned)
        out.append(cleaned)

    return out


__all__ = [
    "DEFAULT_ALLOWED_SCHEMES",
    "SKIP_HREF_PREFIXES",
    "clean_loc",
    "extract_links_from_html",
    "filter_under_base",
    "hash_url",
    "is_http_url",
    "is_under_base",
    "links_from_soup",
    "resolve_url",
    "strip_query_and_fragment",
]
