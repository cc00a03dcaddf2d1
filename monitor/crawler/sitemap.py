"""Sitemap-driven URL discovery strategies."""

from __future__ import annotations

import gzip
import logging
import zlib
from dataclasses import dataclass
from typing import Callable, Protocol

from bs4 import BeautifulSoup

from .config import CrawlConfig, SiteProfile
from .fetcher import PageFetcher
from .types import SitemapError
from .url import clean_loc, filter_under_base

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]
StopCallback = Callable[[], bool]

_GZIP_MAGIC = b"\x1f\x8b"


@dataclass(slots=True)
class SitemapDocument:
    """Parsed `<loc>` entries of one sitemap document."""

    child_sitemaps: list[str]
    page_urls: list[str]

    @property
    def is_index(self) -> bool:
        return bool(self.child_sitemaps)


def decode_sitemap_body(body: bytes) -> bytes:
    """Return the XML payload, transparently inflating gzip bodies."""

    if body[:2] == _GZIP_MAGIC:
        try:
            return gzip.decompress(body)
        except (OSError, EOFError, zlib.error) as exc:
            raise SitemapError(f"Invalid gzip sitemap: {exc}") from exc
    return body


def parse_sitemap_document(body: bytes) -> SitemapDocument:
    """Parse a sitemap index or leaf sitemap into its `<loc>` entries.

    Raises SitemapError when the payload is neither a `<urlset>` nor a
    `<sitemapindex>` document.
    """

    soup = BeautifulSoup(decode_sitemap_body(body), "xml")
    if soup.find("sitemapindex") is None and soup.find("urlset") is None:
        raise SitemapError("Document is not a sitemap (no <urlset> or <sitemapindex>)")

    child_sitemaps: list[str] = []
    for entry in soup.find_all("sitemap"):
        loc = clean_loc(entry.loc.get_text() if entry.loc else None)
        if loc:
            child_sitemaps.append(loc)

    page_urls: list[str] = []
    for entry in soup.find_all("url"):
        loc = clean_loc(entry.loc.get_text() if entry.loc else None)
        if loc:
            page_urls.append(loc)

    return SitemapDocument(child_sitemaps=child_sitemaps, page_urls=page_urls)


class DiscoveryStrategy(Protocol):
    """Produces the initial crawl candidates for one site."""

    follows_links: bool

    def discover_urls(
        self,
        profile: SiteProfile,
        *,
        on_progress: ProgressCallback | None = None,
        should_stop: StopCallback | None = None,
    ) -> list[str]:
        ...


class SitemapResolver:
    """Resolve a site's sitemap (index or leaf) into an ordered URL list.

    Failures on the index or on any child sitemap are logged and contribute no
    URLs; discovery itself never raises for network or XML problems. An empty
    result is returned as-is and the engine decides how to fall back.
    """

    follows_links = False

    def __init__(self, fetcher: PageFetcher) -> None:
        self.fetcher = fetcher

    def discover_urls(
        self,
        profile: SiteProfile,
        *,
        on_progress: ProgressCallback | None = None,
        should_stop: StopCallback | None = None,
    ) -> list[str]:
        if on_progress is not None:
            on_progress(f"Fetching sitemap: {profile.sitemap_url}")

        root = self._load(profile.sitemap_url)
        if root is None:
            return []

        if not root.is_index:
            urls = filter_under_base(root.page_urls, profile.base_url)
            LOGGER.info("[%s] Leaf sitemap listed %d in-scope URLs", profile.key, len(urls))
            return urls

        discovered: dict[str, None] = {}
        total = len(root.child_sitemaps)
        LOGGER.info("[%s] Sitemap index lists %d child sitemaps", profile.key, total)

        for index, child_url in enumerate(root.child_sitemaps, start=1):
            if should_stop is not None and should_stop():
                LOGGER.info("[%s] Sitemap discovery stopped at %d/%d", profile.key, index - 1, total)
                break

            if on_progress is not None:
                on_progress(f"Parsing sitemap {index}/{total}: {child_url}")

            child = self._load(child_url)
            if child is None:
                continue

            for url in filter_under_base(child.page_urls, profile.base_url):
                discovered.setdefault(url, None)

        LOGGER.info("[%s] Discovered %d unique URLs from sitemaps", profile.key, len(discovered))
        return list(discovered)

    def _load(self, sitemap_url: str) -> SitemapDocument | None:
        result = self.fetcher.fetch(sitemap_url)
        if not result.ok or result.body is None:
            LOGGER.warning("Failed to fetch sitemap %s: %s", sitemap_url, result.describe_error())
            return None

        try:
            return parse_sitemap_document(result.body)
        except SitemapError as exc:
            LOGGER.warning("Failed to parse sitemap %s: %s", sitemap_url, exc)
            return None


class SitemapLinkResolver(SitemapResolver):
    """Sitemap discovery plus in-scope link following during the crawl."""

    follows_links = True


def build_discovery(config: CrawlConfig, fetcher: PageFetcher) -> DiscoveryStrategy:
    """Return the discovery strategy selected by `config.discovery`."""

    if config.discovery == "sitemap_links":
        return SitemapLinkResolver(fetcher)
    return SitemapResolver(fetcher)


__all__ = [
    "DiscoveryStrategy",
    "SitemapDocument",
    "SitemapLinkResolver",
    "SitemapResolver",
    "build_discovery",
    "decode_sitemap_body",
    "parse_sitemap_document",
]
