"""
tests/test_sitemap.py

Sitemap parsing and discovery: leaf vs index documents, gzip payloads,
scope filtering, partial failures, progress and stop callbacks.
"""

from __future__ import annotations

import gzip

import pytest

from conftest import BASE_URL, FakeFetcher, sitemap_index, urlset
from monitor.crawler import (
    SitemapError,
    SitemapLinkResolver,
    SitemapResolver,
    build_discovery,
    parse_sitemap_document,
)
from monitor.crawler.sitemap import decode_sitemap_body


# ---------------------------------------------------------------------------
# parse_sitemap_document
# ---------------------------------------------------------------------------


class TestParseSitemapDocument:
    def test_leaf_sitemap(self) -> None:
        doc = parse_sitemap_document(urlset(f"{BASE_URL}/a", f"{BASE_URL}/b"))
        assert not doc.is_index
        assert doc.page_urls == [f"{BASE_URL}/a", f"{BASE_URL}/b"]

    def test_index_sitemap(self) -> None:
        doc = parse_sitemap_document(sitemap_index(f"{BASE_URL}/s1.xml", f"{BASE_URL}/s2.xml"))
        assert doc.is_index
        assert doc.child_sitemaps == [f"{BASE_URL}/s1.xml", f"{BASE_URL}/s2.xml"]

    def test_loc_values_are_trimmed_and_invalid_ones_dropped(self) -> None:
        body = (
            b'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
            b"<url><loc>\n  https://example.gov/a  \n</loc></url>"
            b"<url><loc>not-a-url</loc></url>"
            b"<url><lastmod>2024-01-01</lastmod></url>"
            b"</urlset>"
        )
        assert parse_sitemap_document(body).page_urls == ["https://example.gov/a"]

    def test_gzip_body_is_inflated(self) -> None:
        body = gzip.compress(urlset(f"{BASE_URL}/a"))
        assert parse_sitemap_document(body).page_urls == [f"{BASE_URL}/a"]

    def test_plain_body_passes_through(self) -> None:
        assert decode_sitemap_body(b"<urlset/>") == b"<urlset/>"

    def test_corrupt_gzip_raises(self) -> None:
        with pytest.raises(SitemapError):
            decode_sitemap_body(b"\x1f\x8bnot really gzip")

    def test_non_sitemap_document_raises(self) -> None:
        with pytest.raises(SitemapError):
            parse_sitemap_document(b"<html><body>Maintenance</body></html>")


# ---------------------------------------------------------------------------
# SitemapResolver
# ---------------------------------------------------------------------------


class TestSitemapResolver:
    def test_leaf_urls_are_filtered_to_base(self, profile) -> None:
        fetcher = FakeFetcher()
        fetcher.add_xml(
            profile.sitemap_url,
            urlset(f"{BASE_URL}/a", "https://elsewhere.gov/b", f"{BASE_URL}/a", "https://example.gov.evil/c"),
        )

        urls = SitemapResolver(fetcher).discover_urls(profile)

        assert urls == [f"{BASE_URL}/a"]

    def test_index_children_are_unioned_in_order(self, profile) -> None:
        fetcher = FakeFetcher()
        fetcher.add_xml(profile.sitemap_url, sitemap_index(f"{BASE_URL}/s1.xml", f"{BASE_URL}/s2.xml"))
        fetcher.add_xml(f"{BASE_URL}/s1.xml", urlset(f"{BASE_URL}/a", f"{BASE_URL}/b"))
        fetcher.add_xml(f"{BASE_URL}/s2.xml", urlset(f"{BASE_URL}/b", f"{BASE_URL}/c"))

        urls = SitemapResolver(fetcher).discover_urls(profile)

        assert urls == [f"{BASE_URL}/a", f"{BASE_URL}/b", f"{BASE_URL}/c"]

    def test_failed_child_contributes_nothing(self, profile) -> None:
        fetcher = FakeFetcher()
        fetcher.add_xml(profile.sitemap_url, sitemap_index(f"{BASE_URL}/broken.xml", f"{BASE_URL}/s2.xml"))
        fetcher.add_xml(f"{BASE_URL}/s2.xml", urlset(f"{BASE_URL}/c"))

        urls = SitemapResolver(fetcher).discover_urls(profile)

        assert urls == [f"{BASE_URL}/c"]

    def test_unreachable_root_yields_empty_list(self, profile) -> None:
        assert SitemapResolver(FakeFetcher()).discover_urls(profile) == []

    def test_malformed_root_yields_empty_list(self, profile) -> None:
        fetcher = FakeFetcher()
        fetcher.add_xml(profile.sitemap_url, b"<html>oops</html>")
        assert SitemapResolver(fetcher).discover_urls(profile) == []

    def test_progress_messages(self, profile) -> None:
        fetcher = FakeFetcher()
        fetcher.add_xml(profile.sitemap_url, sitemap_index(f"{BASE_URL}/s1.xml"))
        fetcher.add_xml(f"{BASE_URL}/s1.xml", urlset(f"{BASE_URL}/a"))
        messages: list[str] = []

        SitemapResolver(fetcher).discover_urls(profile, on_progress=messages.append)

        assert messages == [
            f"Fetching sitemap: {profile.sitemap_url}",
            f"Parsing sitemap 1/1: {BASE_URL}/s1.xml",
        ]

    def test_stop_between_children(self, profile) -> None:
        fetcher = FakeFetcher()
        fetcher.add_xml(profile.sitemap_url, sitemap_index(f"{BASE_URL}/s1.xml", f"{BASE_URL}/s2.xml"))
        fetcher.add_xml(f"{BASE_URL}/s1.xml", urlset(f"{BASE_URL}/a"))
        fetcher.add_xml(f"{BASE_URL}/s2.xml", urlset(f"{BASE_URL}/b"))
        stop_after_first = iter([False, True])

        urls = SitemapResolver(fetcher).discover_urls(profile, should_stop=lambda: next(stop_after_first))

        assert urls == [f"{BASE_URL}/a"]
        assert f"{BASE_URL}/s2.xml" not in fetcher.calls


class TestBuildDiscovery:
    def test_default_is_sitemap_only(self, config) -> None:
        discovery = build_discovery(config, FakeFetcher())
        assert isinstance(discovery, SitemapResolver)
        assert discovery.follows_links is False

    def test_sitemap_links(self, config) -> None:
        config.discovery = "sitemap_links"
        discovery = build_discovery(config, FakeFetcher())
        assert isinstance(discovery, SitemapLinkResolver)
        assert discovery.follows_links is True
