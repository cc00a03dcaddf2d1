"""
tests/conftest.py

Shared fixtures: an in-memory fetcher keyed by URL, a small site profile,
a zero-delay config rooted in tmp_path, and recording notifier/summarizer
doubles. Nothing here touches the network.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Sequence

import pytest

from monitor.crawler import (
    CrawlConfig,
    FetchResult,
    JsonlGateway,
    PageRecord,
    SiteProfile,
    WidgetRule,
)

BASE_URL = "https://example.gov"
SITEMAP_URL = f"{BASE_URL}/sitemap.xml"


def html_page(title: str, body: str) -> bytes:
    return f"<html><head><title>{title}</title></head><body>{body}</body></html>".encode("utf-8")


def urlset(*urls: str) -> bytes:
    entries = "".join(f"<url><loc>{url}</loc></url>" for url in urls)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</urlset>'
    ).encode("utf-8")


def sitemap_index(*urls: str) -> bytes:
    entries = "".join(f"<sitemap><loc>{url}</loc></sitemap>" for url in urls)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</sitemapindex>'
    ).encode("utf-8")


def ok_result(url: str, body: bytes, content_type: str = "text/html; charset=utf-8") -> FetchResult:
    return FetchResult(
        requested_url=url,
        final_url=url,
        status_code=200,
        content_type=content_type,
        body=body,
        elapsed_ms=1,
    )


class FakeFetcher:
    """Serves canned responses; unknown URLs answer HTTP 404."""

    def __init__(self, pages: dict[str, bytes | FetchResult] | None = None) -> None:
        self.pages: dict[str, bytes | FetchResult] = dict(pages or {})
        self.calls: list[str] = []
        self.hooks: dict[str, object] = {}
        self._lock = threading.Lock()

    def add_xml(self, url: str, body: bytes) -> None:
        self.pages[url] = ok_result(url, body, "application/xml")

    def fetch(self, url: str) -> FetchResult:
        with self._lock:
            self.calls.append(url)
        hook = self.hooks.get(url)
        if callable(hook):
            hook()

        payload = self.pages.get(url)
        if payload is None:
            return FetchResult(
                requested_url=url,
                final_url=url,
                status_code=404,
                content_type="text/html",
                body=b"not found",
            )
        if isinstance(payload, FetchResult):
            return payload
        return ok_result(url, payload)


class RecordingNotifier:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[tuple[str | None, list[PageRecord], str]] = []
        self.error = error

    def notify(self, webhook_url: str | None, matches: Sequence[PageRecord], site_label: str) -> int:
        self.calls.append((webhook_url, list(matches), site_label))
        if self.error is not None:
            raise self.error
        return 1


class StaticSummarizer:
    def __init__(self, summary: str = "A short English summary.", error: Exception | None = None) -> None:
        self.summary = summary
        self.error = error
        self.calls: list[tuple[str, str, str]] = []

    def summarize(self, title: str, content: str, url: str) -> str:
        self.calls.append((title, content, url))
        if self.error is not None:
            raise self.error
        return self.summary


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def profile() -> SiteProfile:
    return SiteProfile(
        key="testsite",
        label="Test Site",
        base_url=BASE_URL,
        sitemap_url=SITEMAP_URL,
        seed_url=f"{BASE_URL}/en",
        keywords=("e-invoice", "peppol"),
        patterns=(r"\belectronic\s+invoic\w*",),
        widget_rules=(WidgetRule(labels=("related applications",), min_links=2),),
    )


@pytest.fixture()
def config(tmp_path: Path) -> CrawlConfig:
    return CrawlConfig(request_delay_seconds=0.0, output_dir=str(tmp_path))


@pytest.fixture()
def gateway(tmp_path: Path) -> JsonlGateway:
    return JsonlGateway(tmp_path, "testsite")


@pytest.fixture()
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
