"""Core type definitions for the crawl engine.

This module is intentionally dependency-light so other crawler modules can import
shared records without introducing cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from hashlib import sha256
from typing import Any, Mapping


class ContentKind(str, Enum):
    """Normalized content categories used across fetch/parse."""

    HTML = "html"
    PDF = "pdf"
    XML = "xml"
    TEXT = "text"
    BINARY = "binary"
    UNKNOWN = "unknown"


class CrawlStatus(str, Enum):
    """Lifecycle states of one site crawl session."""

    IDLE = "idle"
    SCRAPING = "scraping"
    COMPLETED = "completed"
    STOPPED = "stopped"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in {CrawlStatus.COMPLETED, CrawlStatus.STOPPED, CrawlStatus.ERROR}


class RunMode(str, Enum):
    """Who triggered a run."""

    MANUAL = "manual"
    AUTO = "auto"


JSONPrimitive = str | int | float | bool | None
JSONValue = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]
JSONDict = dict[str, JSONValue]


class MonitorError(Exception):
    """Base class for errors raised by this package."""


class EngineBusyError(MonitorError):
    """Raised when a run is requested while one is already active."""


class GatewayError(MonitorError):
    """Raised when the persistence backend cannot serve a request."""


class NotificationError(MonitorError):
    """Raised when a webhook delivery fails."""


class SummarizationError(MonitorError):
    """Raised when the summarization service cannot produce a summary."""


class SitemapError(MonitorError):
    """Raised when a sitemap document cannot be fetched or parsed."""


def utc_now_iso() -> str:
    """Return an RFC3339-like UTC timestamp string for records and logs."""

    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def hash_url(url: str) -> str:
    """Deterministic storage key for a URL (hex SHA-256 of the exact string)."""

    return sha256(url.encode("utf-8")).hexdigest()


def infer_content_kind(content_type: str | None, url: str) -> ContentKind:
    """Infer coarse content kind from HTTP content type and URL."""

    normalized = (content_type or "").split(";", maxsplit=1)[0].strip().lower()
    lower_url = url.lower().split("?", maxsplit=1)[0]

    if "html" in normalized:
        return ContentKind.HTML
    if "application/pdf" in normalized or lower_url.endswith(".pdf"):
        return ContentKind.PDF
    if normalized.endswith("/xml") or normalized.endswith("+xml"):
        return ContentKind.XML
    if normalized.startswith("text/"):
        return ContentKind.TEXT
    if normalized:
        return ContentKind.BINARY
    if lower_url.endswith((".xml", ".xml.gz")):
        return ContentKind.XML
    return ContentKind.UNKNOWN


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text else None


@dataclass(frozen=True, slots=True)
class MatchResult:
    """Outcome of classifying one page against the keyword table."""

    is_match: bool
    keyword: str | None = None


@dataclass(slots=True)
class FetchResult:
    """Result of attempting to download one URL."""

    requested_url: str
    final_url: str | None
    status_code: int | None
    content_type: str | None
    body: bytes | None
    fetched_at: str = field(default_factory=utc_now_iso)
    elapsed_ms: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return (
            self.error is None
            and self.status_code is not None
            and 200 <= self.status_code < 300
            and self.body is not None
        )

    @property
    def content_length(self) -> int | None:
        return None if self.body is None else len(self.body)

    @property
    def normalized_content_kind(self) -> ContentKind:
        return infer_content_kind(self.content_type, self.final_url or self.requested_url)

    def describe_error(self) -> str:
        if self.error:
            return self.error
        if self.status_code is not None:
            return f"HTTP status {self.status_code}"
        return "Unknown fetch failure"


@dataclass(slots=True)
class ParseResult:
    """Result of parsing fetched bytes into text, title and links."""

    url: str
    title: str | None
    text: str
    out_links: list[str] = field(default_factory=list)
    content_kind: ContentKind = ContentKind.UNKNOWN
    parser: str | None = None
    metadata: dict[str, JSONValue] = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class PageRecord:
    """One classified page, written once per run to the persistence gateway."""

    url: str
    title: str
    content_preview: str
    scraped_at: str
    is_match: bool
    matched_keyword: str | None = None
    summary: str | None = None

    @property
    def url_hash(self) -> str:
        return hash_url(self.url)

    def with_summary(self, summary: str | None) -> "PageRecord":
        return replace(self, summary=summary)

    def to_json(self) -> JSONDict:
        return {
            "id": self.url_hash,
            "url": self.url,
            "title": self.title,
            "content": self.content_preview,
            "scraped_at": self.scraped_at,
            "is_e_invoicing": self.is_match,
            "matched_keyword": self.matched_keyword,
            "summary": self.summary,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "PageRecord":
        return cls(
            url=str(payload["url"]),
            title=str(payload.get("title") or ""),
            content_preview=str(payload.get("content") or ""),
            scraped_at=str(payload.get("scraped_at") or ""),
            is_match=bool(payload.get("is_e_invoicing", True)),
            matched_keyword=_optional_str(payload.get("matched_keyword")),
            summary=_optional_str(payload.get("summary")),
        )


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Immutable record emitted once when a run is finalized."""

    mode: RunMode
    started_at: str
    completed_at: str
    total_pages_crawled: int
    new_match_count: int
    site: str | None = None
    status: CrawlStatus | None = None

    def to_json(self) -> JSONDict:
        return {
            "site": self.site,
            "mode": self.mode.value,
            "status": None if self.status is None else self.status.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "total_pages_crawled": self.total_pages_crawled,
            "new_e_invoicing_pages": self.new_match_count,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "RunSummary":
        status = payload.get("status")
        return cls(
            mode=RunMode(str(payload.get("mode", RunMode.MANUAL.value))),
            started_at=str(payload.get("started_at") or ""),
            completed_at=str(payload.get("completed_at") or ""),
            total_pages_crawled=int(payload.get("total_pages_crawled", 0)),
            new_match_count=int(payload.get("new_e_invoicing_pages", 0)),
            site=_optional_str(payload.get("site")),
            status=None if status is None else CrawlStatus(str(status)),
        )


@dataclass(slots=True)
class CrawlSession:
    """Mutable run state of one site target, read by pollers as snapshots."""

    site: str | None = None
    status: CrawlStatus = CrawlStatus.IDLE
    mode: RunMode | None = None
    started_at: str | None = None
    completed_at: str | None = None
    total_pages_crawled: int = 0
    e_invoicing_pages_found: int = 0
    duplicates_ignored: int = 0
    queue_size: int = 0
    current_url: str | None = None
    error_message: str | None = None

    def copy(self) -> "CrawlSession":
        return replace(self)

    def to_json(self) -> JSONDict:
        return {
            "site": self.site,
            "status": self.status.value,
            "mode": None if self.mode is None else self.mode.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "total_pages_crawled": self.total_pages_crawled,
            "e_invoicing_pages_found": self.e_invoicing_pages_found,
            "duplicates_ignored": self.duplicates_ignored,
            "queue_size": self.queue_size,
            "current_url": self.current_url,
            "error_message": self.error_message,
        }


@dataclass(frozen=True, slots=True)
class StartResult:
    """Synchronous answer of `CrawlEngine.start`."""

    accepted: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class UpsertResult:
    """Answer of a page upsert: whether the URL was unknown before."""

    is_new: bool


@dataclass(frozen=True, slots=True)
class AppSettings:
    """Per-site settings kept by the persistence gateway."""

    auto_run_enabled: bool = False
    webhook_url: str | None = None
    last_auto_run_at: str | None = None
    last_manual_run_at: str | None = None

    def to_json(self) -> JSONDict:
        return {
            "auto_run_enabled": self.auto_run_enabled,
            "webhook_url": self.webhook_url,
            "last_auto_run_at": self.last_auto_run_at,
            "last_manual_run_at": self.last_manual_run_at,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "AppSettings":
        return cls(
            auto_run_enabled=bool(payload.get("auto_run_enabled", False)),
            webhook_url=_optional_str(payload.get("webhook_url")),
            last_auto_run_at=_optional_str(payload.get("last_auto_run_at")),
            last_manual_run_at=_optional_str(payload.get("last_manual_run_at")),
        )


@dataclass(frozen=True, slots=True)
class GatewayStats:
    """Aggregate counts over the persisted tables."""

    total_pages: int
    match_pages: int
    last_scrape_at: str | None = None

    def to_json(self) -> JSONDict:
        return {
            "total_pages": self.total_pages,
            "match_pages": self.match_pages,
            "last_scrape_at": self.last_scrape_at,
        }


__all__ = [
    "AppSettings",
    "ContentKind",
    "CrawlSession",
    "CrawlStatus",
    "EngineBusyError",
    "FetchResult",
    "GatewayError",
    "GatewayStats",
    "JSONDict",
    "JSONPrimitive",
    "JSONValue",
    "MatchResult",
    "MonitorError",
    "NotificationError",
    "PageRecord",
    "ParseResult",
    "RunMode",
    "RunSummary",
    "SitemapError",
    "StartResult",
    "SummarizationError",
    "UpsertResult",
    "hash_url",
    "infer_content_kind",
    "utc_now_iso",
]
