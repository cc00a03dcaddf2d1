"""Thread-safe holder of one site's live crawl session plus fetch diagnostics."""

from __future__ import annotations

import threading
from collections import defaultdict

from .types import (
    CrawlSession,
    CrawlStatus,
    FetchResult,
    JSONDict,
    ParseResult,
    RunMode,
    utc_now_iso,
)


class SessionTracker:
    """Own the authoritative CrawlSession of one engine.

    Every mutator takes the lock once, so the counters and `current_url` of one
    loop iteration become visible to `snapshot()` readers together.
    """

    def __init__(self, site: str | None = None) -> None:
        self._lock = threading.Lock()
        self._session = CrawlSession(site=site)
        self._fetch_counts: dict[str, int] = defaultdict(int)
        self._fetch_status_code_counts: dict[str, int] = defaultdict(int)
        self._fetch_error_type_counts: dict[str, int] = defaultdict(int)
        self._parse_kind_counts: dict[str, dict[str, int]] = defaultdict(
            lambda: {"ok": 0, "error": 0}
        )
        self._fetch_elapsed_ms_total = 0
        self._fetch_bytes_total = 0
        self._summary_failures = 0

    def snapshot(self) -> CrawlSession:
        """Return a point-in-time copy safe to hand to pollers."""

        with self._lock:
            return self._session.copy()

    def begin(self, mode: RunMode) -> CrawlSession:
        """Reset counters and enter `scraping`."""

        with self._lock:
            self._session = CrawlSession(
                site=self._session.site,
                status=CrawlStatus.SCRAPING,
                mode=mode,
                started_at=utc_now_iso(),
            )
            self._fetch_counts.clear()
            self._fetch_status_code_counts.clear()
            self._fetch_error_type_counts.clear()
            self._parse_kind_counts.clear()
            self._fetch_elapsed_ms_total = 0
            self._fetch_bytes_total = 0
            self._summary_failures = 0
            return self._session.copy()

    def set_progress(self, current_url: str | None, *, queue_size: int | None = None) -> None:
        with self._lock:
            self._session.current_url = current_url
            if queue_size is not None:
                self._session.queue_size = queue_size

    def record_duplicate(self, url: str, *, queue_size: int) -> None:
        with self._lock:
            self._session.duplicates_ignored += 1
            self._session.current_url = url
            self._session.queue_size = queue_size

    def record_page(self, url: str, *, matched: bool, queue_size: int) -> CrawlSession:
        """Apply the counters of one processed URL in a single update."""

        with self._lock:
            self._session.current_url = url
            self._session.total_pages_crawled += 1
            if matched:
                self._session.e_invoicing_pages_found += 1
            self._session.queue_size = queue_size
            return self._session.copy()

    def finish(self, status: CrawlStatus, *, error_message: str | None = None) -> CrawlSession:
        """Enter a terminal status, stamp `completed_at`, clear `current_url`."""

        if not status.is_terminal:
            raise ValueError(f"finish() requires a terminal status, got {status.value}")

        with self._lock:
            self._session.status = status
            self._session.completed_at = utc_now_iso()
            self._session.current_url = None
            self._session.error_message = error_message
            return self._session.copy()

    def record_fetch(self, result: FetchResult) -> None:
        with self._lock:
            self._fetch_counts["ok" if result.ok else "error"] += 1
            if result.status_code is not None:
                self._fetch_status_code_counts[str(result.status_code)] += 1
            if result.error:
                err_type = result.error.split(":", maxsplit=1)[0].strip() or "Unknown"
                self._fetch_error_type_counts[err_type] += 1
            if result.elapsed_ms is not None:
                self._fetch_elapsed_ms_total += int(result.elapsed_ms)
            if result.content_length is not None:
                self._fetch_bytes_total += int(result.content_length)

    def record_parse(self, result: ParseResult) -> None:
        with self._lock:
            self._parse_kind_counts[result.content_kind.value]["ok" if result.ok else "error"] += 1

    def record_summary_failure(self) -> None:
        with self._lock:
            self._summary_failures += 1

    def diagnostics(self) -> JSONDict:
        """Session plus fetch/parse breakdowns, for logs and `--print_stats_json`."""

        with self._lock:
            fetch_total = sum(self._fetch_counts.values())
            return {
                "session": self._session.to_json(),
                "fetch": {
                    "ok": self._fetch_counts.get("ok", 0),
                    "error": self._fetch_counts.get("error", 0),
                    "status_codes": dict(self._fetch_status_code_counts),
                    "error_types": dict(self._fetch_error_type_counts),
                    "bytes_total": self._fetch_bytes_total,
                    "avg_elapsed_ms": (
                        round(self._fetch_elapsed_ms_total / fetch_total, 1) if fetch_total else None
                    ),
                },
                "parse": {kind: dict(counts) for kind, counts in self._parse_kind_counts.items()},
                "summary_failures": self._summary_failures,
            }


__all__ = ["SessionTracker"]
