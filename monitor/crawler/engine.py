"""Crawl engine: one parameterized state machine per site profile."""

from __future__ import annotations

import logging
import threading
from typing import Protocol, Sequence

from .config import CrawlConfig, SiteProfile, StartOptions
from .constants import UNTITLED_PAGE
from .fetcher import Fetcher, PageFetcher
from .frontier import UrlQueue, VisitedSet
from .matcher import KeywordMatcher
from .parsers import HTMLParser, PDFParser
from .session import SessionTracker
from .sitemap import DiscoveryStrategy, build_discovery
from .storage import PersistenceGateway, SettingsSource
from .types import (
    ContentKind,
    CrawlSession,
    CrawlStatus,
    EngineBusyError,
    FetchResult,
    PageRecord,
    ParseResult,
    RunSummary,
    StartResult,
    hash_url,
    utc_now_iso,
)

LOGGER = logging.getLogger(__name__)

BUSY_MESSAGE = "Scraping is already in progress"


class Summarizer(Protocol):
    def summarize(self, title: str, content: str, url: str) -> str:
        ...


class Notifier(Protocol):
    def notify(self, webhook_url: str | None, matches: Sequence[PageRecord], site_label: str) -> int:
        ...


def parse_fetch_result(
    fetch_result: FetchResult,
    profile: SiteProfile,
    *,
    html_parser: HTMLParser,
    pdf_parser: PDFParser,
    collect_links: bool = False,
) -> ParseResult:
    """Dispatch a fetched body to the parser for its content kind."""

    url = fetch_result.requested_url
    final_url = fetch_result.final_url or url
    body = fetch_result.body or b""
    content_kind = fetch_result.normalized_content_kind

    if content_kind in {ContentKind.HTML, ContentKind.UNKNOWN}:
        return html_parser.parse(
            url=url,
            final_url=final_url,
            html=body,
            widget_rules=profile.widget_rules,
            collect_links=collect_links,
            scope_base_url=profile.base_url,
        )

    if content_kind == ContentKind.PDF:
        return pdf_parser.parse(url=url, final_url=final_url, pdf_bytes=body)

    if content_kind in {ContentKind.TEXT, ContentKind.XML}:
        text = " ".join(body.decode("utf-8", errors="replace").split())
        return ParseResult(
            url=url,
            title=UNTITLED_PAGE,
            text=text,
            content_kind=content_kind,
            parser="text_parser",
            metadata={"content_type": fetch_result.content_type},
            error=None if text else "Empty text body",
        )

    return ParseResult(
        url=url,
        title=None,
        text="",
        content_kind=content_kind,
        parser="unsupported_parser",
        metadata={"content_type": fetch_result.content_type},
        error=f"Unsupported content kind: {content_kind.value}",
    )


class CrawlEngine:
    """Discover, fetch, classify and persist the pages of one site.

    Lifecycle: `idle -> scraping -> completed | stopped | error`, and again
    from any terminal status on the next start. `start()` runs the crawl on a
    daemon thread and `run()` runs it on the caller's thread; both refuse to
    begin while another run of this engine is active. Session state is only
    mutated through the SessionTracker, so `snapshot()` is safe from any thread.
    """

    def __init__(
        self,
        config: CrawlConfig,
        profile: SiteProfile,
        gateway: PersistenceGateway,
        *,
        fetcher: PageFetcher | None = None,
        discovery: DiscoveryStrategy | None = None,
        summarizer: Summarizer | None = None,
        notifier: Notifier | None = None,
        settings_source: SettingsSource | None = None,
        html_parser: HTMLParser | None = None,
        pdf_parser: PDFParser | None = None,
    ) -> None:
        self.config = config
        self.profile = profile
        self.gateway = gateway

        self._owns_fetcher = fetcher is None
        self.fetcher: PageFetcher = fetcher or Fetcher(config)
        self.discovery = discovery or build_discovery(config, self.fetcher)
        self.summarizer = summarizer
        self.notifier = notifier
        self.settings_source = settings_source or gateway
        self.html_parser = html_parser or HTMLParser()
        self.pdf_parser = pdf_parser or PDFParser()
        self.matcher = KeywordMatcher.from_profile(profile)

        self.tracker = SessionTracker(site=profile.key)
        self._state_lock = threading.Lock()
        self._running = False
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self._visited = VisitedSet()
        self._new_matches: list[PageRecord] = []

    # Public API

    def start(self, options: StartOptions | None = None) -> StartResult:
        """Begin a run on a worker thread; rejected while one is active."""

        options = options or StartOptions()
        with self._state_lock:
            if self._running:
                return StartResult(accepted=False, error=BUSY_MESSAGE)
            self._begin_locked(options)
            thread = threading.Thread(
                target=self._worker,
                args=(options,),
                name=f"crawl-{self.profile.key}",
                daemon=True,
            )
            self._thread = thread
        thread.start()
        return StartResult(accepted=True)

    def run(self, options: StartOptions | None = None) -> CrawlSession:
        """Run synchronously and return the final session snapshot."""

        options = options or StartOptions()
        with self._state_lock:
            if self._running:
                raise EngineBusyError(BUSY_MESSAGE)
            self._begin_locked(options)
        self._worker(options)
        return self.snapshot()

    def stop(self) -> bool:
        """Request a cooperative stop; returns whether a run was active."""

        with self._state_lock:
            if not self._running:
                return False
            self._stop_event.set()
            return True

    def wait(self, timeout: float | None = None) -> bool:
        """Join the worker thread; returns True when no run is in flight."""

        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            return not thread.is_alive()
        return not self.is_running()

    def is_running(self) -> bool:
        with self._state_lock:
            return self._running

    def snapshot(self) -> CrawlSession:
        return self.tracker.snapshot()

    def diagnostics(self) -> dict:
        payload = self.tracker.diagnostics()
        payload["new_matches"] = [page.url for page in self._new_matches]
        return payload

    def close(self) -> None:
        if self._owns_fetcher and isinstance(self.fetcher, Fetcher):
            self.fetcher.close()

    def __enter__(self) -> "CrawlEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Run lifecycle

    def _begin_locked(self, options: StartOptions) -> None:
        self._running = True
        self._stop_event.clear()
        self._visited.clear()
        self._new_matches = []
        self.tracker.begin(options.mode)
        LOGGER.info(
            "[%s] Run started (mode=%s, only_new=%s)",
            self.profile.key,
            options.mode.value,
            options.only_new,
        )

    def _worker(self, options: StartOptions) -> None:
        try:
            self._execute(options)
        finally:
            with self._state_lock:
                self._running = False

    def _execute(self, options: StartOptions) -> None:
        try:
            status = self._crawl(options)
        except Exception as exc:
            LOGGER.exception("[%s] Run failed", self.profile.key)
            final = self.tracker.finish(
                CrawlStatus.ERROR,
                error_message=str(exc) or exc.__class__.__name__,
            )
            self._record_summary(final)
            return

        final = self.tracker.finish(status)
        LOGGER.info(
            "[%s] Run %s: %d pages crawled, %d matches (%d new), %d duplicates ignored",
            self.profile.key,
            final.status.value,
            final.total_pages_crawled,
            final.e_invoicing_pages_found,
            len(self._new_matches),
            final.duplicates_ignored,
        )
        self._record_summary(final)
        self._notify_new_matches()

    def _crawl(self, options: StartOptions) -> CrawlStatus:
        urls = self.discovery.discover_urls(
            self.profile,
            on_progress=lambda message: self.tracker.set_progress(message),
            should_stop=self._stop_event.is_set,
        )
        if self._stop_event.is_set():
            return CrawlStatus.STOPPED

        if not urls:
            LOGGER.warning("[%s] Sitemaps yielded no URLs, falling back to %s", self.profile.key, self.profile.seed_url)
            urls = [self.profile.seed_url]

        if options.only_new:
            known = self.gateway.get_known_url_hashes()
            before = len(urls)
            urls = [url for url in urls if hash_url(url) not in known]
            LOGGER.info(
                "[%s] Only-new filter kept %d of %d URLs (%d known)",
                self.profile.key,
                len(urls),
                before,
                len(known),
            )

        queue = UrlQueue(urls, max_size=max(self.config.max_queue_size, len(urls)))
        self.tracker.set_progress(None, queue_size=len(queue))

        while queue:
            if self._stop_event.is_set():
                LOGGER.info("[%s] Stop requested, %d URLs left in queue", self.profile.key, len(queue))
                return CrawlStatus.STOPPED

            url = queue.pop()
            if url in self._visited:
                self.tracker.record_duplicate(url, queue_size=len(queue))
                continue

            self._visited.add(url)
            self.tracker.set_progress(url, queue_size=len(queue))
            self._process_url(url, queue)

        return CrawlStatus.COMPLETED

    # Per-URL pipeline

    def _process_url(self, url: str, queue: UrlQueue) -> None:
        try:
            fetch_result = self.fetcher.fetch(url)
            self.tracker.record_fetch(fetch_result)
            parse_result = self._parse(fetch_result) if fetch_result.ok else None
        except Exception as exc:
            LOGGER.warning("[%s] Error crawling %s: %s: %s", self.profile.key, url, exc.__class__.__name__, exc)
            self._count_page(url, matched=False, queue=queue)
            return

        if parse_result is None:
            LOGGER.warning("[%s] Fetch failed for %s: %s", self.profile.key, url, fetch_result.describe_error())
            self._count_page(url, matched=False, queue=queue)
            return

        self.tracker.record_parse(parse_result)
        if not parse_result.ok:
            LOGGER.warning("[%s] Parse failed for %s: %s", self.profile.key, url, parse_result.error)
            self._count_page(url, matched=False, queue=queue)
            return

        title = parse_result.title or UNTITLED_PAGE
        text = parse_result.text
        result = self.matcher.match(text, title, url)

        summary: str | None = None
        if result.is_match:
            summary = self._summarize(title, text, url)

        page = PageRecord(
            url=url,
            title=title,
            content_preview=text[: self.config.content_preview_chars],
            scraped_at=utc_now_iso(),
            is_match=result.is_match,
            matched_keyword=result.keyword,
            summary=summary,
        )
        upsert = self.gateway.upsert_page(page)
        if result.is_match and upsert.is_new:
            self._new_matches.append(page)

        if self.discovery.follows_links:
            for link in parse_result.out_links:
                queue.offer(link, visited=self._visited)

        session = self._count_page(url, matched=result.is_match, queue=queue)
        if result.is_match:
            LOGGER.info("[%s] Match %r on %s (new=%s)", self.profile.key, result.keyword, url, upsert.is_new)
        else:
            LOGGER.debug("[%s] No match on %s", self.profile.key, url)

        if session.total_pages_crawled % self.config.progress_log_every == 0:
            LOGGER.info(
                "[%s] Progress: %d pages crawled, %d in queue, %d matches",
                self.profile.key,
                session.total_pages_crawled,
                session.queue_size,
                session.e_invoicing_pages_found,
            )

    def _count_page(self, url: str, *, matched: bool, queue: UrlQueue) -> CrawlSession:
        return self.tracker.record_page(url, matched=matched, queue_size=len(queue))

    def _parse(self, fetch_result: FetchResult) -> ParseResult:
        return parse_fetch_result(
            fetch_result,
            self.profile,
            html_parser=self.html_parser,
            pdf_parser=self.pdf_parser,
            collect_links=self.discovery.follows_links,
        )

    def _summarize(self, title: str, text: str, url: str) -> str | None:
        if self.summarizer is None:
            return None
        try:
            return self.summarizer.summarize(title, text[: self.config.summary_input_chars], url) or None
        except Exception as exc:
            self.tracker.record_summary_failure()
            LOGGER.warning("[%s] Summary failed for %s: %s", self.profile.key, url, exc)
            return None

    # Finalization

    def _record_summary(self, final: CrawlSession) -> None:
        summary = RunSummary(
            mode=final.mode or StartOptions().mode,
            started_at=final.started_at or utc_now_iso(),
            completed_at=final.completed_at or utc_now_iso(),
            total_pages_crawled=final.total_pages_crawled,
            new_match_count=len(self._new_matches),
            site=self.profile.key,
            status=final.status,
        )
        try:
            self.gateway.record_run_summary(summary)
        except Exception:
            LOGGER.exception("[%s] Failed to record run summary", self.profile.key)

    def _notify_new_matches(self) -> None:
        if self.notifier is None or not self._new_matches:
            return
        try:
            webhook_url = self.settings_source.get_settings().webhook_url
            if not webhook_url:
                LOGGER.info("[%s] No webhook configured, skipping notification", self.profile.key)
                return
            self.notifier.notify(webhook_url, list(self._new_matches), self.profile.label)
        except Exception as exc:
            LOGGER.error("[%s] Failed to send notification: %s", self.profile.key, exc)

    @property
    def new_matches(self) -> list[PageRecord]:
        """Matches first seen during the latest run, in discovery order."""

        return list(self._new_matches)


__all__ = [
    "BUSY_MESSAGE",
    "CrawlEngine",
    "Notifier",
    "Summarizer",
    "parse_fetch_result",
]
