"""HTTP fetching with retry, body-size and per-host rate-limit policies."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol
from urllib.parse import urlsplit

import requests

from .config import CrawlConfig
from .types import FetchResult
from .url import is_http_url

LOGGER = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class PageFetcher(Protocol):
    """Anything that turns a URL into a FetchResult without raising."""

    def fetch(self, url: str) -> FetchResult:
        ...


@dataclass(frozen=True, slots=True)
class _AttemptConfig:
    attempts: int
    backoff_seconds: float


class BodyTooLargeError(Exception):
    """Internal signal that a streamed body crossed the configured cap."""


class Fetcher:
    """Fetch URLs with `requests`, one shared session per thread.

    Every request goes through a per-host throttle so consecutive requests to
    the same site are at least `request_delay_seconds` apart. Redirects are
    capped at `max_redirects` and bodies larger than `max_body_bytes` are
    rejected while streaming.
    """

    def __init__(
        self,
        config: CrawlConfig,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self._sleep = sleep

        self._thread_local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()

        self._rate_lock = threading.Lock()
        self._next_allowed_time_by_host: dict[str, float] = {}

        self._closed = False
        self._closed_lock = threading.Lock()

    def fetch(self, url: str) -> FetchResult:
        """Fetch one URL with configured retries and policies."""

        if not is_http_url(url):
            return FetchResult(
                requested_url=url,
                final_url=None,
                status_code=None,
                content_type=None,
                body=None,
                error="Invalid or unsupported URL",
            )

        if self._is_closed():
            return FetchResult(
                requested_url=url,
                final_url=None,
                status_code=None,
                content_type=None,
                body=None,
                error="Fetcher is closed",
            )

        attempt_cfg = _AttemptConfig(
            attempts=max(1, self.config.retries + 1),
            backoff_seconds=max(0.0, self.config.retry_backoff_seconds),
        )
        return self._fetch_with_retries(url=url, attempt_cfg=attempt_cfg)

    def close(self) -> None:
        """Close all pooled HTTP sessions."""

        with self._closed_lock:
            self._closed = True

        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _is_closed(self) -> bool:
        with self._closed_lock:
            return self._closed

    def _fetch_with_retries(self, *, url: str, attempt_cfg: _AttemptConfig) -> FetchResult:
        last_result: FetchResult | None = None

        for attempt in range(1, attempt_cfg.attempts + 1):
            result = self._fetch_once(url)
            last_result = result

            if self._is_terminal_result(result):
                return result

            if attempt < attempt_cfg.attempts:
                LOGGER.debug("Retrying %s after attempt %d: %s", url, attempt, result.describe_error())
                if attempt_cfg.backoff_seconds > 0:
                    self._sleep(attempt_cfg.backoff_seconds * attempt)

        if last_result is None:
            return FetchResult(
                requested_url=url,
                final_url=None,
                status_code=None,
                content_type=None,
                body=None,
                error="Unknown fetch failure",
            )
        return last_result

    @staticmethod
    def _is_terminal_result(result: FetchResult) -> bool:
        if result.error is not None:
            # Oversized bodies and redirect loops will not improve on retry.
            return result.error.startswith(("BodyTooLarge", "TooManyRedirects"))

        if result.status_code is None:
            return False

        if result.status_code in {408, 429} or result.status_code >= 500:
            return False

        return True

    def _fetch_once(self, url: str) -> FetchResult:
        self._wait_for_rate_limit(url)
        started = time.perf_counter()
        session = self._thread_local_session()

        try:
            with session.get(
                url,
                headers=self.config.headers(),
                timeout=self.config.timeout_seconds,
                allow_redirects=True,
                stream=True,
            ) as response:
                body = self._read_capped_body(response)
                return FetchResult(
                    requested_url=url,
                    final_url=response.url or url,
                    status_code=response.status_code,
                    content_type=response.headers.get("Content-Type"),
                    body=body,
                    elapsed_ms=int((time.perf_counter() - started) * 1000),
                    error=None,
                )
        except BodyTooLargeError as exc:
            return FetchResult(
                requested_url=url,
                final_url=None,
                status_code=None,
                content_type=None,
                body=None,
                elapsed_ms=int((time.perf_counter() - started) * 1000),
                error=f"BodyTooLarge: {exc}",
            )
        except requests.RequestException as exc:
            return FetchResult(
                requested_url=url,
                final_url=None,
                status_code=None,
                content_type=None,
                body=None,
                elapsed_ms=int((time.perf_counter() - started) * 1000),
                error=f"{exc.__class__.__name__}: {exc}",
            )

    def _read_capped_body(self, response: requests.Response) -> bytes:
        limit = self.config.max_body_bytes

        declared = response.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > limit:
            raise BodyTooLargeError(f"declared length {declared} exceeds {limit} bytes")

        chunks: list[bytes] = []
        total = 0
        for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
            if not chunk:
                continue
            total += len(chunk)
            if total > limit:
                raise BodyTooLargeError(f"body exceeds {limit} bytes")
            chunks.append(chunk)
        return b"".join(chunks)

    def _thread_local_session(self) -> requests.Session:
        session = getattr(self._thread_local, "session", None)
        if session is None:
            session = requests.Session()
            session.max_redirects = self.config.max_redirects
            self._thread_local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def _wait_for_rate_limit(self, url: str) -> None:
        wait_seconds = max(0.0, self.config.request_delay_seconds)
        if wait_seconds <= 0:
            return

        host = (urlsplit(url).hostname or "").lower()

        while True:
            with self._rate_lock:
                now = time.monotonic()
                next_allowed = self._next_allowed_time_by_host.get(host, 0.0)
                if now >= next_allowed:
                    self._next_allowed_time_by_host[host] = now + wait_seconds
                    return
                sleep_for = next_allowed - now

            if sleep_for > 0:
                self._sleep(sleep_for)


__all__ = ["Fetcher", "PageFetcher"]
