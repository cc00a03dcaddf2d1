"""
tests/test_fetcher.py

Fetcher policies with a fake requests session: per-host throttle, body cap,
retry on transient statuses, and invalid URLs.
"""

from __future__ import annotations

import pytest
import requests

from monitor.crawler import CrawlConfig, Fetcher
from monitor.crawler import fetcher as fetcher_module


class FakeResponse:
    def __init__(self, url: str, status_code: int = 200, body: bytes = b"<html></html>", headers: dict | None = None) -> None:
        self.url = url
        self.status_code = status_code
        self.headers = {"Content-Type": "text/html"}
        self.headers.update(headers or {})
        self._body = body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc) -> None:
        return None

    def iter_content(self, chunk_size: int):
        for start in range(0, len(self._body), chunk_size):
            yield self._body[start:start + chunk_size]


class FakeSession:
    def __init__(self, responses: list[FakeResponse | Exception]) -> None:
        self.responses = list(responses)
        self.requested: list[str] = []

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.requested.append(url)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _fetcher(config: CrawlConfig, session: FakeSession, clock: FakeClock | None = None) -> Fetcher:
    fetcher = Fetcher(config, sleep=(clock.sleep if clock else lambda _: None))
    fetcher._thread_local_session = lambda: session  # type: ignore[method-assign]
    return fetcher


@pytest.fixture()
def clock(monkeypatch) -> FakeClock:
    fake = FakeClock()
    monkeypatch.setattr(fetcher_module.time, "monotonic", fake.monotonic)
    return fake


class TestFetcher:
    def test_successful_fetch(self) -> None:
        session = FakeSession([FakeResponse("https://example.gov/a", body=b"<p>hi</p>")])
        result = _fetcher(CrawlConfig(request_delay_seconds=0), session).fetch("https://example.gov/a")

        assert result.ok
        assert result.body == b"<p>hi</p>"
        assert result.content_type == "text/html"

    def test_invalid_url_is_not_requested(self) -> None:
        session = FakeSession([])
        result = _fetcher(CrawlConfig(request_delay_seconds=0), session).fetch("mailto:x@example.gov")

        assert not result.ok
        assert result.error == "Invalid or unsupported URL"
        assert session.requested == []

    def test_same_host_requests_are_spaced(self, clock: FakeClock) -> None:
        session = FakeSession([FakeResponse("https://example.gov/a"), FakeResponse("https://example.gov/b")])
        fetcher = _fetcher(CrawlConfig(request_delay_seconds=0.5), session, clock)

        fetcher.fetch("https://example.gov/a")
        fetcher.fetch("https://example.gov/b")

        assert clock.sleeps == [pytest.approx(0.5)]

    def test_other_hosts_are_not_delayed(self, clock: FakeClock) -> None:
        session = FakeSession([FakeResponse("https://example.gov/a"), FakeResponse("https://other.gov/b")])
        fetcher = _fetcher(CrawlConfig(request_delay_seconds=0.5), session, clock)

        fetcher.fetch("https://example.gov/a")
        fetcher.fetch("https://other.gov/b")

        assert clock.sleeps == []

    def test_declared_oversized_body_is_rejected(self) -> None:
        config = CrawlConfig(request_delay_seconds=0, max_body_bytes=10)
        session = FakeSession([FakeResponse("https://example.gov/a", headers={"Content-Length": "500"})])

        result = _fetcher(config, session).fetch("https://example.gov/a")

        assert not result.ok
        assert result.error.startswith("BodyTooLarge")

    def test_streamed_oversized_body_is_not_retried(self) -> None:
        config = CrawlConfig(request_delay_seconds=0, max_body_bytes=10, retries=2)
        session = FakeSession([FakeResponse("https://example.gov/a", body=b"x" * 50)])

        result = _fetcher(config, session).fetch("https://example.gov/a")

        assert result.error.startswith("BodyTooLarge")
        assert len(session.requested) == 1

    def test_server_errors_are_retried(self) -> None:
        config = CrawlConfig(request_delay_seconds=0, retries=1, retry_backoff_seconds=0)
        session = FakeSession(
            [FakeResponse("https://example.gov/a", status_code=503), FakeResponse("https://example.gov/a")]
        )

        result = _fetcher(config, session).fetch("https://example.gov/a")

        assert result.ok
        assert len(session.requested) == 2

    def test_not_found_is_final(self) -> None:
        config = CrawlConfig(request_delay_seconds=0, retries=3)
        session = FakeSession([FakeResponse("https://example.gov/a", status_code=404)])

        result = _fetcher(config, session).fetch("https://example.gov/a")

        assert result.status_code == 404
        assert result.describe_error() == "HTTP status 404"
        assert len(session.requested) == 1

    def test_transport_errors_become_results(self) -> None:
        session = FakeSession([requests.TooManyRedirects("Exceeded 5 redirects.")])
        result = _fetcher(CrawlConfig(request_delay_seconds=0, retries=2), session).fetch("https://example.gov/a")

        assert result.error.startswith("TooManyRedirects")
        assert len(session.requested) == 1

    def test_closed_fetcher_refuses(self) -> None:
        fetcher = Fetcher(CrawlConfig(request_delay_seconds=0))
        fetcher.close()
        assert fetcher.fetch("https://example.gov/a").error == "Fetcher is closed"
