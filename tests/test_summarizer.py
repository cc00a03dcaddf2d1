"""
tests/test_summarizer.py

Summarizer: request shape, extractive fallback on missing key, API
failures and empty replies.
"""

from __future__ import annotations

import requests

from monitor.integrations import Summarizer, fallback_summary
from monitor.integrations.summarizer import MISTRAL_API_URL, MISTRAL_MODEL


class FakeResponse:
    def __init__(self, payload: dict | None = None, status_code: int = 200) -> None:
        self.payload = payload or {}
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> dict:
        return self.payload


class FakeSession:
    def __init__(self, response: FakeResponse | Exception) -> None:
        self.response = response
        self.calls: list[dict] = []

    def post(self, url: str, json: dict, headers: dict, timeout: float) -> FakeResponse:
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _reply(text: str) -> FakeResponse:
    return FakeResponse({"choices": [{"message": {"content": text}}]})


class TestFallbackSummary:
    def test_short_content_is_returned_whole(self) -> None:
        assert fallback_summary("  Short\n text ") == "Short text"

    def test_long_content_is_cut_with_ellipsis(self) -> None:
        summary = fallback_summary("x" * 250)
        assert summary == "x" * 200 + "..."


class TestSummarizer:
    def test_without_key_uses_fallback(self, monkeypatch) -> None:
        monkeypatch.delenv("MISTRAL_API_KEY", raising=False)
        summarizer = Summarizer(session=FakeSession(_reply("unused")))

        assert summarizer.available is False
        assert summarizer.summarize("Title", "Body text", "https://example.gov/a") == "Body text"

    def test_successful_request(self) -> None:
        session = FakeSession(_reply("  This page explains e-invoicing.  "))
        summarizer = Summarizer(api_key="secret", session=session)

        summary = summarizer.summarize("E-invoicing", "Content", "https://example.gov/a")

        assert summary == "This page explains e-invoicing."
        call = session.calls[0]
        assert call["url"] == MISTRAL_API_URL
        assert call["json"]["model"] == MISTRAL_MODEL
        assert call["json"]["max_tokens"] == 300
        assert call["json"]["temperature"] == 0.3
        assert "Title: E-invoicing" in call["json"]["messages"][0]["content"]
        assert call["headers"]["Authorization"] == "Bearer secret"
        assert call["timeout"] == 30.0

    def test_http_error_falls_back(self) -> None:
        summarizer = Summarizer(api_key="secret", session=FakeSession(FakeResponse(status_code=429)))
        assert summarizer.summarize("T", "Body", "https://example.gov/a") == "Body"

    def test_transport_error_falls_back(self) -> None:
        summarizer = Summarizer(api_key="secret", session=FakeSession(requests.Timeout("slow")))
        assert summarizer.summarize("T", "Body", "https://example.gov/a") == "Body"

    def test_empty_reply_falls_back(self) -> None:
        summarizer = Summarizer(api_key="secret", session=FakeSession(FakeResponse({"choices": []})))
        assert summarizer.summarize("T", "Body", "https://example.gov/a") == "Body"
