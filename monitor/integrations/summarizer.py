"""English page summaries through the Mistral chat-completions API."""

from __future__ import annotations

import logging
import os
import re
from typing import Protocol

import requests

from ..crawler.constants import SUMMARY_FALLBACK_CHARS
from ..crawler.types import SummarizationError

LOGGER = logging.getLogger(__name__)

MISTRAL_API_URL = "https://api.mistral.ai/v1/chat/completions"
MISTRAL_MODEL = "mistral-tiny"
MISTRAL_API_KEY_ENV = "MISTRAL_API_KEY"

PROMPT_TEMPLATE = """You are an expert in e-invoicing and tax regulations. Summarize the following content in 2-3 concise sentences.

IMPORTANT: Provide the summary ONLY in English, regardless of the source language (French, Dutch, German, Arabic, etc.).

Title: {title}
Content: {content}

Provide a brief summary in clear, professional English. Focus on the main topic and key information. Keep it under 150 words."""


class PageSummarizer(Protocol):
    def summarize(self, title: str, content: str, url: str) -> str:
        ...


def fallback_summary(content: str, *, max_chars: int = SUMMARY_FALLBACK_CHARS) -> str:
    """First `max_chars` of whitespace-collapsed content, with `...` when cut."""

    cleaned = re.sub(r"\s+", " ", content or "").strip()
    summary = cleaned[:max_chars]
    return summary + ("..." if len(cleaned) > max_chars else "")


class Summarizer:
    """Summarize matched pages; never raises for API problems.

    Without an API key, or when the API fails or answers with an empty reply,
    the extractive fallback summary is returned.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str = MISTRAL_MODEL,
        api_url: str = MISTRAL_API_URL,
        timeout: float = 30.0,
        max_tokens: int = 300,
        temperature: float = 0.3,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.getenv(MISTRAL_API_KEY_ENV, "")
        self.model = model
        self.api_url = api_url
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.session = session or requests.Session()

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def summarize(self, title: str, content: str, url: str) -> str:
        if not self.available:
            return fallback_summary(content)

        try:
            summary = self._request_summary(title, content)
        except SummarizationError as exc:
            LOGGER.warning("Summary request failed for %s, using fallback: %s", url, exc)
            return fallback_summary(content)

        if not summary:
            LOGGER.warning("Summary API returned an empty reply for %s, using fallback", url)
            return fallback_summary(content)
        return summary

    def _request_summary(self, title: str, content: str) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "user", "content": PROMPT_TEMPLATE.format(title=title, content=content)}
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

        try:
            response = self.session.post(
                self.api_url, json=payload, headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise SummarizationError(f"{exc.__class__.__name__}: {exc}") from exc

        try:
            return str(data["choices"][0]["message"]["content"] or "").strip()
        except (KeyError, IndexError, TypeError):
            return ""


__all__ = [
    "PageSummarizer",
    "Summarizer",
    "fallback_summary",
]
