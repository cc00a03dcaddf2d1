"""Keyword and pattern classification of crawled pages."""

from __future__ import annotations

import re
from typing import Iterable

from .config import SiteProfile
from .types import MatchResult


class KeywordMatcher:
    """Classifies a page as e-invoicing related.

    Literal keywords are tried first, in table order, each one against the page
    text, then the title, then the URL, with word-boundary anchors. When no
    literal hits, the structural patterns run over the lower-cased
    concatenation of text, title and URL and the matched substring is reported
    as the keyword.
    """

    def __init__(self, keywords: Iterable[str], patterns: Iterable[str] = ()) -> None:
        self._literals: list[tuple[re.Pattern[str], str]] = [
            (re.compile(r"\b" + re.escape(keyword) + r"\b", re.IGNORECASE), keyword)
            for keyword in keywords
            if keyword
        ]
        self._patterns: list[re.Pattern[str]] = [
            re.compile(pattern, re.IGNORECASE) for pattern in patterns if pattern
        ]

    @classmethod
    def from_profile(cls, profile: SiteProfile) -> "KeywordMatcher":
        return cls(profile.keywords, profile.patterns)

    @property
    def keyword_count(self) -> int:
        return len(self._literals)

    @property
    def pattern_count(self) -> int:
        return len(self._patterns)

    def match(self, text: str, title: str, url: str) -> MatchResult:
        text = text or ""
        title = title or ""
        url = url or ""

        for regex, keyword in self._literals:
            if regex.search(text) or regex.search(title) or regex.search(url):
                return MatchResult(is_match=True, keyword=keyword)

        combined = f"{text} {title} {url}".lower()
        for regex in self._patterns:
            found = regex.search(combined)
            if found:
                return MatchResult(is_match=True, keyword=found.group(0))

        return MatchResult(is_match=False, keyword=None)


__all__ = ["KeywordMatcher"]
