"""HTML parser: markup stripping, widget cleanup, text/title extraction."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from bs4 import BeautifulSoup, Tag

from ..config import WidgetRule
from ..constants import UNTITLED_PAGE
from ..types import ContentKind, ParseResult
from ..url import links_from_soup

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True)
class HTMLParserConfig:
    """Config for HTML extraction."""

    parser_name: str = "html_parser_bs4_strip"
    strip_tags: tuple[str, ...] = ("script", "style", "nav", "footer", "header")
    default_title: str = UNTITLED_PAGE


def collapse_whitespace(text: str) -> str:
    """Collapse runs of whitespace to one space and trim."""

    return _WHITESPACE_RE.sub(" ", text).strip()


class HTMLParser:
    """Turn an HTML page into normalized body text, a title, and out-links."""

    def __init__(self, config: HTMLParserConfig | None = None) -> None:
        self.config = config or HTMLParserConfig()

    def parse(
        self,
        *,
        url: str,
        html: str | bytes,
        final_url: str | None = None,
        widget_rules: Sequence[WidgetRule] = (),
        collect_links: bool = False,
        scope_base_url: str | None = None,
    ) -> ParseResult:
        soup = BeautifulSoup(self._coerce_html_text(html), "lxml")
        title = self._extract_title(soup)

        for element in soup.find_all(list(self.config.strip_tags)):
            element.decompose()

        widgets_removed = 0
        for rule in widget_rules:
            widgets_removed += remove_widget_sections(soup, rule)

        out_links: list[str] = []
        if collect_links:
            out_links = links_from_soup(
                soup,
                page_url=final_url or url,
                scope_base_url=scope_base_url,
            )

        container = soup.body if soup.body is not None else soup
        text = collapse_whitespace(container.get_text(" "))

        return ParseResult(
            url=url,
            title=title,
            text=text,
            out_links=out_links,
            content_kind=ContentKind.HTML,
            parser=self.config.parser_name,
            metadata={
                "clean_chars": len(text),
                "widgets_removed": widgets_removed,
                "links_found": len(out_links),
            },
            error=None,
        )

    def _extract_title(self, soup: BeautifulSoup) -> str:
        if soup.title is not None:
            title = collapse_whitespace(soup.title.get_text(" "))
            if title:
                return title
        return self.config.default_title

    @staticmethod
    def _coerce_html_text(html: str | bytes) -> str:
        if isinstance(html, bytes):
            return html.decode("utf-8", errors="replace")
        return html


def _label_of(element: Tag) -> str:
    return collapse_whitespace(element.get_text(" ")).lower().rstrip(":").strip()


def _next_element_sibling(element: Tag) -> Tag | None:
    sibling = element.next_sibling
    while sibling is not None and not isinstance(sibling, Tag):
        sibling = sibling.next_sibling
    return sibling


def remove_widget_sections(soup: BeautifulSoup, rule: WidgetRule) -> int:
    """Remove each labelled heading plus its link-dense next sibling.

    Returns the number of widget sections removed. A heading whose sibling has
    fewer than `rule.min_links` anchors is left untouched.
    """

    labels = {label.lower() for label in rule.labels}
    candidates = [
        element
        for element in soup.find_all(list(rule.heading_tags))
        if _label_of(element) in labels
    ]

    removed = 0
    for heading in candidates:
        if heading.decomposed:
            continue
        sibling = _next_element_sibling(heading)
        if sibling is None:
            continue
        if len(sibling.find_all("a", href=True)) < rule.min_links:
            continue
        sibling.decompose()
        heading.decompose()
        removed += 1
    return removed


__all__ = [
    "HTMLParser",
    "HTMLParserConfig",
    "collapse_whitespace",
    "remove_widget_sections",
]
