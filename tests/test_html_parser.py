"""
tests/test_html_parser.py

HTML text extraction: title handling, chrome stripping, widget removal and
link collection.
"""

from __future__ import annotations

from bs4 import BeautifulSoup

from conftest import html_page
from monitor.crawler import HTMLParser, WidgetRule, remove_widget_sections
from monitor.crawler.constants import UNTITLED_PAGE

RULE = WidgetRule(labels=("related applications", "applications connexes"), min_links=2)


class TestHTMLParser:
    def test_title_and_body_text(self) -> None:
        html = html_page(
            "  E-invoicing \n obligations ",
            "<header>Site menu</header><nav>Home</nav>"
            "<main><h1>Obligations</h1><p>From 2026   all invoices\nare structured.</p></main>"
            "<script>var peppol = 1;</script><footer>Contact</footer>",
        )

        result = HTMLParser().parse(url="https://example.gov/a", html=html)

        assert result.ok
        assert result.title == "E-invoicing obligations"
        assert result.text == "Obligations From 2026 all invoices are structured."
        assert result.out_links == []

    def test_missing_title_uses_default(self) -> None:
        result = HTMLParser().parse(url="https://example.gov/a", html="<html><body><p>x</p></body></html>")
        assert result.title == UNTITLED_PAGE

    def test_collects_links_in_scope(self) -> None:
        html = html_page("T", '<a href="/b">B</a><a href="https://other.gov/">O</a>')
        result = HTMLParser().parse(
            url="https://example.gov/a",
            html=html,
            collect_links=True,
            scope_base_url="https://example.gov",
        )
        assert result.out_links == ["https://example.gov/b"]
        assert result.metadata["links_found"] == 1

    def test_widget_rules_are_applied(self) -> None:
        html = html_page(
            "T",
            "<p>Body text.</p><h3>Applications connexes :</h3>"
            '<div><a href="/x">Peppol</a><a href="/y">MyMinfin</a></div>',
        )
        result = HTMLParser().parse(url="https://example.gov/a", html=html, widget_rules=(RULE,))
        assert result.text == "Body text."
        assert result.metadata["widgets_removed"] == 1


class TestRemoveWidgetSections:
    def test_heading_and_link_dense_sibling_removed(self) -> None:
        soup = BeautifulSoup(
            "<body><h2>Related applications</h2>"
            '<ul><li><a href="/a">A</a></li><li><a href="/b">B</a></li></ul>'
            "<p>Keep me</p></body>",
            "lxml",
        )
        assert remove_widget_sections(soup, RULE) == 1
        assert soup.get_text(" ").strip() == "Keep me"

    def test_sparse_sibling_is_kept(self) -> None:
        soup = BeautifulSoup(
            '<body><h2>Related applications</h2><p>Only <a href="/a">one</a> link</p></body>',
            "lxml",
        )
        assert remove_widget_sections(soup, RULE) == 0
        assert "Related applications" in soup.get_text(" ")

    def test_label_must_match_exactly(self) -> None:
        soup = BeautifulSoup(
            "<body><h2>Related applications and services</h2>"
            '<ul><li><a href="/a">A</a></li><li><a href="/b">B</a></li></ul></body>',
            "lxml",
        )
        assert remove_widget_sections(soup, RULE) == 0
