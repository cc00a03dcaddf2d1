"""PDF parser: pypdf extraction with a pdfplumber fallback for sparse output."""

from __future__ import annotations

import io
import re
from dataclasses import dataclass
from urllib.parse import unquote, urlsplit

import pdfplumber
from pypdf import PdfReader

from ..types import ContentKind, ParseResult

TOKEN_RE = re.compile(r"\w+")

BOILERPLATE_LINE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\s*(page|pagina|seite)\s+\d+\s*((of|sur|van|von)\s*\d+)?\s*$", re.IGNORECASE),
    re.compile(r"^\s*\d+\s*/\s*\d+\s*$"),
    re.compile(r"^\s*\d+\s*$"),
)


@dataclass(slots=True)
class PDFParserConfig:
    """Config for PDF extraction."""

    parser_name: str = "pdf_parser_pypdf_pdfplumber"
    use_pdfplumber_fallback: bool = True
    max_pages: int | None = 50
    min_document_words: int = 30
    repeated_line_threshold_ratio: float = 0.6


class PDFParser:
    """Parse a PDF into whitespace-normalized text plus a best-effort title."""

    def __init__(self, config: PDFParserConfig | None = None) -> None:
        self.config = config or PDFParserConfig()

    def parse(
        self,
        *,
        url: str,
        pdf_bytes: bytes,
        final_url: str | None = None,
    ) -> ParseResult:
        """Parse one PDF payload into text."""

        pages, title, error = self._extract_pages_with_pypdf(pdf_bytes)
        extractor = "pypdf"

        if self.config.use_pdfplumber_fallback and self._is_low_signal(pages):
            plumber_pages, plumber_error = self._extract_pages_with_pdfplumber(pdf_bytes)
            if self._word_count(plumber_pages) > self._word_count(pages):
                pages = plumber_pages
                extractor = "pdfplumber"
            elif not pages and error is None:
                error = plumber_error

        text = self._clean_pages(pages)
        if not title:
            title = self._title_from_url(final_url or url)

        if not text:
            return ParseResult(
                url=url,
                title=title,
                text="",
                content_kind=ContentKind.PDF,
                parser=self.config.parser_name,
                metadata={"extractor": extractor, "pages_total": len(pages)},
                error=error or "No extractable text from PDF",
            )

        return ParseResult(
            url=url,
            title=title,
            text=text,
            content_kind=ContentKind.PDF,
            parser=self.config.parser_name,
            metadata={
                "extractor": extractor,
                "pages_total": len(pages),
                "clean_chars": len(text),
            },
            error=None,
        )

    def _extract_pages_with_pypdf(self, pdf_bytes: bytes) -> tuple[list[str], str | None, str | None]:
        try:
            reader = PdfReader(io.BytesIO(pdf_bytes))
            if reader.is_encrypted:
                reader.decrypt("")

            title: str | None = None
            if reader.metadata is not None and reader.metadata.title:
                title = re.sub(r"\s+", " ", str(reader.metadata.title)).strip() or None

            pages: list[str] = []
            limit = self.config.max_pages or len(reader.pages)
            for idx, page in enumerate(reader.pages):
                if idx >= limit:
                    break
                pages.append(page.extract_text() or "")
            return pages, title, None
        except Exception as exc:
            return [], None, f"pypdf extraction failed: {exc.__class__.__name__}: {exc}"

    def _extract_pages_with_pdfplumber(self, pdf_bytes: bytes) -> tuple[list[str], str | None]:
        try:
            pages: list[str] = []
            with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
                limit = self.config.max_pages or len(pdf.pages)
                for idx, page in enumerate(pdf.pages):
                    if idx >= limit:
                        break
                    pages.append(page.extract_text() or "")
            return pages, None
        except Exception as exc:
            return [], f"pdfplumber extraction failed: {exc.__class__.__name__}: {exc}"

    def _clean_pages(self, pages: list[str]) -> str:
        page_lines = [self._normalize_lines(page) for page in pages]

        # Running headers/footers repeat on most pages.
        line_freq: dict[str, int] = {}
        for lines in page_lines:
            for line in set(lines):
                line_freq[line.lower()] = line_freq.get(line.lower(), 0) + 1
        repeated_min = max(2, int(len(page_lines) * self.config.repeated_line_threshold_ratio))

        kept: list[str] = []
        for lines in page_lines:
            for line in lines:
                if any(pattern.search(line) for pattern in BOILERPLATE_LINE_PATTERNS):
                    continue
                if len(page_lines) > 1 and line_freq.get(line.lower(), 0) >= repeated_min and len(line) <= 120:
                    continue
                kept.append(line)

        return re.sub(r"\s+", " ", " ".join(kept)).strip()

    @staticmethod
    def _normalize_lines(page_text: str) -> list[str]:
        text = (page_text or "").replace("\xa0", " ")
        lines: list[str] = []
        for raw in text.splitlines():
            line = re.sub(r"\s+", " ", raw).strip()
            if line:
                lines.append(line)
        return lines

    @staticmethod
    def _word_count(pages: list[str]) -> int:
        return sum(len(TOKEN_RE.findall(page)) for page in pages)

    def _is_low_signal(self, pages: list[str]) -> bool:
        return not pages or self._word_count(pages) < self.config.min_document_words

    @staticmethod
    def _title_from_url(url: str) -> str | None:
        name = unquote(urlsplit(url).path.rsplit("/", maxsplit=1)[-1])
        if name.lower().endswith(".pdf"):
            name = name[:-4]
        name = re.sub(r"[-_]+", " ", name).strip()
        return name or None


__all__ = [
    "PDFParser",
    "PDFParserConfig",
]
