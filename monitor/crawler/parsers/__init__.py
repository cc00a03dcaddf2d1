"""Parser package exports."""

from .html_parser import HTMLParser, HTMLParserConfig, collapse_whitespace, remove_widget_sections
from .pdf_parser import PDFParser, PDFParserConfig

__all__ = [
    "HTMLParser",
    "HTMLParserConfig",
    "PDFParser",
    "PDFParserConfig",
    "collapse_whitespace",
    "remove_widget_sections",
]
