"""Outbound integrations: webhook notifications and page summaries."""

from .notifier import NotificationDispatcher, render_batches
from .summarizer import PageSummarizer, Summarizer, fallback_summary

__all__ = [
    "NotificationDispatcher",
    "PageSummarizer",
    "Summarizer",
    "fallback_summary",
    "render_batches",
]
