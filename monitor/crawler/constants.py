"""Default values shared by crawler config, fetcher, and engine."""

from __future__ import annotations

DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
DEFAULT_HTTP_HEADERS: dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en,fr;q=0.8,nl;q=0.7,de;q=0.6,ar;q=0.5",
}

DEFAULT_REQUEST_DELAY_SECONDS = 0.5
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_MAX_BODY_BYTES = 5 * 1024 * 1024
DEFAULT_RETRIES = 0
DEFAULT_RETRY_BACKOFF_SECONDS = 1.0

DEFAULT_MAX_QUEUE_SIZE = 10_000
DEFAULT_CONTENT_PREVIEW_CHARS = 500
DEFAULT_SUMMARY_INPUT_CHARS = 2000
DEFAULT_PROGRESS_LOG_EVERY = 10

DEFAULT_DISCOVERY = "sitemap"
SUPPORTED_DISCOVERY = ("sitemap", "sitemap_links")

DEFAULT_STORAGE_BACKEND = "jsonl"
SUPPORTED_STORAGE_BACKENDS = ("jsonl", "supabase")

DEFAULT_OUTPUT_DIR = "monitor_output"
DEFAULT_SHARED_SETTINGS_SITE = "belgium"

UNTITLED_PAGE = "Untitled Page"

NOTIFY_BATCH_SIZE = 10
NOTIFY_BATCH_DELAY_SECONDS = 0.5
NOTIFY_TIMEOUT_SECONDS = 15.0

SUMMARY_FALLBACK_CHARS = 200

JSON_INDENT = 2
JSONL_COMPACT_FACTOR = 2
SUPPORTED_CONFIG_SUFFIXES = (".yaml", ".yml", ".json")
