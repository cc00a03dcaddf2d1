"""Persistence gateway contract and its filesystem (JSONL) implementation.

Storage owns the on-disk layout. Other modules should use this API instead of
building paths manually.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Mapping, Protocol, runtime_checkable

from .config import CrawlConfig
from .constants import JSON_INDENT, JSONL_COMPACT_FACTOR
from .types import (
    AppSettings,
    GatewayError,
    GatewayStats,
    JSONDict,
    PageRecord,
    RunMode,
    RunSummary,
    UpsertResult,
    hash_url,
)

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class SettingsSource(Protocol):
    """Anything that can answer `get_settings()` (webhook, auto-run flag)."""

    def get_settings(self) -> AppSettings:
        ...


@runtime_checkable
class PersistenceGateway(SettingsSource, Protocol):
    """Durable store for one site: page cache, matches, runs, settings."""

    def get_known_url_hashes(self) -> set[str]:
        ...

    def upsert_page(self, page: PageRecord) -> UpsertResult:
        ...

    def record_run_summary(self, summary: RunSummary) -> None:
        ...

    def update_settings(self, **changes: Any) -> AppSettings:
        ...

    def clear_all(self) -> None:
        ...

    def fetch_matches(self) -> list[PageRecord]:
        ...

    def fetch_stats(self) -> GatewayStats:
        ...

    def update_match_summary(self, url: str, summary: str | None) -> bool:
        ...

    def update_match_keyword(self, url: str, keyword: str | None) -> bool:
        ...

    def delete_match(self, url: str) -> bool:
        ...


SETTINGS_FIELDS = frozenset(AppSettings.__dataclass_fields__)


def _atomic_write_text(path: Path, content: str) -> None:
    tmp_fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=path.name + ".",
        suffix=".tmp",
    )
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise


def atomic_write_json(path: Path, payload: Mapping[str, Any]) -> None:
    """Write JSON next to `path` and atomically move it into place."""

    path.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_text(
        path,
        json.dumps(dict(payload), ensure_ascii=False, indent=JSON_INDENT, sort_keys=True) + "\n",
    )


def _jsonl_text(records: Iterable[PageRecord]) -> str:
    return "".join(
        json.dumps(record.to_json(), ensure_ascii=False, sort_keys=True) + "\n" for record in records
    )


def _iter_jsonl(path: Path) -> Iterator[dict[str, Any]]:
    if not path.exists():
        return
    with path.open("r", encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                LOGGER.warning("Skipping malformed line %d in %s", line_no, path)
                continue
            if isinstance(payload, dict):
                yield payload


class JsonlGateway:
    """Filesystem gateway for one site under `<output_dir>/data/<site>/`.

    Tables are append-only JSONL files where the last row per `id` wins when
    loading; deleting a match appends a tombstone row. A table holding more
    than `JSONL_COMPACT_FACTOR` rows per live id is rewritten with one row per
    id, checked on load and after each run summary. Settings live in a JSON
    document rewritten atomically and re-read on every `get_settings()` so
    edits made by a maintenance command are picked up by a running crawl.
    """

    def __init__(self, output_dir: str | Path, site: str) -> None:
        self.site = site
        self.root = Path(output_dir) / "data" / site

        self.page_cache_path = self.root / "page_cache.jsonl"
        self.matches_path = self.root / "matches.jsonl"
        self.runs_path = self.root / "runs.jsonl"
        self.settings_path = self.root / "settings.json"

        self._lock = threading.RLock()
        self._pages: dict[str, PageRecord] = {}
        self._matches: dict[str, PageRecord] = {}
        self._last_run: RunSummary | None = None
        self._page_rows = 0
        self._match_rows = 0

        self.root.mkdir(parents=True, exist_ok=True)
        self._load_state()
        self._compact_if_bloated()

    @property
    def paths(self) -> JSONDict:
        """Return table paths for logging/CLI status messages."""

        return {
            "root": str(self.root),
            "page_cache": str(self.page_cache_path),
            "matches": str(self.matches_path),
            "runs": str(self.runs_path),
            "settings": str(self.settings_path),
        }

    def _load_state(self) -> None:
        for payload in _iter_jsonl(self.page_cache_path):
            self._page_rows += 1
            try:
                record = PageRecord.from_json(payload)
            except (KeyError, TypeError, ValueError):
                continue
            self._pages[record.url_hash] = record

        for payload in _iter_jsonl(self.matches_path):
            self._match_rows += 1
            row_id = payload.get("id")
            if payload.get("deleted"):
                self._matches.pop(str(row_id), None)
                continue
            try:
                record = PageRecord.from_json(payload)
            except (KeyError, TypeError, ValueError):
                continue
            self._matches[record.url_hash] = record

        for payload in _iter_jsonl(self.runs_path):
            try:
                self._last_run = RunSummary.from_json(payload)
            except (TypeError, ValueError):
                continue

    def get_known_url_hashes(self) -> set[str]:
        with self._lock:
            return set(self._pages)

    def upsert_page(self, page: PageRecord) -> UpsertResult:
        key = page.url_hash
        with self._lock:
            is_new = key not in self._pages
            self._pages[key] = page
            self._append_jsonl(self.page_cache_path, page.to_json())
            self._page_rows += 1
            if page.is_match:
                self._matches[key] = page
                self._append_jsonl(self.matches_path, page.to_json())
                self._match_rows += 1
        return UpsertResult(is_new=is_new)

    def record_run_summary(self, summary: RunSummary) -> None:
        payload = summary.to_json()
        payload["site"] = summary.site or self.site
        stamp_field = "last_auto_run_at" if summary.mode == RunMode.AUTO else "last_manual_run_at"
        with self._lock:
            self._append_jsonl(self.runs_path, payload)
            self._last_run = summary
            self.update_settings(**{stamp_field: summary.completed_at})
            self._compact_if_bloated()

    def get_settings(self) -> AppSettings:
        with self._lock:
            if not self.settings_path.exists():
                return AppSettings()
            try:
                payload = json.loads(self.settings_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                raise GatewayError(f"Unreadable settings file {self.settings_path}: {exc}") from exc
            if not isinstance(payload, dict):
                raise GatewayError(f"Settings file {self.settings_path} must hold a JSON object")
            return AppSettings.from_json(payload)

    def update_settings(self, **changes: Any) -> AppSettings:
        unknown = set(changes) - SETTINGS_FIELDS
        if unknown:
            raise ValueError(f"Unknown settings fields: {sorted(unknown)}")

        with self._lock:
            payload = self.get_settings().to_json()
            payload.update(changes)
            settings = AppSettings.from_json(payload)
            atomic_write_json(self.settings_path, settings.to_json())
            return settings

    def clear_all(self) -> None:
        with self._lock:
            for path in (self.page_cache_path, self.matches_path, self.runs_path):
                _atomic_write_text(path, "")
            self._pages.clear()
            self._matches.clear()
            self._page_rows = 0
            self._match_rows = 0
            self._last_run = None
            self.update_settings(last_auto_run_at=None, last_manual_run_at=None)
        LOGGER.info("[%s] Cleared page cache, matches and run history", self.site)

    def fetch_matches(self) -> list[PageRecord]:
        with self._lock:
            return sorted(self._matches.values(), key=lambda page: page.scraped_at, reverse=True)

    def fetch_stats(self) -> GatewayStats:
        with self._lock:
            return GatewayStats(
                total_pages=len(self._pages),
                match_pages=len(self._matches),
                last_scrape_at=None if self._last_run is None else self._last_run.completed_at,
            )

    def update_match_summary(self, url: str, summary: str | None) -> bool:
        return self._rewrite_match(url, lambda page: page.with_summary(summary))

    def update_match_keyword(self, url: str, keyword: str | None) -> bool:
        return self._rewrite_match(
            url,
            lambda page: replace(page, matched_keyword=keyword),
        )

    def delete_match(self, url: str) -> bool:
        key = hash_url(url)
        with self._lock:
            if key not in self._matches:
                return False
            del self._matches[key]
            self._append_jsonl(self.matches_path, {"id": key, "url": url, "deleted": True})
            self._match_rows += 1
            return True

    def _rewrite_match(self, url: str, change: Callable[[PageRecord], PageRecord]) -> bool:
        key = hash_url(url)
        with self._lock:
            current = self._matches.get(key)
            if current is None:
                return False
            updated = change(current)
            self._matches[key] = updated
            self._append_jsonl(self.matches_path, updated.to_json())
            self._match_rows += 1
            return True

    def compact(self) -> None:
        """Rewrite both tables atomically with the last row of each live id."""

        with self._lock:
            _atomic_write_text(self.page_cache_path, _jsonl_text(self._pages.values()))
            _atomic_write_text(self.matches_path, _jsonl_text(self._matches.values()))
            dropped = self._page_rows + self._match_rows - len(self._pages) - len(self._matches)
            self._page_rows = len(self._pages)
            self._match_rows = len(self._matches)
        LOGGER.info("[%s] Compacted page cache and matches (%d stale rows dropped)", self.site, dropped)

    def _compact_if_bloated(self) -> None:
        with self._lock:
            bloated = (
                self._page_rows > JSONL_COMPACT_FACTOR * max(len(self._pages), 1)
                or self._match_rows > JSONL_COMPACT_FACTOR * max(len(self._matches), 1)
            )
        if bloated:
            self.compact()

    @staticmethod
    def _append_jsonl(path: Path, payload: Mapping[str, Any]) -> None:
        line = json.dumps(dict(payload), ensure_ascii=False, sort_keys=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")


class RunManifests:
    """Run-level manifests and the log directory under `output_dir`."""

    def __init__(self, output_dir: str | Path) -> None:
        self.output_dir = Path(output_dir)
        self.manifests_dir = self.output_dir / "manifests"
        self.logs_dir = self.output_dir / "logs"
        self.crawl_config_path = self.manifests_dir / "crawl_config.json"

        self.manifests_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    def crawl_stats_path(self, site: str) -> Path:
        return self.manifests_dir / f"crawl_stats_{site}.json"

    def save_crawl_config(self, config: CrawlConfig | Mapping[str, Any]) -> None:
        """Write crawl config manifest atomically as JSON."""

        payload = config.to_dict() if isinstance(config, CrawlConfig) else dict(config)
        atomic_write_json(self.crawl_config_path, payload)

    def save_crawl_stats(self, site: str, stats: Mapping[str, Any]) -> None:
        """Write one site's run diagnostics atomically as JSON."""

        atomic_write_json(self.crawl_stats_path(site), stats)


__all__ = [
    "JsonlGateway",
    "PersistenceGateway",
    "RunManifests",
    "SettingsSource",
    "atomic_write_json",
]
