"""Supabase (PostgREST over HTTPS) implementation of the persistence gateway."""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping

import requests

from .storage import SETTINGS_FIELDS
from .types import (
    AppSettings,
    GatewayError,
    GatewayStats,
    PageRecord,
    RunMode,
    RunSummary,
    UpsertResult,
    hash_url,
)

LOGGER = logging.getLogger(__name__)

PAGE_SIZE = 1000
REQUEST_TIMEOUT_SECONDS = 15.0
RUNS_TABLE = "scrape_runs"
SETTINGS_TABLE = "settings"
MATCH_COLUMNS = "id,url,title,content,scraped_at,summary,matched_keyword"


def _settings_from_row(row: Mapping[str, Any]) -> AppSettings:
    return AppSettings(
        auto_run_enabled=bool(row.get("auto_run_enabled") or False),
        webhook_url=row.get("teams_webhook_url") or None,
        last_auto_run_at=row.get("last_auto_run_at") or None,
        last_manual_run_at=row.get("last_manual_run_at") or None,
    )


def _settings_to_row(site: str, settings: AppSettings) -> dict[str, Any]:
    return {
        "id": site,
        "auto_run_enabled": settings.auto_run_enabled,
        "teams_webhook_url": settings.webhook_url,
        "last_auto_run_at": settings.last_auto_run_at,
        "last_manual_run_at": settings.last_manual_run_at,
    }


def _count_from_content_range(value: str | None) -> int:
    # PostgREST answers "0-0/123" or "*/0".
    if not value or "/" not in value:
        return 0
    total = value.rsplit("/", maxsplit=1)[-1]
    return int(total) if total.isdigit() else 0


class SupabaseGateway:
    """Gateway over the `{site}_page_cache` / `{site}_is_e_invoicing_pages` tables.

    Page and match upserts raise GatewayError, so a store that is down ends
    the crawl run in `error`. Listing known URL hashes raises too, because an
    only-new run without that list would re-crawl and re-notify everything.
    Other failures are logged and the call degrades: an upsert that cannot
    check for an existing row reports `is_new=False`.
    """

    def __init__(
        self,
        site: str,
        *,
        url: str | None = None,
        key: str | None = None,
        session: requests.Session | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.site = site
        self.url = (url or os.getenv("SUPABASE_URL", "")).rstrip("/")
        self.key = key or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_KEY", "")
        if not self.url or not self.key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_KEY) must be set")

        self.timeout = timeout
        self.base_url = f"{self.url}/rest/v1"
        self.pages_table = f"{site}_page_cache"
        self.matches_table = f"{site}_is_e_invoicing_pages"

        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": self.key,
                "Authorization": f"Bearer {self.key}",
                "Content-Type": "application/json",
            }
        )

    def close(self) -> None:
        self.session.close()

    def _request(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Any = None,
        prefer: str | None = None,
        extra_headers: Mapping[str, str] | None = None,
    ) -> requests.Response:
        headers: dict[str, str] = dict(extra_headers or {})
        if prefer:
            headers["Prefer"] = prefer
        try:
            response = self.session.request(
                method,
                f"{self.base_url}/{table}",
                params=params,
                json=json_body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GatewayError(f"{method} {table} failed: {exc.__class__.__name__}: {exc}") from exc
        if response.status_code >= 400:
            raise GatewayError(f"{method} {table} returned HTTP {response.status_code}: {response.text[:300]}")
        return response

    def get_known_url_hashes(self) -> set[str]:
        hashes: set[str] = set()
        offset = 0
        while True:
            response = self._request(
                "GET",
                self.pages_table,
                params={"select": "id", "order": "id.asc"},
                extra_headers={"Range-Unit": "items", "Range": f"{offset}-{offset + PAGE_SIZE - 1}"},
            )
            rows = response.json() or []
            hashes.update(str(row["id"]) for row in rows if row.get("id"))
            if len(rows) < PAGE_SIZE:
                break
            offset += PAGE_SIZE
        return hashes

    def upsert_page(self, page: PageRecord) -> UpsertResult:
        page_id = page.url_hash
        existing = True
        try:
            response = self._request(
                "GET", self.pages_table, params={"select": "id", "id": f"eq.{page_id}"}
            )
            existing = bool(response.json())
        except GatewayError as exc:
            LOGGER.error("[%s] Failed to check existing page %s: %s", self.site, page.url, exc)

        row = {
            "id": page_id,
            "url": page.url,
            "title": page.title,
            "content": page.content_preview,
            "scraped_at": page.scraped_at,
            "is_e_invoicing": page.is_match,
            "summary": page.summary or None,
            "matched_keyword": page.matched_keyword or None,
        }
        # Write failures propagate: an unavailable store ends the run.
        self._request(
            "POST",
            self.pages_table,
            params={"on_conflict": "id"},
            json_body=row,
            prefer="resolution=merge-duplicates,return=minimal",
        )

        if page.is_match:
            match_row = {k: v for k, v in row.items() if k != "is_e_invoicing"}
            self._request(
                "POST",
                self.matches_table,
                params={"on_conflict": "id"},
                json_body=match_row,
                prefer="resolution=merge-duplicates,return=minimal",
            )

        return UpsertResult(is_new=not existing)

    def record_run_summary(self, summary: RunSummary) -> None:
        row = {
            "mode": summary.mode.value,
            "started_at": summary.started_at,
            "completed_at": summary.completed_at,
            "total_pages_crawled": summary.total_pages_crawled,
            "new_e_invoicing_pages": summary.new_match_count,
        }
        try:
            self._request("POST", RUNS_TABLE, json_body=row, prefer="return=minimal")
        except GatewayError as exc:
            LOGGER.error("[%s] Failed to record scrape run: %s", self.site, exc)

        stamp_field = "last_auto_run_at" if summary.mode == RunMode.AUTO else "last_manual_run_at"
        self.update_settings(**{stamp_field: summary.completed_at})

    def get_settings(self) -> AppSettings:
        try:
            response = self._request(
                "GET", SETTINGS_TABLE, params={"select": "*", "id": f"eq.{self.site}"}
            )
        except GatewayError as exc:
            LOGGER.error("[%s] Failed to fetch settings: %s", self.site, exc)
            return AppSettings()

        rows = response.json() or []
        if not rows:
            defaults = AppSettings()
            self._write_settings(defaults)
            return defaults
        return _settings_from_row(rows[0])

    def update_settings(self, **changes: Any) -> AppSettings:
        unknown = set(changes) - SETTINGS_FIELDS
        if unknown:
            raise ValueError(f"Unknown settings fields: {sorted(unknown)}")

        payload = self.get_settings().to_json()
        payload.update(changes)
        settings = AppSettings.from_json(payload)
        self._write_settings(settings)
        return settings

    def _write_settings(self, settings: AppSettings) -> None:
        try:
            self._request(
                "POST",
                SETTINGS_TABLE,
                params={"on_conflict": "id"},
                json_body=_settings_to_row(self.site, settings),
                prefer="resolution=merge-duplicates,return=minimal",
            )
        except GatewayError as exc:
            LOGGER.error("[%s] Failed to update settings: %s", self.site, exc)

    def clear_all(self) -> None:
        for table in (self.pages_table, self.matches_table, RUNS_TABLE):
            try:
                self._request("DELETE", table, params={"id": "not.is.null"}, prefer="return=minimal")
            except GatewayError as exc:
                LOGGER.error("[%s] Failed to clear table %s: %s", self.site, table, exc)
        self.update_settings(last_auto_run_at=None, last_manual_run_at=None)

    def fetch_matches(self) -> list[PageRecord]:
        try:
            response = self._request(
                "GET",
                self.matches_table,
                params={"select": MATCH_COLUMNS, "order": "scraped_at.desc"},
            )
        except GatewayError as exc:
            LOGGER.error("[%s] Failed to fetch e-invoicing pages: %s", self.site, exc)
            return []
        return [
            PageRecord.from_json({**row, "is_e_invoicing": True})
            for row in (response.json() or [])
            if row.get("url")
        ]

    def _count(self, table: str) -> int:
        response = self._request(
            "HEAD",
            table,
            params={"select": "id"},
            prefer="count=exact",
        )
        return _count_from_content_range(response.headers.get("Content-Range"))

    def fetch_stats(self) -> GatewayStats:
        try:
            total = self._count(self.pages_table)
            matches = self._count(self.matches_table)
        except GatewayError as exc:
            LOGGER.error("[%s] Failed to fetch stats: %s", self.site, exc)
            total, matches = 0, 0
        settings = self.get_settings()
        return GatewayStats(
            total_pages=total,
            match_pages=matches,
            last_scrape_at=settings.last_manual_run_at or settings.last_auto_run_at,
        )

    def _patch_match(self, url: str, fields: Mapping[str, Any]) -> bool:
        try:
            response = self._request(
                "PATCH",
                self.matches_table,
                params={"id": f"eq.{hash_url(url)}"},
                json_body=dict(fields),
                prefer="return=representation",
            )
        except GatewayError as exc:
            LOGGER.error("[%s] Failed to update match %s: %s", self.site, url, exc)
            return False
        return bool(response.json())

    def update_match_summary(self, url: str, summary: str | None) -> bool:
        return self._patch_match(url, {"summary": summary})

    def update_match_keyword(self, url: str, keyword: str | None) -> bool:
        return self._patch_match(url, {"matched_keyword": keyword})

    def delete_match(self, url: str) -> bool:
        try:
            response = self._request(
                "DELETE",
                self.matches_table,
                params={"url": f"eq.{url}"},
                prefer="return=representation",
            )
        except GatewayError as exc:
            LOGGER.error("[%s] Failed to delete %s: %s", self.site, url, exc)
            return False
        return bool(response.json())


__all__ = ["SupabaseGateway"]
