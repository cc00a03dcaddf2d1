"""Typed monitor configuration with JSON/YAML load/save helpers."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml  # type: ignore

from .constants import (
    DEFAULT_CONTENT_PREVIEW_CHARS,
    DEFAULT_DISCOVERY,
    DEFAULT_HTTP_HEADERS,
    DEFAULT_MAX_BODY_BYTES,
    DEFAULT_MAX_QUEUE_SIZE,
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_PROGRESS_LOG_EVERY,
    DEFAULT_REQUEST_DELAY_SECONDS,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_SHARED_SETTINGS_SITE,
    DEFAULT_STORAGE_BACKEND,
    DEFAULT_SUMMARY_INPUT_CHARS,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
    JSON_INDENT,
    SUPPORTED_CONFIG_SUFFIXES,
    SUPPORTED_DISCOVERY,
    SUPPORTED_STORAGE_BACKENDS,
)
from .types import JSONDict, RunMode


def _as_float(value: Any, key: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid float for '{key}': {value!r}") from exc


def _as_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid int for '{key}': {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid int for '{key}': {value!r}") from exc


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"Invalid bool for '{key}': {value!r}")


def _as_str_list(value: Any, key: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    raise ValueError(f"Invalid list for '{key}': {value!r}")


@dataclass(frozen=True, slots=True)
class WidgetRule:
    """Removes a labelled widget block and its link-dense sibling.

    A heading element whose collapsed, lower-cased text equals one of `labels`
    (a trailing colon is ignored) is removed together with the next sibling
    element when that sibling contains at least `min_links` anchors.
    """

    labels: tuple[str, ...]
    min_links: int = 2
    heading_tags: tuple[str, ...] = ("h1", "h2", "h3", "h4", "h5", "h6", "strong", "p", "span", "div")

    def __post_init__(self) -> None:
        if not self.labels:
            raise ValueError("WidgetRule requires at least one label")
        if self.min_links < 1:
            raise ValueError("WidgetRule.min_links must be >= 1")

    def to_json(self) -> JSONDict:
        return {
            "labels": list(self.labels),
            "min_links": self.min_links,
            "heading_tags": list(self.heading_tags),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "WidgetRule":
        kwargs: dict[str, Any] = {
            "labels": tuple(label.strip().lower() for label in _as_str_list(payload.get("labels"), "labels")),
            "min_links": _as_int(payload.get("min_links", 2), "min_links"),
        }
        if payload.get("heading_tags") is not None:
            kwargs["heading_tags"] = tuple(_as_str_list(payload.get("heading_tags"), "heading_tags"))
        return cls(**kwargs)


@dataclass(frozen=True, slots=True)
class SiteProfile:
    """Everything that distinguishes one monitored site from another."""

    key: str
    label: str
    base_url: str
    sitemap_url: str
    seed_url: str
    keywords: tuple[str, ...]
    patterns: tuple[str, ...] = ()
    widget_rules: tuple[WidgetRule, ...] = ()

    def __post_init__(self) -> None:
        if not self.key.strip():
            raise ValueError("SiteProfile.key cannot be empty")
        for name in ("base_url", "sitemap_url", "seed_url"):
            parsed = urlparse(getattr(self, name))
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(f"SiteProfile.{name} must be an absolute http(s) URL")
        if not self.keywords and not self.patterns:
            raise ValueError(f"SiteProfile '{self.key}' needs keywords or patterns")

    def to_json(self) -> JSONDict:
        return {
            "key": self.key,
            "label": self.label,
            "base_url": self.base_url,
            "sitemap_url": self.sitemap_url,
            "seed_url": self.seed_url,
            "keywords": list(self.keywords),
            "patterns": list(self.patterns),
            "widget_rules": [rule.to_json() for rule in self.widget_rules],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SiteProfile":
        key = str(payload.get("key", "")).strip().lower()
        base_url = str(payload.get("base_url", "")).rstrip("/")
        return cls(
            key=key,
            label=str(payload.get("label") or key),
            base_url=base_url,
            sitemap_url=str(payload.get("sitemap_url") or f"{base_url}/sitemap.xml"),
            seed_url=str(payload.get("seed_url") or base_url),
            keywords=tuple(_as_str_list(payload.get("keywords"), "keywords")),
            patterns=tuple(_as_str_list(payload.get("patterns"), "patterns")),
            widget_rules=tuple(
                WidgetRule.from_dict(item) for item in list(payload.get("widget_rules") or [])
            ),
        )


@dataclass(frozen=True, slots=True)
class StartOptions:
    """Per-run options handed to `CrawlEngine.start`/`run`."""

    mode: RunMode = RunMode.MANUAL
    only_new: bool = False


@dataclass(slots=True)
class CrawlConfig:
    """Top-level monitor configuration used by engine/fetcher/storage."""

    sites: list[str] = field(default_factory=list)
    custom_sites: list[SiteProfile] = field(default_factory=list)
    discovery: str = DEFAULT_DISCOVERY

    request_delay_seconds: float = DEFAULT_REQUEST_DELAY_SECONDS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    retries: int = DEFAULT_RETRIES
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS

    user_agent: str = DEFAULT_USER_AGENT
    default_headers: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_HTTP_HEADERS))

    max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE
    content_preview_chars: int = DEFAULT_CONTENT_PREVIEW_CHARS
    summary_input_chars: int = DEFAULT_SUMMARY_INPUT_CHARS
    progress_log_every: int = DEFAULT_PROGRESS_LOG_EVERY

    storage_backend: str = DEFAULT_STORAGE_BACKEND
    output_dir: str = DEFAULT_OUTPUT_DIR
    shared_settings_site: str = DEFAULT_SHARED_SETTINGS_SITE

    def __post_init__(self) -> None:
        self.sites = [site.strip().lower() for site in self.sites if site and site.strip()]
        self.discovery = self.discovery.strip().lower()
        self.storage_backend = self.storage_backend.strip().lower()

        if self.discovery not in SUPPORTED_DISCOVERY:
            raise ValueError(f"discovery must be one of {SUPPORTED_DISCOVERY}, got {self.discovery!r}")
        if self.storage_backend not in SUPPORTED_STORAGE_BACKENDS:
            raise ValueError(
                f"storage_backend must be one of {SUPPORTED_STORAGE_BACKENDS}, got {self.storage_backend!r}"
            )
        if self.request_delay_seconds < 0:
            raise ValueError("request_delay_seconds must be >= 0")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_redirects < 0:
            raise ValueError("max_redirects must be >= 0")
        if self.max_body_bytes <= 0:
            raise ValueError("max_body_bytes must be > 0")
        if self.retries < 0:
            raise ValueError("retries must be >= 0")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds must be >= 0")
        if self.max_queue_size <= 0:
            raise ValueError("max_queue_size must be > 0")
        if self.content_preview_chars <= 0:
            raise ValueError("content_preview_chars must be > 0")
        if self.summary_input_chars <= 0:
            raise ValueError("summary_input_chars must be > 0")
        if self.progress_log_every <= 0:
            raise ValueError("progress_log_every must be > 0")
        if not self.output_dir.strip():
            raise ValueError("output_dir cannot be empty")

    def headers(self) -> dict[str, str]:
        """Return request headers with the configured user agent."""

        merged: dict[str, str] = dict(self.default_headers)
        merged.setdefault("User-Agent", self.user_agent)
        return merged

    def to_dict(self) -> JSONDict:
        """Serialize config for run manifests and reproducibility."""

        return {
            "sites": list(self.sites),
            "custom_sites": [profile.to_json() for profile in self.custom_sites],
            "discovery": self.discovery,
            "request_delay_seconds": self.request_delay_seconds,
            "timeout_seconds": self.timeout_seconds,
            "max_redirects": self.max_redirects,
            "max_body_bytes": self.max_body_bytes,
            "retries": self.retries,
            "retry_backoff_seconds": self.retry_backoff_seconds,
            "user_agent": self.user_agent,
            "default_headers": dict(self.default_headers),
            "max_queue_size": self.max_queue_size,
            "content_preview_chars": self.content_preview_chars,
            "summary_input_chars": self.summary_input_chars,
            "progress_log_every": self.progress_log_every,
            "storage_backend": self.storage_backend,
            "output_dir": self.output_dir,
            "shared_settings_site": self.shared_settings_site,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CrawlConfig":
        """Build config from a parsed dictionary."""

        return cls(
            sites=_as_str_list(payload.get("sites"), "sites"),
            custom_sites=[
                SiteProfile.from_dict(item) for item in list(payload.get("custom_sites") or [])
            ],
            discovery=str(payload.get("discovery", DEFAULT_DISCOVERY)),
            request_delay_seconds=_as_float(
                payload.get("request_delay_seconds", DEFAULT_REQUEST_DELAY_SECONDS),
                "request_delay_seconds",
            ),
            timeout_seconds=_as_float(
                payload.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS), "timeout_seconds"
            ),
            max_redirects=_as_int(payload.get("max_redirects", DEFAULT_MAX_REDIRECTS), "max_redirects"),
            max_body_bytes=_as_int(
                payload.get("max_body_bytes", DEFAULT_MAX_BODY_BYTES), "max_body_bytes"
            ),
            retries=_as_int(payload.get("retries", DEFAULT_RETRIES), "retries"),
            retry_backoff_seconds=_as_float(
                payload.get("retry_backoff_seconds", DEFAULT_RETRY_BACKOFF_SECONDS),
                "retry_backoff_seconds",
            ),
            user_agent=str(payload.get("user_agent", DEFAULT_USER_AGENT)),
            default_headers={
                str(k): str(v)
                for k, v in dict(payload.get("default_headers", DEFAULT_HTTP_HEADERS)).items()
            },
            max_queue_size=_as_int(
                payload.get("max_queue_size", DEFAULT_MAX_QUEUE_SIZE), "max_queue_size"
            ),
            content_preview_chars=_as_int(
                payload.get("content_preview_chars", DEFAULT_CONTENT_PREVIEW_CHARS),
                "content_preview_chars",
            ),
            summary_input_chars=_as_int(
                payload.get("summary_input_chars", DEFAULT_SUMMARY_INPUT_CHARS),
                "summary_input_chars",
            ),
            progress_log_every=_as_int(
                payload.get("progress_log_every", DEFAULT_PROGRESS_LOG_EVERY),
                "progress_log_every",
            ),
            storage_backend=str(payload.get("storage_backend", DEFAULT_STORAGE_BACKEND)),
            output_dir=str(payload.get("output_dir", DEFAULT_OUTPUT_DIR)),
            shared_settings_site=str(
                payload.get("shared_settings_site", DEFAULT_SHARED_SETTINGS_SITE)
            ).strip().lower(),
        )


def _load_yaml(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML config at {path} must be a mapping at top level")
    return data


def load_config(path: str | Path) -> CrawlConfig:
    """Load CrawlConfig from JSON/YAML path."""

    config_path = Path(path)
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_CONFIG_SUFFIXES:
        raise ValueError(
            f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
        )

    if suffix == ".json":
        payload = json.loads(config_path.read_text(encoding="utf-8"))
    else:
        payload = _load_yaml(config_path)

    if not isinstance(payload, dict):
        raise ValueError(f"Config at {config_path} must be a mapping")

    return CrawlConfig.from_dict(payload)


def save_config(config: CrawlConfig, path: str | Path) -> None:
    """Save CrawlConfig as JSON or YAML based on file extension."""

    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    suffix = out_path.suffix.lower()
    payload = config.to_dict()

    if suffix == ".json":
        out_path.write_text(
            json.dumps(payload, indent=JSON_INDENT, sort_keys=True, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
        return

    if suffix in {".yaml", ".yml"}:
        out_path.write_text(
            yaml.safe_dump(payload, sort_keys=False, allow_unicode=True), encoding="utf-8"
        )
        return

    raise ValueError(
        f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
    )


__all__ = [
    "CrawlConfig",
    "SiteProfile",
    "StartOptions",
    "WidgetRule",
    "load_config",
    "save_config",
]
