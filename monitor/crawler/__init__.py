"""Crawler package: site profiles, discovery, fetching, matching and storage."""

from .config import CrawlConfig, SiteProfile, StartOptions, WidgetRule, load_config, save_config
from .engine import BUSY_MESSAGE, CrawlEngine, parse_fetch_result
from .fetcher import Fetcher, PageFetcher
from .frontier import EnqueueResult, EnqueueStatus, UrlQueue, VisitedSet
from .matcher import KeywordMatcher
from .parsers import (
    HTMLParser,
    HTMLParserConfig,
    PDFParser,
    PDFParserConfig,
    remove_widget_sections,
)
from .session import SessionTracker
from .sitemap import (
    DiscoveryStrategy,
    SitemapDocument,
    SitemapLinkResolver,
    SitemapResolver,
    build_discovery,
    parse_sitemap_document,
)
from .sites import (
    BUILTIN_SITES,
    KNOWN_FALSE_POSITIVES,
    available_profiles,
    get_site_profile,
    resolve_profiles,
)
from .storage import JsonlGateway, PersistenceGateway, RunManifests, SettingsSource
from .types import (
    AppSettings,
    ContentKind,
    CrawlSession,
    CrawlStatus,
    EngineBusyError,
    FetchResult,
    GatewayError,
    GatewayStats,
    MatchResult,
    MonitorError,
    NotificationError,
    PageRecord,
    ParseResult,
    RunMode,
    RunSummary,
    SitemapError,
    StartResult,
    SummarizationError,
    UpsertResult,
    hash_url,
    infer_content_kind,
    utc_now_iso,
)
from .url import extract_links_from_html, filter_under_base, is_under_base, resolve_url

__all__ = [
    "AppSettings",
    "BUILTIN_SITES",
    "BUSY_MESSAGE",
    "ContentKind",
    "CrawlConfig",
    "CrawlEngine",
    "CrawlSession",
    "CrawlStatus",
    "DiscoveryStrategy",
    "EngineBusyError",
    "EnqueueResult",
    "EnqueueStatus",
    "FetchResult",
    "Fetcher",
    "GatewayError",
    "GatewayStats",
    "HTMLParser",
    "HTMLParserConfig",
    "JsonlGateway",
    "KNOWN_FALSE_POSITIVES",
    "KeywordMatcher",
    "MatchResult",
    "MonitorError",
    "NotificationError",
    "PDFParser",
    "PDFParserConfig",
    "PageFetcher",
    "PageRecord",
    "ParseResult",
    "PersistenceGateway",
    "RunManifests",
    "RunMode",
    "RunSummary",
    "SessionTracker",
    "SettingsSource",
    "SiteProfile",
    "SitemapDocument",
    "SitemapError",
    "SitemapLinkResolver",
    "SitemapResolver",
    "StartOptions",
    "StartResult",
    "SummarizationError",
    "UpsertResult",
    "UrlQueue",
    "VisitedSet",
    "WidgetRule",
    "available_profiles",
    "build_discovery",
    "extract_links_from_html",
    "filter_under_base",
    "get_site_profile",
    "hash_url",
    "infer_content_kind",
    "is_under_base",
    "load_config",
    "parse_fetch_result",
    "parse_sitemap_document",
    "remove_widget_sections",
    "resolve_profiles",
    "resolve_url",
    "save_config",
    "utc_now_iso",
]
