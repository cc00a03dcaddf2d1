"""CLI for settings, stats and stored-match upkeep outside of crawl runs."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys
import time
from typing import Callable

from tqdm import tqdm

if __package__ in {None, ""}:
    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))

from monitor.crawl import GatewayRegistry, build_config, setup_logging
from monitor.crawler import (
    KNOWN_FALSE_POSITIVES,
    CrawlConfig,
    Fetcher,
    HTMLParser,
    KeywordMatcher,
    PageFetcher,
    PageRecord,
    PDFParser,
    PersistenceGateway,
    SiteProfile,
    parse_fetch_result,
    resolve_profiles,
)
from monitor.crawler.constants import SUPPORTED_STORAGE_BACKENDS
from monitor.integrations import NotificationDispatcher, Summarizer

LOGGER = logging.getLogger(__name__)

BACKFILL_DELAY_SECONDS = 1.0


def _on_off(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in {"on", "true", "yes", "1"}:
        return True
    if normalized in {"off", "false", "no", "0"}:
        return False
    raise argparse.ArgumentTypeError(f"expected on/off, got {value!r}")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Maintain monitor settings and stored matches.")
    parser.add_argument("--config", type=Path, default=None, help="Path to JSON/YAML monitor config.")
    parser.add_argument("--output_dir", type=Path, default=None)
    parser.add_argument("--storage", type=str, choices=list(SUPPORTED_STORAGE_BACKENDS), default=None)
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    settings = subparsers.add_parser("settings", help="Show or update the shared settings.")
    settings.add_argument("--auto_run", type=_on_off, default=None, help="on or off")
    settings.add_argument("--webhook", type=str, default=None, help="Webhook URL, or 'none' to clear.")

    stats = subparsers.add_parser("stats", help="Print stored page/match counts per site.")
    stats.add_argument("--site", action="append", default=[])

    reset = subparsers.add_parser("reset", help="Delete all stored pages, matches and runs of a site.")
    reset.add_argument("--site", action="append", default=[], required=True)

    send = subparsers.add_parser("send", help="Post every stored match of a site to the webhook.")
    send.add_argument("--site", action="append", default=[])

    backfill = subparsers.add_parser("backfill-summaries", help="Summarize stored matches lacking a summary.")
    backfill.add_argument("--site", action="append", default=[])
    backfill.add_argument("--delay_seconds", type=float, default=BACKFILL_DELAY_SECONDS)

    cleanup = subparsers.add_parser(
        "cleanup",
        help="Remove known false positives and re-check stored matches against the keywords.",
    )
    cleanup.add_argument("--site", action="append", default=[])
    cleanup.add_argument(
        "--delete_unmatched",
        action="store_true",
        help="Re-fetch stored matches without a hit in their preview and delete those whose full text no keyword or pattern hits.",
    )

    return parser.parse_args(argv)


def command_settings(args: argparse.Namespace, config: CrawlConfig, registry: GatewayRegistry) -> int:
    gateway = registry.settings_source()
    changes: dict[str, object] = {}
    if args.auto_run is not None:
        changes["auto_run_enabled"] = args.auto_run
    if args.webhook is not None:
        changes["webhook_url"] = None if args.webhook.strip().lower() in {"", "none"} else args.webhook.strip()

    settings = gateway.update_settings(**changes) if changes else gateway.get_settings()
    if changes:
        LOGGER.info("Updated settings (%s): %s", config.shared_settings_site, sorted(changes))
    print(json.dumps(settings.to_json(), indent=2, sort_keys=True))
    return 0


def command_stats(args: argparse.Namespace, config: CrawlConfig, registry: GatewayRegistry) -> int:
    payload = {}
    for profile in resolve_profiles(config, args.site or None):
        payload[profile.key] = registry.get(profile.key).fetch_stats().to_json()
    print(json.dumps(payload, indent=2, sort_keys=True))
    return 0


def command_reset(args: argparse.Namespace, config: CrawlConfig, registry: GatewayRegistry) -> int:
    for profile in resolve_profiles(config, args.site):
        registry.get(profile.key).clear_all()
        print(f"{profile.key}: cleared")
    return 0


def command_send(args: argparse.Namespace, config: CrawlConfig, registry: GatewayRegistry) -> int:
    webhook_url = registry.settings_source().get_settings().webhook_url
    if not webhook_url:
        LOGGER.error("No webhook configured; set one with `settings --webhook URL`")
        return 1

    dispatcher = NotificationDispatcher()
    for profile in resolve_profiles(config, args.site or None):
        matches = registry.get(profile.key).fetch_matches()
        if not matches:
            print(f"{profile.key}: no stored matches")
            continue
        sent = dispatcher.notify(webhook_url, matches, profile.label)
        print(f"{profile.key}: sent {len(matches)} match(es) in {sent} message(s)")
    return 0


def backfill_summaries(
    gateway: PersistenceGateway,
    summarizer: Summarizer,
    *,
    delay_seconds: float = BACKFILL_DELAY_SECONDS,
    sleep=time.sleep,
) -> int:
    """Summarize stored matches with no summary; returns how many were updated."""

    pending = [page for page in gateway.fetch_matches() if not page.summary]
    updated = 0
    for index, page in enumerate(tqdm(pending, desc="Summaries", unit="page")):
        summary = summarizer.summarize(page.title, page.content_preview, page.url)
        if gateway.update_match_summary(page.url, summary):
            updated += 1
        if delay_seconds > 0 and index < len(pending) - 1:
            sleep(delay_seconds)
    return updated


def command_backfill(args: argparse.Namespace, config: CrawlConfig, registry: GatewayRegistry) -> int:
    summarizer = Summarizer()
    if not summarizer.available:
        LOGGER.warning("MISTRAL_API_KEY is not set; summaries will use the text excerpt fallback")

    for profile in resolve_profiles(config, args.site or None):
        updated = backfill_summaries(
            registry.get(profile.key),
            summarizer,
            delay_seconds=args.delay_seconds,
        )
        print(f"{profile.key}: updated {updated} summary(ies)")
    return 0


PageTextReader = Callable[[PageRecord], str | None]


def full_text_reader(fetcher: PageFetcher, profile: SiteProfile) -> PageTextReader:
    """Re-fetch a stored page and return its full extracted text, or None."""

    html_parser, pdf_parser = HTMLParser(), PDFParser()

    def read(page: PageRecord) -> str | None:
        fetch_result = fetcher.fetch(page.url)
        if not fetch_result.ok:
            LOGGER.warning("Could not re-fetch %s: %s", page.url, fetch_result.describe_error())
            return None
        parse_result = parse_fetch_result(fetch_result, profile, html_parser=html_parser, pdf_parser=pdf_parser)
        if not parse_result.ok:
            LOGGER.warning("Could not parse %s: %s", page.url, parse_result.error)
            return None
        return parse_result.text

    return read


def cleanup_matches(
    gateway: PersistenceGateway,
    matcher: KeywordMatcher,
    *,
    false_positive_urls: tuple[str, ...] | list[str] = (),
    delete_unmatched: bool = False,
    page_text: PageTextReader | None = None,
) -> dict[str, int]:
    """Drop known false positives, then re-classify what is left.

    The stored preview is only the start of a page, so a preview without a
    hit is checked again against the full text from `page_text`. A remaining
    match whose first hit differs from the stored keyword gets the keyword
    rewritten. Matches nothing hits anymore are reported; with
    `delete_unmatched` they are deleted, but only after the full text was read.
    """

    counts = {"false_positives_deleted": 0, "keywords_updated": 0, "unmatched": 0, "unmatched_deleted": 0}

    for url in false_positive_urls:
        if gateway.delete_match(url):
            counts["false_positives_deleted"] += 1
            LOGGER.info("Deleted false positive %s", url)

    for page in gateway.fetch_matches():
        result = matcher.match(page.content_preview, page.title, page.url)
        full_text = None
        if not result.is_match and page_text is not None:
            full_text = page_text(page)
            if full_text is not None:
                result = matcher.match(full_text, page.title, page.url)

        if result.is_match:
            if result.keyword != page.matched_keyword and gateway.update_match_keyword(page.url, result.keyword):
                counts["keywords_updated"] += 1
            continue

        counts["unmatched"] += 1
        if full_text is None:
            LOGGER.warning("No keyword in the stored preview of %s; full text not checked", page.url)
            continue
        LOGGER.warning("No keyword matches stored page anymore: %s", page.url)
        if delete_unmatched and gateway.delete_match(page.url):
            counts["unmatched_deleted"] += 1

    return counts


def command_cleanup(args: argparse.Namespace, config: CrawlConfig, registry: GatewayRegistry) -> int:
    with Fetcher(config) as fetcher:
        for profile in resolve_profiles(config, args.site or None):
            counts = cleanup_matches(
                registry.get(profile.key),
                KeywordMatcher.from_profile(profile),
                false_positive_urls=KNOWN_FALSE_POSITIVES.get(profile.key, ()),
                delete_unmatched=args.delete_unmatched,
                page_text=full_text_reader(fetcher, profile) if args.delete_unmatched else None,
            )
            print(f"{profile.key}: {json.dumps(counts, sort_keys=True)}")
    return 0


COMMANDS = {
    "settings": command_settings,
    "stats": command_stats,
    "reset": command_reset,
    "send": command_send,
    "backfill-summaries": command_backfill,
    "cleanup": command_cleanup,
}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        config = build_config(args)
    except Exception as exc:
        logging.basicConfig(level=logging.INFO)
        logging.error("Failed to build config: %s", exc)
        return 2

    setup_logging(Path(config.output_dir), verbose=args.verbose, log_name="maintenance.log")

    try:
        registry = GatewayRegistry(config)
        return COMMANDS[args.command](args, config, registry)
    except (KeyError, ValueError) as exc:
        logging.error("%s", exc)
        return 2
    except Exception:
        logging.exception("Command %s failed", args.command)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
