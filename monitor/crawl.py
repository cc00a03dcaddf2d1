"""CLI entrypoint for monitor crawl runs."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys
from typing import Any

if __package__ in {None, ""}:
    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))

from monitor.crawler import (
    CrawlConfig,
    CrawlEngine,
    CrawlSession,
    CrawlStatus,
    JsonlGateway,
    PersistenceGateway,
    RunManifests,
    RunMode,
    StartOptions,
    load_config,
    resolve_profiles,
)
from monitor.crawler.constants import SUPPORTED_DISCOVERY, SUPPORTED_STORAGE_BACKENDS
from monitor.crawler.supabase import SupabaseGateway
from monitor.integrations import NotificationDispatcher, Summarizer

LOGGER = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Crawl government sites for e-invoicing pages and notify on new matches.",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to JSON/YAML monitor config.",
    )
    parser.add_argument(
        "--output_dir",
        type=Path,
        default=None,
        help="Root output directory for data/manifests/logs (default comes from config).",
    )
    parser.add_argument(
        "--site",
        action="append",
        default=[],
        help="Site key to crawl (repeatable). Defaults to config sites, then every known site.",
    )

    parser.add_argument(
        "--only_new",
        action="store_true",
        help="Skip URLs already present in the page cache.",
    )
    parser.add_argument(
        "--auto",
        action="store_true",
        help=(
            "Scheduled run: only proceeds when auto-run is enabled in settings, "
            "and implies --only_new."
        ),
    )
    parser.add_argument(
        "--discovery",
        type=str,
        choices=list(SUPPORTED_DISCOVERY),
        default=None,
        help="URL discovery strategy (default comes from config).",
    )
    parser.add_argument(
        "--storage",
        type=str,
        choices=list(SUPPORTED_STORAGE_BACKENDS),
        default=None,
        help="Persistence backend (default comes from config).",
    )
    parser.add_argument("--request_delay_seconds", type=float, default=None)
    parser.add_argument("--timeout_seconds", type=float, default=None)

    parser.add_argument(
        "--no_summary",
        action="store_true",
        help="Do not summarize matched pages.",
    )
    parser.add_argument(
        "--no_notify",
        action="store_true",
        help="Do not post new matches to the configured webhook.",
    )

    parser.add_argument(
        "--print_stats_json",
        action="store_true",
        help="Print full per-site diagnostics JSON in stdout after run.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> CrawlConfig:
    payload: dict[str, Any] = {}
    if getattr(args, "config", None) is not None:
        payload = load_config(args.config).to_dict()

    if getattr(args, "site", None):
        payload["sites"] = list(args.site)
    if getattr(args, "output_dir", None) is not None:
        payload["output_dir"] = str(args.output_dir)
    if getattr(args, "discovery", None) is not None:
        payload["discovery"] = args.discovery
    if getattr(args, "storage", None) is not None:
        payload["storage_backend"] = args.storage
    if getattr(args, "request_delay_seconds", None) is not None:
        payload["request_delay_seconds"] = args.request_delay_seconds
    if getattr(args, "timeout_seconds", None) is not None:
        payload["timeout_seconds"] = args.timeout_seconds

    return CrawlConfig.from_dict(payload)


def setup_logging(output_dir: Path, verbose: bool, *, log_name: str = "crawl.log") -> None:
    log_level = logging.DEBUG if verbose else logging.INFO

    log_dir = output_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / log_name

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    # urllib3 logs every connection at DEBUG; keep --verbose output about pages.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("pdfminer").setLevel(logging.ERROR)


class GatewayRegistry:
    """One gateway per site key, so settings reads and writes share an instance."""

    def __init__(self, config: CrawlConfig) -> None:
        self.config = config
        self._gateways: dict[str, PersistenceGateway] = {}

    def get(self, site: str) -> PersistenceGateway:
        if site not in self._gateways:
            if self.config.storage_backend == "supabase":
                self._gateways[site] = SupabaseGateway(site)
            else:
                self._gateways[site] = JsonlGateway(self.config.output_dir, site)
        return self._gateways[site]

    def settings_source(self) -> PersistenceGateway:
        return self.get(self.config.shared_settings_site)


def build_engines(
    config: CrawlConfig,
    registry: GatewayRegistry,
    *,
    summarize: bool = True,
    notify: bool = True,
) -> list[CrawlEngine]:
    profiles = resolve_profiles(config)
    summarizer = Summarizer() if summarize else None
    notifier = NotificationDispatcher() if notify else None
    settings_source = registry.settings_source()

    engines: list[CrawlEngine] = []
    for profile in profiles:
        engines.append(
            CrawlEngine(
                config,
                profile,
                registry.get(profile.key),
                summarizer=summarizer,
                notifier=notifier,
                settings_source=settings_source,
            )
        )
    return engines


def run_engines(engines: list[CrawlEngine], options: StartOptions) -> list[CrawlSession]:
    """Start every engine, then wait for all of them; Ctrl-C stops them cooperatively."""

    for engine in engines:
        result = engine.start(options)
        if not result.accepted:
            LOGGER.warning("[%s] Not started: %s", engine.profile.key, result.error)

    try:
        for engine in engines:
            engine.wait()
    except KeyboardInterrupt:
        LOGGER.error("Interrupted by user, stopping crawls")
        for engine in engines:
            engine.stop()
        for engine in engines:
            engine.wait()
        raise

    return [engine.snapshot() for engine in engines]


def print_summary(engines: list[CrawlEngine], *, print_stats_json: bool) -> None:
    print("\n=== Monitor Run Complete ===")
    for engine in engines:
        session = engine.snapshot()
        print(f"\n--- {engine.profile.label} ({engine.profile.key}) ---")
        print(f"status: {session.status.value}")
        print(f"pages_crawled: {session.total_pages_crawled}")
        print(f"e_invoicing_pages_found: {session.e_invoicing_pages_found}")
        print(f"new_matches: {len(engine.new_matches)}")
        print(f"duplicates_ignored: {session.duplicates_ignored}")
        if session.error_message:
            print(f"error: {session.error_message}")

    if print_stats_json:
        print("\n--- Full Stats JSON ---")
        payload = {engine.profile.key: engine.diagnostics() for engine in engines}
        print(json.dumps(payload, indent=2, sort_keys=True))


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        config = build_config(args)
        resolve_profiles(config)
    except Exception as exc:
        logging.basicConfig(level=logging.INFO)
        logging.error("Failed to build config: %s", exc)
        return 2

    manifests = RunManifests(config.output_dir)
    setup_logging(manifests.output_dir, verbose=args.verbose)
    manifests.save_crawl_config(config)

    try:
        registry = GatewayRegistry(config)
        mode = RunMode.AUTO if args.auto else RunMode.MANUAL
        if mode == RunMode.AUTO:
            settings = registry.settings_source().get_settings()
            if not settings.auto_run_enabled:
                logging.info("Auto-run is disabled in settings, nothing to do")
                return 0

        engines = build_engines(
            config,
            registry,
            summarize=not args.no_summary,
            notify=not args.no_notify,
        )
    except Exception as exc:
        logging.error("Failed to initialize monitor: %s", exc)
        return 2

    options = StartOptions(mode=mode, only_new=args.only_new or mode == RunMode.AUTO)
    logging.info(
        "Starting monitor: mode=%s, only_new=%s, sites=%s, storage=%s, discovery=%s",
        options.mode.value,
        options.only_new,
        ",".join(engine.profile.key for engine in engines),
        config.storage_backend,
        config.discovery,
    )

    try:
        sessions = run_engines(engines, options)
    except KeyboardInterrupt:
        return 130
    finally:
        for engine in engines:
            manifests.save_crawl_stats(engine.profile.key, engine.diagnostics())
            engine.close()

    print_summary(engines, print_stats_json=args.print_stats_json)
    if any(session.status == CrawlStatus.ERROR for session in sessions):
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
