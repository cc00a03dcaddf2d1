"""
tests/test_cli.py

Command-line entrypoints: config overrides, auto-run gating, exit codes and
manifests for `monitor.crawl`; settings, cleanup (including the full-text
re-check before deleting) and backfill for `monitor.maintenance`.
"""

from __future__ import annotations

import json
import logging

import pytest

from conftest import FakeFetcher, StaticSummarizer, html_page
from monitor import crawl, maintenance
from monitor.crawler import (
    BUILTIN_SITES,
    CrawlEngine,
    GatewayError,
    JsonlGateway,
    KeywordMatcher,
    PageRecord,
    resolve_profiles,
)

UAE_SEED = BUILTIN_SITES["uae"].seed_url


def _json_from_output(out: str):
    # Log lines share stdout with the command output; the JSON document comes last.
    start = 0 if out.startswith("{") else out.index("\n{") + 1
    return json.loads(out[start:])


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def _fake_build_engines(pages: dict[str, bytes], gateway_cls=None):
    seen: dict[str, object] = {}

    def build(config, registry, *, summarize=True, notify=True):
        engines = []
        for profile in resolve_profiles(config):
            gateway = registry.get(profile.key)
            if gateway_cls is not None:
                gateway = gateway_cls(config.output_dir, profile.key)
            engines.append(
                CrawlEngine(
                    config,
                    profile,
                    gateway,
                    fetcher=FakeFetcher(pages),
                    settings_source=registry.settings_source(),
                )
            )
        seen["engines"] = engines
        return engines

    return build, seen


# ---------------------------------------------------------------------------
# monitor.crawl
# ---------------------------------------------------------------------------


class TestCrawlCli:
    def test_build_config_overrides(self, tmp_path) -> None:
        args = crawl.parse_args(
            [
                "--site", "UAE",
                "--discovery", "sitemap_links",
                "--output_dir", str(tmp_path),
                "--request_delay_seconds", "2",
            ]
        )
        config = crawl.build_config(args)

        assert config.sites == ["uae"]
        assert config.discovery == "sitemap_links"
        assert config.output_dir == str(tmp_path)
        assert config.request_delay_seconds == 2.0

    def test_config_file_then_flags(self, tmp_path) -> None:
        path = tmp_path / "monitor.yaml"
        path.write_text("sites: [belgium]\ntimeout_seconds: 3\n", encoding="utf-8")

        config = crawl.build_config(crawl.parse_args(["--config", str(path), "--site", "uae"]))

        assert config.sites == ["uae"]
        assert config.timeout_seconds == 3.0

    def test_unknown_site_is_a_config_error(self, tmp_path) -> None:
        assert crawl.main(["--output_dir", str(tmp_path), "--site", "atlantis"]) == 2

    def test_registry_caches_gateways(self, tmp_path) -> None:
        config = crawl.build_config(crawl.parse_args(["--output_dir", str(tmp_path)]))
        registry = crawl.GatewayRegistry(config)
        assert registry.get("uae") is registry.get("uae")
        assert registry.settings_source() is registry.get("belgium")

    def test_auto_run_disabled_does_nothing(self, tmp_path, monkeypatch) -> None:
        build, seen = _fake_build_engines({})
        monkeypatch.setattr(crawl, "build_engines", build)

        assert crawl.main(["--output_dir", str(tmp_path), "--site", "uae", "--auto"]) == 0
        assert "engines" not in seen

    def test_auto_run_crawls_only_new(self, tmp_path, monkeypatch) -> None:
        JsonlGateway(tmp_path, "belgium").update_settings(auto_run_enabled=True)
        build, seen = _fake_build_engines({UAE_SEED: html_page("Home", "<p>E-invoicing launches in 2026</p>")})
        monkeypatch.setattr(crawl, "build_engines", build)

        code = crawl.main(["--output_dir", str(tmp_path), "--site", "uae", "--auto", "--no_notify"])

        assert code == 0
        uae = JsonlGateway(tmp_path, "uae")
        run = json.loads(uae.runs_path.read_text(encoding="utf-8").strip())
        assert run["mode"] == "auto"
        assert run["new_e_invoicing_pages"] == 1
        assert (tmp_path / "manifests" / "crawl_stats_uae.json").exists()
        assert (tmp_path / "manifests" / "crawl_config.json").exists()

    def test_failed_run_exits_with_one(self, tmp_path, monkeypatch, capsys) -> None:
        class FailingGateway(JsonlGateway):
            def upsert_page(self, page):
                raise GatewayError("database unavailable")

        build, _ = _fake_build_engines({UAE_SEED: html_page("Home", "<p>news</p>")}, FailingGateway)
        monkeypatch.setattr(crawl, "build_engines", build)

        assert crawl.main(["--output_dir", str(tmp_path), "--site", "uae"]) == 1
        assert "status: error" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# monitor.maintenance
# ---------------------------------------------------------------------------


def _match(url: str, *, content: str, keyword: str = "e-invoicing", summary: str | None = None) -> PageRecord:
    return PageRecord(
        url=url,
        title="Page",
        content_preview=content,
        scraped_at="2026-03-01T10:00:00+00:00",
        is_match=True,
        matched_keyword=keyword,
        summary=summary,
    )


class TestMaintenanceCli:
    def test_settings_update(self, tmp_path, capsys) -> None:
        code = maintenance.main(
            ["--output_dir", str(tmp_path), "settings", "--auto_run", "on", "--webhook", "https://hooks.example.com/x"]
        )

        assert code == 0
        settings = JsonlGateway(tmp_path, "belgium").get_settings()
        assert settings.auto_run_enabled is True
        assert settings.webhook_url == "https://hooks.example.com/x"
        assert _json_from_output(capsys.readouterr().out)["auto_run_enabled"] is True

    def test_settings_clear_webhook(self, tmp_path) -> None:
        JsonlGateway(tmp_path, "belgium").update_settings(webhook_url="https://hooks.example.com/x")
        assert maintenance.main(["--output_dir", str(tmp_path), "settings", "--webhook", "none"]) == 0
        assert JsonlGateway(tmp_path, "belgium").get_settings().webhook_url is None

    def test_stats(self, tmp_path, capsys) -> None:
        JsonlGateway(tmp_path, "uae").upsert_page(_match("https://mof.gov.ae/en/a", content="e-invoicing"))

        assert maintenance.main(["--output_dir", str(tmp_path), "stats", "--site", "uae"]) == 0

        payload = _json_from_output(capsys.readouterr().out)
        assert payload == {"uae": {"total_pages": 1, "match_pages": 1, "last_scrape_at": None}}

    def test_send_without_webhook_fails(self, tmp_path) -> None:
        assert maintenance.main(["--output_dir", str(tmp_path), "send", "--site", "uae"]) == 1

    def test_cleanup_matches(self, tmp_path) -> None:
        gateway = JsonlGateway(tmp_path, "belgium")
        false_positive = "https://bosa.belgium.be/nl/applications/hermes"
        rekeyed = "https://bosa.belgium.be/en/peppol"
        stale = "https://bosa.belgium.be/en/telework"
        gateway.upsert_page(_match(false_positive, content="e-invoicing"))
        gateway.upsert_page(_match(rekeyed, content="Register on the Peppol network"))
        gateway.upsert_page(_match(stale, content="Telework rules"))
        full_texts = {stale: "Telework rules for federal staff working from home."}

        counts = maintenance.cleanup_matches(
            gateway,
            KeywordMatcher.from_profile(BUILTIN_SITES["belgium"]),
            false_positive_urls=[false_positive],
            delete_unmatched=True,
            page_text=lambda page: full_texts.get(page.url),
        )

        assert counts == {
            "false_positives_deleted": 1,
            "keywords_updated": 1,
            "unmatched": 1,
            "unmatched_deleted": 1,
        }
        remaining = gateway.fetch_matches()
        assert [(page.url, page.matched_keyword) for page in remaining] == [(rekeyed, "peppol")]

    def test_cleanup_keeps_unmatched_by_default(self, tmp_path) -> None:
        gateway = JsonlGateway(tmp_path, "belgium")
        gateway.upsert_page(_match("https://bosa.belgium.be/en/telework", content="Telework rules"))

        counts = maintenance.cleanup_matches(gateway, KeywordMatcher.from_profile(BUILTIN_SITES["belgium"]))

        assert counts["unmatched"] == 1
        assert len(gateway.fetch_matches()) == 1

    def test_cleanup_checks_full_text_beyond_the_preview(self, tmp_path) -> None:
        gateway = JsonlGateway(tmp_path, "belgium")
        url = "https://bosa.belgium.be/en/procurement"
        body = "Public procurement rules for federal buyers. " * 18 + "Suppliers must send an e-invoice."
        gateway.upsert_page(_match(url, content=body[:500], keyword="e-invoice"))

        counts = maintenance.cleanup_matches(
            gateway,
            KeywordMatcher.from_profile(BUILTIN_SITES["belgium"]),
            delete_unmatched=True,
            page_text=lambda page: body,
        )

        assert counts["unmatched"] == 0
        assert counts["unmatched_deleted"] == 0
        assert [page.url for page in gateway.fetch_matches()] == [url]

    def test_cleanup_never_deletes_without_full_text(self, tmp_path) -> None:
        gateway = JsonlGateway(tmp_path, "belgium")
        url = "https://bosa.belgium.be/en/procurement"
        gateway.upsert_page(_match(url, content="Public procurement rules for federal buyers."))

        counts = maintenance.cleanup_matches(
            gateway,
            KeywordMatcher.from_profile(BUILTIN_SITES["belgium"]),
            delete_unmatched=True,
            page_text=lambda page: None,
        )

        assert counts["unmatched"] == 1
        assert counts["unmatched_deleted"] == 0
        assert len(gateway.fetch_matches()) == 1

    def test_full_text_reader_parses_fetched_page(self) -> None:
        url = "https://bosa.belgium.be/en/procurement"
        body = "<p>" + "Rules for buyers. " * 40 + "Send an e-invoice.</p>"
        fetcher = FakeFetcher({url: html_page("Procurement", body)})
        read = maintenance.full_text_reader(fetcher, BUILTIN_SITES["belgium"])

        text = read(_match(url, content="Rules for buyers."))

        assert text is not None
        assert text.endswith("Send an e-invoice.")
        assert read(_match("https://bosa.belgium.be/en/gone", content="x")) is None

    def test_backfill_summaries(self, tmp_path) -> None:
        gateway = JsonlGateway(tmp_path, "uae")
        gateway.upsert_page(_match("https://mof.gov.ae/en/a", content="a"))
        gateway.upsert_page(_match("https://mof.gov.ae/en/b", content="b"))
        gateway.upsert_page(_match("https://mof.gov.ae/en/c", content="c", summary="Already done."))
        sleeps: list[float] = []

        updated = maintenance.backfill_summaries(gateway, StaticSummarizer("Fresh."), sleep=sleeps.append)

        assert updated == 2
        assert sleeps == [1.0]
        assert sorted(page.summary for page in gateway.fetch_matches()) == ["Already done.", "Fresh.", "Fresh."]
