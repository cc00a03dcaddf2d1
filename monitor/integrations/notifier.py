"""Chat webhook notifications (Teams-style `{"text": ...}` payloads)."""

from __future__ import annotations

import logging
import time
from typing import Callable, Sequence

import requests

from ..crawler.constants import (
    NOTIFY_BATCH_DELAY_SECONDS,
    NOTIFY_BATCH_SIZE,
    NOTIFY_TIMEOUT_SECONDS,
)
from ..crawler.types import NotificationError, PageRecord

LOGGER = logging.getLogger(__name__)


def format_entry(number: int, page: PageRecord) -> str:
    """Render one numbered list entry: linked title, keyword, summary."""

    keyword_text = f"\n   🔑 Keyword: {page.matched_keyword}" if page.matched_keyword else ""
    summary_text = f"\n   📝 {page.summary}\n" if page.summary else "\n"
    return f"{number}. **[{page.title}]({page.url})**{keyword_text}{summary_text}"


def render_batches(
    matches: Sequence[PageRecord],
    site_label: str,
    *,
    batch_size: int = NOTIFY_BATCH_SIZE,
) -> list[str]:
    """Split matches into message texts, labelled "Part X/Y" when more than one."""

    if batch_size <= 0:
        raise ValueError("batch_size must be > 0")

    batches = [matches[start:start + batch_size] for start in range(0, len(matches), batch_size)]
    texts: list[str] = []
    for batch_index, batch in enumerate(batches):
        first_number = batch_index * batch_size + 1
        lines = "\n".join(
            format_entry(first_number + offset, page) for offset, page in enumerate(batch)
        )
        part = f" (Part {batch_index + 1}/{len(batches)})" if len(batches) > 1 else ""
        texts.append(f"🧾 *New E-Invoicing Pages Found - {site_label}*{part}\n\n{lines}")
    return texts


class NotificationDispatcher:
    """Deliver new-match lists to a webhook in fixed-size batches.

    There are no retries: the first failed batch raises NotificationError and
    the remaining batches are not sent.
    """

    def __init__(
        self,
        *,
        batch_size: int = NOTIFY_BATCH_SIZE,
        batch_delay_seconds: float = NOTIFY_BATCH_DELAY_SECONDS,
        timeout: float = NOTIFY_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self.timeout = timeout
        self.session = session or requests.Session()
        self._sleep = sleep

    def notify(self, webhook_url: str | None, matches: Sequence[PageRecord], site_label: str) -> int:
        """Send all batches; returns how many messages were delivered."""

        if not webhook_url or not matches:
            return 0

        texts = render_batches(matches, site_label, batch_size=self.batch_size)
        LOGGER.info(
            "Sending %d %s page(s) to webhook in %d batch(es)", len(matches), site_label, len(texts)
        )

        for index, text in enumerate(texts):
            self._post(webhook_url, text, part=index + 1, total=len(texts))
            if index < len(texts) - 1 and self.batch_delay_seconds > 0:
                self._sleep(self.batch_delay_seconds)
        return len(texts)

    def _post(self, webhook_url: str, text: str, *, part: int, total: int) -> None:
        try:
            response = self.session.post(webhook_url, json={"text": text}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise NotificationError(
                f"Webhook batch {part}/{total} failed: {exc.__class__.__name__}: {exc}"
            ) from exc

        if not 200 <= response.status_code < 300:
            raise NotificationError(
                f"Webhook batch {part}/{total} returned HTTP {response.status_code}: {response.text[:200]}"
            )
        LOGGER.debug("Delivered webhook batch %d/%d", part, total)


__all__ = [
    "NotificationDispatcher",
    "format_entry",
    "render_batches",
]
