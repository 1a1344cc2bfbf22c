# SPDX-License-Identifier: MIT
# src/alert_bridge/news/scheduler.py
"""
Deferred posting of scheduled announcements.

``ingest`` keeps announcements dated within the next few days that name a
concrete time range, and stores them unposted. ``tick`` posts every stored
item whose planned instant has passed, exactly once.
"""
from __future__ import annotations
import logging
from datetime import date, datetime
from typing import Iterable, List, Optional, Protocol
from zoneinfo import ZoneInfo

from ..alerts.delivery import SendGuard, escape_md
from ..alerts.store import BridgeStore
from ..errors import DispatchError, MalformedInputError, TransientSourceError
from ..models import NewsItem, RawNewsItem
from ..summarizer import Summarizer
from ..utils.time_utils import format_local, utc_now
from .date_window import extract_planned_instant, in_window, parse_news_date

logger = logging.getLogger(__name__)


class NewsConnector(Protocol):
    def list_items(self) -> List[RawNewsItem]: ...

    def fetch_content(self, url: str) -> str: ...


def render_news(item: NewsItem, display_tz: str) -> str:
    lines = [f"📢 *{escape_md(item.title)}*"]
    if item.planned_at:
        lines.append(f"🕒 Planned: {format_local(item.planned_at, display_tz)}")
    if item.summary:
        lines.extend(["", escape_md(item.summary)])
    if item.url:
        lines.extend(["", f"🔗 {escape_md(item.url)}"])
    return "\n".join(lines)


class NewsScheduler:
    """Date-window filter on ingest, deferred exactly-once posting on tick."""

    def __init__(
        self,
        store: BridgeStore,
        guard: SendGuard,
        connector: NewsConnector,
        summarizer: Summarizer,
        destination: str,
        source_name: str,
        planned_time_pattern: str,
        display_tz: str = "Europe/Moscow",
        window_days: int = 3,
    ):
        self.store = store
        self.guard = guard
        self.connector = connector
        self.summarizer = summarizer
        self.destination = destination
        self.source_name = source_name
        self.planned_time_pattern = planned_time_pattern
        self.display_tz = display_tz
        self.window_days = window_days

    def today(self, now: Optional[datetime] = None) -> date:
        return (now or utc_now()).astimezone(ZoneInfo(self.display_tz)).date()

    def ingest(self, items: Optional[Iterable[RawNewsItem]] = None, now: Optional[datetime] = None) -> List[NewsItem]:
        """
        Filter freshly scraped items and store the schedulable ones.

        Args:
            items: Raw items; listed from the connector when None
            now: Clock override

        Returns:
            Newly stored items

        Raises:
            TransientSourceError: the listing itself could not be fetched
        """
        now = now or utc_now()
        today = self.today(now)
        raw_items = list(items) if items is not None else self.connector.list_items()

        stored: List[NewsItem] = []
        for raw in raw_items:
            try:
                item_date = parse_news_date(raw.raw_date)
            except MalformedInputError as e:
                logger.warning(f"[{self.source_name}] Skipping {raw.external_id}: {e}")
                continue

            if not in_window(item_date, today, self.window_days):
                logger.debug(f"[{self.source_name}] {raw.external_id} dated {item_date} is outside the window")
                continue

            if self.store.news_exists(self.source_name, raw.external_id):
                logger.debug(f"[{self.source_name}] {raw.external_id} already stored")
                continue

            try:
                content = self.connector.fetch_content(raw.url)
            except TransientSourceError as e:
                logger.warning(f"[{self.source_name}] Content fetch failed for {raw.external_id}: {e}")
                continue

            planned_at = extract_planned_instant(content, self.planned_time_pattern, self.display_tz)
            if planned_at is None:
                logger.info(f"[{self.source_name}] {raw.external_id} has no planned time range, discarded")
                continue

            item = NewsItem(
                source=self.source_name,
                external_id=raw.external_id,
                title=raw.title,
                raw_date=raw.raw_date,
                url=raw.url,
                content=content,
                summary=self.summarizer.summarize(content),
                planned_at=planned_at,
                created_at=now,
            )
            if self.store.insert_news(item):
                stored.append(item)

        logger.info(f"[{self.source_name}] News ingest: {len(raw_items)} listed, {len(stored)} stored")
        return stored

    def tick(self, now: Optional[datetime] = None) -> int:
        """
        Post every unposted item whose planned instant has passed.

        An item is marked posted when the dispatch was sent. A transport
        failure leaves it unposted but records the content hash its attempt
        claimed; the next tick sees the skip for that same hash and marks the
        item posted. A skip caused by any other matching content leaves it
        unposted.

        Returns:
            Number of items posted
        """
        now = now or utc_now()
        posted = 0
        for item in self.store.due_news(now):
            text = render_news(item, self.display_tz)
            content_hash = self.guard.fingerprint(text)
            try:
                result = self.guard.dispatch(self.destination, text)
            except DispatchError as e:
                logger.error(f"[{item.source}] Posting {item.external_id} failed: {e}")
                self.store.record_news_failure(item.id, content_hash)
                continue

            if not result.sent and item.failed_hash == content_hash:
                logger.warning(
                    f"[{item.source}] {item.external_id} was claimed by an earlier failed post, marking posted"
                )
            elif not result.sent:
                logger.info(f"[{item.source}] {item.external_id} skipped as duplicate content")
                continue

            if self.store.mark_news_posted(item.id, now):
                posted += 1
                logger.info(f"[{item.source}] Posted {item.external_id} planned for {item.planned_at}")

        return posted
