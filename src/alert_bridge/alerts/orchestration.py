# SPDX-License-Identifier: MIT
# src/alert_bridge/alerts/orchestration.py
"""
Bridge orchestration - wires ingestion, classification, deduplication,
aggregation, news scheduling and retention into the periodic task entry points.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from ..config import Settings
from ..errors import DispatchError
from ..models import AlertOccurrence, RawItem, Summary
from ..news.scheduler import NewsConnector, NewsScheduler
from ..sources import ClientCredentialsToken, GraphChannelSource, HtmlNewsSource, NewsSelectors
from ..summarizer import MESSAGES_PROMPT, NEWS_PROMPT, Summarizer, build_summarizer, format_messages_for_summary
from ..utils.time_utils import format_local
from .aggregator import AlertAggregator
from .classifier import AlertClassifier, load_rules_config
from .cursor import CursorTracker, cursor_sort_key, is_after
from .deduplicator import SubjectDeduplicator
from .delivery import SendGuard, TelegramTransport, Transport, escape_md
from .retention import PurgeReport, RetentionJanitor
from .store import BridgeStore
from .toggle import ToggleHandler

logger = logging.getLogger(__name__)


class ItemSource(Protocol):
    def fetch(self, since_cursor: Optional[str]) -> List[RawItem]: ...


def render_new_alert(item: RawItem, category: str, embedded_id: Optional[str], display_tz: str) -> str:
    lines = [
        "❗ *New alert:*",
        f"📌 *Category:* {escape_md(category)}",
        f"📝 *Subject:* {escape_md(item.subject)}",
    ]
    if embedded_id:
        lines.append(f"🆔 {escape_md(embedded_id)}")
    lines.append(f"🕒 {format_local(item.timestamp, display_tz)}")
    return "\n".join(lines)


def render_message_digest(summary: str) -> str:
    return f"📝 *Message summary:*\n\n{escape_md(summary)}"


@dataclass
class PipelineContext:
    """Everything a task needs; all mutable state lives behind ``store``."""
    store: BridgeStore
    source: ItemSource
    cursor: CursorTracker
    classifier: AlertClassifier
    dedup: SubjectDeduplicator
    aggregator: AlertAggregator
    guard: SendGuard
    toggle: ToggleHandler
    janitor: RetentionJanitor
    destination: str
    display_tz: str = "Europe/Moscow"
    news: Optional[NewsScheduler] = None
    message_summarizer: Optional[Summarizer] = None


class BridgeOrchestrator:
    """
    Periodic task entry points.

    Each method is one run-to-completion tick. Exceptions propagate to the
    caller (the scheduler's task wrapper logs them); a tick that fails before
    the cursor advance is simply repeated on the next run.
    """

    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx

    def ingest(self) -> Dict[str, Any]:
        """
        Pull new chat items, alert on first occurrences, aggregate repeats,
        digest informational items, then advance the cursor.

        Raises:
            TransientSourceError: source unavailable; cursor unchanged
            DispatchError: an immediate alert could not be sent; cursor unchanged
            PersistenceError: state could not be written; cursor unchanged
        """
        ctx = self.ctx
        stats = {
            "items_fetched": 0,
            "alerts_sent": 0,
            "alerts_aggregated": 0,
            "informational": 0,
        }

        current = ctx.cursor.load()
        items = [item for item in ctx.source.fetch(current) if is_after(item.id, current)]
        stats["items_fetched"] = len(items)
        if not items:
            logger.debug("No new items since cursor")
            return stats

        informational: List[RawItem] = []
        for item in items:
            classification = ctx.classifier.classify(item)
            if not classification.is_alert:
                informational.append(item)
                continue

            key = ctx.dedup.key_for(item, classification)
            if ctx.dedup.should_notify_immediately(key):
                text = render_new_alert(item, classification.category, classification.embedded_id, ctx.display_tz)
                result = ctx.guard.dispatch(ctx.destination, text)
                ctx.dedup.mark_seen(key, item.id)
                if result.sent:
                    stats["alerts_sent"] += 1
                logger.info(f"New alert {key!r} from item {item.id} ({'sent' if result.sent else 'skipped'})")
            elif ctx.dedup.is_first_item(key, item.id):
                logger.debug(f"Item {item.id} already alerted as {key!r}, not aggregated")
            else:
                ctx.aggregator.record(AlertOccurrence(
                    item_id=item.id,
                    category=classification.category,
                    embedded_id=classification.embedded_id,
                    subject=item.subject,
                    timestamp=item.timestamp,
                ))
                stats["alerts_aggregated"] += 1

        stats["informational"] = len(informational)
        if informational and ctx.message_summarizer is not None:
            self._digest(informational)

        newest = max(items, key=lambda it: cursor_sort_key(it.id))
        ctx.cursor.advance(newest.id)

        logger.info(
            f"Ingest complete: {stats['items_fetched']} items, {stats['alerts_sent']} alerts sent, "
            f"{stats['alerts_aggregated']} aggregated, {stats['informational']} informational"
        )
        return stats

    def _digest(self, items: List[RawItem]) -> None:
        summary = self.ctx.message_summarizer.summarize(format_messages_for_summary(items))
        try:
            self.ctx.guard.dispatch(self.ctx.destination, render_message_digest(summary))
        except DispatchError as e:
            # best-effort
            logger.error(f"Message digest for {len(items)} items not delivered: {e}")

    def flush_hourly(self) -> Optional[Summary]:
        summary = self.ctx.aggregator.flush()
        if summary:
            logger.info(f"Hourly summary {summary.summary_id} sent ({len(summary.details)} occurrences)")
        return summary

    def reset_epoch(self) -> int:
        return self.ctx.dedup.reset_epoch()

    def news_ingest(self) -> int:
        if self.ctx.news is None:
            logger.debug("News source not configured, skipping news ingest")
            return 0
        return len(self.ctx.news.ingest())

    def news_tick(self) -> int:
        if self.ctx.news is None:
            return 0
        return self.ctx.news.tick()

    def purge(self) -> PurgeReport:
        return self.ctx.janitor.purge()

    def handle_callback(self, token: str) -> str:
        """Returns the callback answer text ("" on success)."""
        return self.ctx.toggle.handle_token(token)

    def run_task(self, name: str) -> Any:
        if name not in TASK_NAMES:
            raise ValueError(f"Unknown task {name!r} (expected one of {TASK_NAMES})")
        return getattr(self, name)()


TASK_NAMES = ("ingest", "flush_hourly", "reset_epoch", "news_ingest", "news_tick", "purge")


def create_orchestrator_from_settings(
    settings: Settings,
    transport: Optional[Transport] = None,
    source: Optional[ItemSource] = None,
    news_connector: Optional[NewsConnector] = None,
) -> BridgeOrchestrator:
    """
    Build a fully wired orchestrator.

    Collaborators not passed in are constructed from ``settings``; the news
    scheduler is only created when a news connector or NEWS_LIST_URL exists.
    """
    if not settings.telegram_chat_id:
        raise ValueError("TELEGRAM_CHAT_ID is required")

    store = BridgeStore(Path(settings.db_path))
    transport = transport or TelegramTransport(settings.telegram_bot_token, timeout=settings.http_timeout_secs)
    guard = SendGuard(store, transport)
    destination = settings.telegram_chat_id

    if source is None:
        token = ClientCredentialsToken(
            settings.azure_tenant_id,
            settings.azure_client_id,
            settings.azure_client_secret,
            timeout=settings.http_timeout_secs,
        )
        source = GraphChannelSource(token, settings.team_id, settings.channel_id, timeout=settings.http_timeout_secs)

    rules_path = Path(settings.classifier_rules_path) if settings.classifier_rules_path else None
    classifier = AlertClassifier.from_config(
        settings.system_sender,
        load_rules_config(rules_path),
        severity_keywords=settings.severity_keyword_list,
    )

    if news_connector is None and settings.news_list_url:
        news_connector = HtmlNewsSource(
            settings.news_list_url,
            settings.news_source_name,
            NewsSelectors(
                item=settings.news_item_selector,
                title=settings.news_title_selector,
                date=settings.news_date_selector,
                content=settings.news_content_selector,
            ),
            timeout=settings.http_timeout_secs,
        )

    news = None
    if news_connector is not None:
        news = NewsScheduler(
            store=store,
            guard=guard,
            connector=news_connector,
            summarizer=_summarizer(settings, NEWS_PROMPT),
            destination=destination,
            source_name=settings.news_source_name,
            planned_time_pattern=settings.planned_time_pattern,
            display_tz=settings.display_tz,
            window_days=settings.news_window_days,
        )

    ctx = PipelineContext(
        store=store,
        source=source,
        cursor=CursorTracker(store),
        classifier=classifier,
        dedup=SubjectDeduplicator(store, key_mode=settings.dedup_key),
        aggregator=AlertAggregator(store, guard, destination, settings.display_tz),
        guard=guard,
        toggle=ToggleHandler(store, transport),
        janitor=RetentionJanitor(
            store,
            summary_months=settings.summary_retention_months,
            news_months=settings.news_retention_months,
        ),
        destination=destination,
        display_tz=settings.display_tz,
        news=news,
        message_summarizer=_summarizer(settings, MESSAGES_PROMPT) if settings.summarize_informational else None,
    )
    logger.info(f"Bridge wired: chat {destination}, db {settings.db_path}, news {'on' if news else 'off'}")
    return BridgeOrchestrator(ctx)


def _summarizer(settings: Settings, prompt: str) -> Summarizer:
    return build_summarizer(
        api_key=settings.summarizer_api_key,
        url=settings.summarizer_url,
        model=settings.summarizer_model,
        timeout=settings.http_timeout_secs * 3,
        excerpt_chars=settings.summary_excerpt_chars,
        prompt_template=prompt,
    )
