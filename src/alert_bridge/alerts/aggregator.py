# SPDX-License-Identifier: MIT
# src/alert_bridge/alerts/aggregator.py
"""
Hourly aggregation of repeat alerts into one summary message.
"""
from __future__ import annotations
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from ..models import AlertOccurrence, DetailEntry, Summary
from ..utils.time_utils import format_local, utc_now
from .delivery import SendGuard, escape_md
from .store import BridgeStore
from .toggle import expand_control

logger = logging.getLogger(__name__)


@dataclass
class CategoryStats:
    count: int
    last_seen: datetime


def new_summary_id() -> str:
    return uuid.uuid4().hex[:12]


def group_by_category(occurrences: Sequence[AlertOccurrence]) -> "OrderedDict[str, CategoryStats]":
    grouped: "OrderedDict[str, CategoryStats]" = OrderedDict()
    for occ in occurrences:
        stats = grouped.get(occ.category)
        if stats is None:
            grouped[occ.category] = CategoryStats(count=1, last_seen=occ.timestamp)
        else:
            stats.count += 1
            stats.last_seen = max(stats.last_seen, occ.timestamp)
    return grouped


def render_collapsed(occurrences: Sequence[AlertOccurrence], display_tz: str) -> str:
    lines = ["🔍 *Alert summary for the last hour:*"]
    for category, stats in group_by_category(occurrences).items():
        lines.append(
            f"📌 {escape_md(category)}: {stats.count} "
            f"(last seen {format_local(stats.last_seen, display_tz)})"
        )
    return "\n".join(lines)


class AlertAggregator:
    """
    Accumulates repeat alerts between hourly triggers.

    Pending occurrences are persisted, and only cleared in the same
    transaction that records the sent summary. A failed or suppressed send
    leaves them in place for the next trigger.
    """

    def __init__(self, store: BridgeStore, guard: SendGuard, destination: str, display_tz: str = "Europe/Moscow"):
        self.store = store
        self.guard = guard
        self.destination = destination
        self.display_tz = display_tz

    def record(self, occurrence: AlertOccurrence) -> bool:
        added = self.store.add_pending(occurrence)
        if added:
            logger.debug(f"Recorded repeat {occurrence.category} from item {occurrence.item_id}")
        return added

    def flush(self, now: Optional[datetime] = None) -> Optional[Summary]:
        """
        Send one summary for everything pending.

        Returns:
            The persisted Summary, or None when nothing was pending or the
            send was skipped

        Raises:
            DispatchError: transport failed; pending occurrences are kept
        """
        pending = self.store.list_pending()
        if not pending:
            logger.debug("No pending alerts, nothing to summarize")
            return None

        row_ids: List[int] = [row_id for row_id, _ in pending]
        occurrences = [occ for _, occ in pending]

        summary_id = new_summary_id()
        text = render_collapsed(occurrences, self.display_tz)
        details = [
            DetailEntry(
                category=occ.category,
                embedded_id=occ.embedded_id,
                subject=occ.subject,
                timestamp=occ.timestamp,
            )
            for occ in occurrences
        ]

        result = self.guard.dispatch(self.destination, text, [expand_control(summary_id)])
        if not result.sent:
            logger.info(f"Summary of {len(occurrences)} occurrences not sent; keeping them pending")
            return None

        summary = Summary(
            summary_id=summary_id,
            chat_id=result.ref.chat_id,
            message_id=result.ref.message_id,
            summary_text=text,
            details=details,
            created_at=now or utc_now(),
        )
        self.store.commit_summary(summary, row_ids)
        return summary
