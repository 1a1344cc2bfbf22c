# SPDX-License-Identifier: MIT
# src/alert_bridge/alerts/retention.py
"""
Retention purge for summaries and news items.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from dateutil.relativedelta import relativedelta

from ..errors import PersistenceError
from ..utils.time_utils import utc_now
from .store import BridgeStore

logger = logging.getLogger(__name__)


@dataclass
class PurgeReport:
    summaries_deleted: Optional[int] = None
    news_deleted: Optional[int] = None


class RetentionJanitor:
    """
    Deletes summaries and news items older than their horizons.

    The two purges are independent: a failure in one is logged and does not
    stop the other. Seen keys and the cursor are never touched.
    """

    def __init__(self, store: BridgeStore, summary_months: int = 3, news_months: int = 3):
        self.store = store
        self.summary_months = summary_months
        self.news_months = news_months

    def purge(self, now: Optional[datetime] = None) -> PurgeReport:
        now = now or utc_now()
        report = PurgeReport()

        summary_cutoff = now - relativedelta(months=self.summary_months)
        try:
            report.summaries_deleted = self.store.delete_summaries_before(summary_cutoff)
            logger.info(f"Deleted {report.summaries_deleted} summaries older than {summary_cutoff.date()}")
        except PersistenceError as e:
            logger.error(f"Summary purge failed: {e}", exc_info=True)

        news_cutoff = now - relativedelta(months=self.news_months)
        try:
            report.news_deleted = self.store.delete_news_before(news_cutoff)
            logger.info(f"Deleted {report.news_deleted} news items older than {news_cutoff.date()}")
        except PersistenceError as e:
            logger.error(f"News purge failed: {e}", exc_info=True)

        return report
