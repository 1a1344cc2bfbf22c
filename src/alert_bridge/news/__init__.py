# SPDX-License-Identifier: MIT
# src/alert_bridge/news/__init__.py
"""
Scheduled-announcement handling: date-window filtering on ingest and
deferred, exactly-once posting once the announced time arrives.
"""

from .date_window import extract_planned_instant, in_window, parse_news_date
from .scheduler import NewsScheduler, render_news

__all__ = [
    "NewsScheduler",
    "extract_planned_instant",
    "in_window",
    "parse_news_date",
    "render_news",
]
