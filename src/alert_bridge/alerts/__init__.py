# SPDX-License-Identifier: MIT
# src/alert_bridge/alerts/__init__.py
"""
Alert pipeline for the chat-to-Telegram bridge.

This module provides:
- Cursor tracking over the chat source
- Alert classification and per-epoch deduplication
- Hourly aggregation with expandable drill-down
- Idempotent delivery to Telegram
- Retention purge

The task entry points live in ``alert_bridge.alerts.orchestration``.
"""

from .aggregator import AlertAggregator
from .classifier import AlertClassifier
from .cursor import CursorTracker
from .deduplicator import SubjectDeduplicator
from .delivery import SendGuard, TelegramTransport
from .retention import RetentionJanitor
from .store import BridgeStore
from .toggle import ToggleHandler

__all__ = [
    "AlertAggregator",
    "AlertClassifier",
    "CursorTracker",
    "SubjectDeduplicator",
    "SendGuard",
    "TelegramTransport",
    "RetentionJanitor",
    "BridgeStore",
    "ToggleHandler",
]
