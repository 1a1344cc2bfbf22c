# SPDX-License-Identifier: MIT
# src/alert_bridge/alerts/deduplicator.py
"""
Subject-level alert deduplication within a daily epoch.

The first alert for a key in an epoch is delivered immediately; every later
one for the same key is folded into the hourly summary instead.

NOTE: The epoch reset is a coarse wall-clock reset, not a per-key TTL. An
alert that keeps firing all day will alert once more as "new" right after
the reset even though the underlying condition never stopped.
"""
from __future__ import annotations
import logging
import re
from typing import Optional

from ..models import Classification, RawItem
from .store import BridgeStore

logger = logging.getLogger(__name__)

KEY_MODES = ("category", "subject")

_RE_PREFIX = re.compile(r"^\s*(re|fw|fwd)\s*:\s*", re.IGNORECASE)
_WS = re.compile(r"\s+")


def normalize_subject(subject: str) -> str:
    s = subject or ""
    while _RE_PREFIX.match(s):
        s = _RE_PREFIX.sub("", s, count=1)
    return _WS.sub(" ", s).strip().lower()


class SubjectDeduplicator:
    """
    Tracks which dedup keys were already alerted in the current epoch.

    Keys live in the store's ``seen_keys`` table, so a restart mid-day does
    not re-alert everything.
    """

    def __init__(self, store: BridgeStore, key_mode: str = "category"):
        """
        Args:
            store: Backing store
            key_mode: "category" (alert category) or "subject" (normalized subject)
        """
        if key_mode not in KEY_MODES:
            raise ValueError(f"Unknown dedup key mode: {key_mode!r} (expected one of {KEY_MODES})")
        self.store = store
        self.key_mode = key_mode

    def key_for(self, item: RawItem, classification: Classification) -> str:
        if self.key_mode == "subject":
            return normalize_subject(item.subject)
        return classification.category

    def should_notify_immediately(self, key: str) -> bool:
        return not self.store.has_seen(key)

    def is_first_item(self, key: str, item_id: str) -> bool:
        """True when ``item_id`` is the item that already got the immediate alert for ``key``."""
        return self.store.seen_item_id(key) == item_id

    def mark_seen(self, key: str, item_id: Optional[str] = None) -> None:
        if self.store.mark_seen(key, item_id):
            logger.debug(f"Dedup key marked seen: {key}")

    def reset_epoch(self) -> int:
        """Forget every key. Returns how many were cleared."""
        cleared = self.store.clear_seen()
        logger.info(f"Dedup epoch reset ({cleared} keys cleared)")
        return cleared
