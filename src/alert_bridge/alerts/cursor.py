# SPDX-License-Identifier: MIT
# src/alert_bridge/alerts/cursor.py
"""
Watermark of the last ingested chat message.
"""
from __future__ import annotations
import logging
from typing import Optional, Tuple

from .store import BridgeStore

logger = logging.getLogger(__name__)

CURSOR_KEY = "cursor"


def cursor_sort_key(value: str) -> Tuple[int, int, str]:
    """
    Order cursor values the way the source does.

    Graph message ids are epoch-millisecond digit strings, so digits compare
    numerically; anything else falls back to plain string order.
    """
    if value.isdigit():
        return (0, int(value), "")
    return (1, 0, value)


def is_after(candidate: str, current: Optional[str]) -> bool:
    if current is None:
        return True
    return cursor_sort_key(candidate) > cursor_sort_key(current)


class CursorTracker:
    """Persists the chat watermark; it only ever moves forward."""

    def __init__(self, store: BridgeStore, key: str = CURSOR_KEY):
        self.store = store
        self.key = key

    def load(self) -> Optional[str]:
        return self.store.get_state(self.key)

    def advance(self, new_cursor: str) -> bool:
        """
        Move the watermark to ``new_cursor`` if it is strictly greater.

        Raises:
            PersistenceError: the caller must not treat items as ingested
        """
        moved = self.store.set_state_if(self.key, new_cursor, lambda current: is_after(new_cursor, current))
        if moved:
            logger.info(f"Cursor advanced to {new_cursor}")
        else:
            logger.debug(f"Cursor not advanced: {new_cursor} is not after stored value")
        return moved
