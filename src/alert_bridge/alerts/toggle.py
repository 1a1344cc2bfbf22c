# SPDX-License-Identifier: MIT
# src/alert_bridge/alerts/toggle.py
"""
Expand/collapse protocol for summary messages.

Inline buttons carry an opaque token ``"<mode>_<summaryId>"``. The token is
parsed exactly once, here, into a ``ToggleAction``; nothing downstream sees
raw strings.
"""
from __future__ import annotations
import logging
import re
from collections import OrderedDict
from typing import Dict, List, Sequence

from ..errors import DispatchError, InvalidTokenError, PersistenceError, StaleReferenceError
from ..models import Control, DetailEntry, ToggleAction, ToggleKind
from .delivery import Transport, escape_md
from .store import BridgeStore

logger = logging.getLogger(__name__)

TOKEN_RE = re.compile(r"^(expand|collapse)_([A-Za-z0-9]{1,48})$")
MISSING_ID = "N/A"

EXPAND_LABEL = "📋 Details"
COLLAPSE_LABEL = "🔼 Hide"


def parse_token(token: str) -> ToggleAction:
    """
    Raises:
        InvalidTokenError: token is not ``expand_<id>`` / ``collapse_<id>``
    """
    m = TOKEN_RE.match(token or "")
    if not m:
        raise InvalidTokenError(f"Invalid callback token: {token!r}")
    return ToggleAction(kind=ToggleKind(m.group(1)), summary_id=m.group(2))


def expand_control(summary_id: str) -> Control:
    return Control(EXPAND_LABEL, ToggleAction(ToggleKind.EXPAND, summary_id).to_token())


def collapse_control(summary_id: str) -> Control:
    return Control(COLLAPSE_LABEL, ToggleAction(ToggleKind.COLLAPSE, summary_id).to_token())


def group_ids_by_category(details: Sequence[DetailEntry]) -> Dict[str, List[str]]:
    """Unique, sorted embedded ids per category, categories in first-seen order."""
    grouped: "OrderedDict[str, set]" = OrderedDict()
    for entry in details:
        grouped.setdefault(entry.category, set()).add(entry.embedded_id or MISSING_ID)
    return {category: sorted(ids) for category, ids in grouped.items()}


def render_expanded(details: Sequence[DetailEntry]) -> str:
    lines = ["📋 *Details by category:*", ""]
    for category, ids in group_ids_by_category(details).items():
        lines.append(f"{escape_md(category)} ({len(ids)}): {escape_md(', '.join(ids))}")
    return "\n".join(lines)


class ToggleHandler:
    """Serves expand/collapse callbacks by editing the summary message in place."""

    NOT_AVAILABLE = "This summary is no longer available."
    INVALID = "Invalid action."
    EDIT_FAILED = "Could not update the message, try again later."
    STORAGE_BUSY = "Summary storage is busy, try again later."

    def __init__(self, store: BridgeStore, transport: Transport):
        self.store = store
        self.transport = transport

    def apply(self, action: ToggleAction) -> None:
        """
        Raises:
            StaleReferenceError: the summary was purged or never persisted
        """
        summary = self.store.get_summary(action.summary_id)
        if summary is None:
            raise StaleReferenceError(action.summary_id)

        if action.kind is ToggleKind.EXPAND:
            text = render_expanded(summary.details)
            controls = [collapse_control(summary.summary_id)]
        else:
            text = summary.summary_text
            controls = [expand_control(summary.summary_id)]

        self.transport.edit(summary.ref, text, controls)
        logger.info(f"Summary {summary.summary_id} switched to {action.kind.value}")

    def handle_token(self, token: str) -> str:
        """
        Entry point for an inbound callback token.

        Returns:
            Text for the user-visible callback answer ("" on success)
        """
        try:
            self.apply(parse_token(token))
        except InvalidTokenError:
            logger.warning(f"Rejected callback token {token!r}")
            return self.INVALID
        except StaleReferenceError as e:
            logger.info(str(e))
            return self.NOT_AVAILABLE
        except DispatchError:
            logger.error(f"Toggle edit failed for token {token!r}", exc_info=True)
            return self.EDIT_FAILED
        except PersistenceError:
            logger.error(f"Could not load summary for token {token!r}", exc_info=True)
            return self.STORAGE_BUSY
        return ""
