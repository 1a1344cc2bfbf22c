# SPDX-License-Identifier: MIT
# src/alert_bridge/models.py
"""
Plain records passed between pipeline stages.

JSON only appears at the store boundary (see ``DetailEntry.to_dict`` /
``from_dict``); everything in flight is a dataclass.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class RawItem:
    """One message pulled from the chat source."""
    id: str
    sender: str
    subject: str
    body: str
    timestamp: datetime
    is_reply: bool = False


@dataclass(frozen=True)
class Classification:
    is_alert: bool
    category: str
    embedded_id: Optional[str] = None


@dataclass
class AlertOccurrence:
    """A repeat alert waiting for the next hourly summary."""
    item_id: str
    category: str
    embedded_id: Optional[str]
    subject: str
    timestamp: datetime


@dataclass(frozen=True)
class DetailEntry:
    category: str
    embedded_id: Optional[str]
    subject: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "embedded_id": self.embedded_id,
            "subject": self.subject,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetailEntry":
        return cls(
            category=data["category"],
            embedded_id=data.get("embedded_id"),
            subject=data.get("subject", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass(frozen=True)
class MessageRef:
    """Where a sent message lives, so it can be edited later."""
    chat_id: str
    message_id: str


@dataclass(frozen=True)
class Control:
    """An inline button: visible label plus the callback token it sends back."""
    label: str
    token: str


@dataclass(frozen=True)
class DispatchResult:
    ref: Optional[MessageRef] = None
    skipped: bool = False

    @property
    def sent(self) -> bool:
        return self.ref is not None and not self.skipped


@dataclass
class Summary:
    summary_id: str
    chat_id: str
    message_id: str
    summary_text: str
    details: List[DetailEntry]
    created_at: datetime

    @property
    def ref(self) -> MessageRef:
        return MessageRef(chat_id=self.chat_id, message_id=self.message_id)


class ToggleKind(str, Enum):
    EXPAND = "expand"
    COLLAPSE = "collapse"


@dataclass(frozen=True)
class ToggleAction:
    kind: ToggleKind
    summary_id: str

    def to_token(self) -> str:
        return f"{self.kind.value}_{self.summary_id}"


@dataclass
class RawNewsItem:
    external_id: str
    title: str
    raw_date: str
    url: str


@dataclass
class NewsItem:
    source: str
    external_id: str
    title: str
    raw_date: str
    url: str
    content: str
    summary: str
    planned_at: Optional[datetime]
    created_at: datetime
    posted: bool = False
    id: Optional[int] = None
    posted_at: Optional[datetime] = None
    failed_hash: Optional[str] = None
