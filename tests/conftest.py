# Ensure `src/` is on sys.path so tests can import `alert_bridge` without requiring editable install
import os
import sys
from datetime import datetime, timezone

import pytest

HERE = os.path.dirname(__file__)
SRC = os.path.abspath(os.path.join(HERE, "..", "src"))
if os.path.isdir(SRC) and SRC not in sys.path:
    sys.path.insert(0, SRC)

from alert_bridge.alerts.store import BridgeStore  # noqa: E402
from alert_bridge.errors import DispatchError, TransientSourceError  # noqa: E402
from alert_bridge.models import MessageRef, RawItem  # noqa: E402

SYSTEM_SENDER = "noreply@winline.kz"


class FakeTransport:
    """Records every send/edit; returns sequential message ids."""

    def __init__(self, chat_id="-100123"):
        self.chat_id = chat_id
        self.sent = []
        self.edits = []
        self.answers = []
        self.replies = []
        self.fail_sends = False
        self.fail_edits = False

    def send(self, destination, text, controls=None):
        if self.fail_sends:
            raise DispatchError("boom")
        self.sent.append({"destination": destination, "text": text, "controls": list(controls or [])})
        return MessageRef(chat_id=self.chat_id, message_id=str(len(self.sent)))

    def edit(self, ref, text, controls=None):
        if self.fail_edits:
            raise DispatchError("edit boom")
        self.edits.append({"ref": ref, "text": text, "controls": list(controls or [])})

    def answer_callback(self, callback_query_id, text="", show_alert=False):
        self.answers.append((callback_query_id, text, show_alert))

    def reply(self, chat_id, text, reply_to_message_id=None):
        self.replies.append((chat_id, text, reply_to_message_id))

    def get_updates(self, offset, poll_timeout=30):
        return []


class FakeSource:
    """Chat source serving a fixed list, honouring the cursor like Graph does."""

    def __init__(self, items=None):
        self.items = list(items or [])
        self.fail = False
        self.calls = []

    def fetch(self, since_cursor):
        self.calls.append(since_cursor)
        if self.fail:
            raise TransientSourceError("source down")
        if since_cursor is None:
            return list(self.items)
        return [i for i in self.items if int(i.id) > int(since_cursor)]


class FakeNewsConnector:
    def __init__(self, items=None, contents=None):
        self.items = list(items or [])
        self.contents = dict(contents or {})
        self.fetched = []

    def list_items(self):
        return list(self.items)

    def fetch_content(self, url):
        self.fetched.append(url)
        content = self.contents.get(url)
        if isinstance(content, Exception):
            raise content
        return content or ""


class FakeSummarizer:
    def __init__(self, prefix="summary: "):
        self.prefix = prefix
        self.calls = []

    def summarize(self, text):
        self.calls.append(text)
        return f"{self.prefix}{text[:40]}"


def make_item(item_id, subject, body="", sender=SYSTEM_SENDER, ts=None, is_reply=False):
    return RawItem(
        id=str(item_id),
        sender=sender,
        subject=subject,
        body=body,
        timestamp=ts or datetime(2025, 3, 15, 9, 0, tzinfo=timezone.utc),
        is_reply=is_reply,
    )


@pytest.fixture
def store(tmp_path):
    return BridgeStore(tmp_path / "bridge.db")


@pytest.fixture
def transport():
    return FakeTransport()
