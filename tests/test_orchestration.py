import json
import sqlite3
from datetime import datetime, timezone

import pytest

from alert_bridge.alerts.aggregator import AlertAggregator
from alert_bridge.alerts.classifier import AlertClassifier, load_rules_config
from alert_bridge.alerts.cursor import CursorTracker
from alert_bridge.alerts.deduplicator import SubjectDeduplicator
from alert_bridge.alerts.delivery import SendGuard
from alert_bridge.alerts.orchestration import (
    BridgeOrchestrator,
    PipelineContext,
    create_orchestrator_from_settings,
)
from alert_bridge.alerts.retention import RetentionJanitor
from alert_bridge.alerts.toggle import ToggleHandler, group_ids_by_category
from alert_bridge.config import Settings
from alert_bridge.errors import DispatchError, TransientSourceError
from conftest import SYSTEM_SENDER, FakeSource, FakeSummarizer, FakeTransport, make_item

CHAT = "-100123"


def ts(hour, minute=0):
    return datetime(2025, 3, 15, hour, minute, tzinfo=timezone.utc)


def build(store, transport, source, summarizer=None, key_mode="category"):
    guard = SendGuard(store, transport)
    ctx = PipelineContext(
        store=store,
        source=source,
        cursor=CursorTracker(store),
        classifier=AlertClassifier.from_config(SYSTEM_SENDER, load_rules_config()),
        dedup=SubjectDeduplicator(store, key_mode=key_mode),
        aggregator=AlertAggregator(store, guard, CHAT, "Europe/Moscow"),
        guard=guard,
        toggle=ToggleHandler(store, transport),
        janitor=RetentionJanitor(store),
        destination=CHAT,
        message_summarizer=summarizer,
    )
    return BridgeOrchestrator(ctx)


def stopazart(item_id, player_id, minute):
    return make_item(item_id, "Ошибка STOPAZART", body=f"ID игрока: {player_id}", ts=ts(9, minute))


def test_two_alerts_same_category_one_immediate_one_summarized(store, transport):
    source = FakeSource([stopazart(1, "111", 0), stopazart(2, "222", 5)])
    bridge = build(store, transport, source)

    stats = bridge.ingest()

    assert stats["alerts_sent"] == 1
    assert stats["alerts_aggregated"] == 1
    assert len(transport.sent) == 1
    assert "New alert" in transport.sent[0]["text"]
    assert "STOPAZART" in transport.sent[0]["text"]

    summary = bridge.flush_hourly()

    assert summary is not None
    assert len(transport.sent) == 2
    assert "STOPAZART: 1 " in transport.sent[1]["text"]
    assert group_ids_by_category(summary.details) == {"STOPAZART": ["222"]}

    stored = sqlite3.connect(store.db_path).execute(
        "SELECT details_json FROM error_summaries WHERE summary_id = ?", (summary.summary_id,)
    ).fetchone()[0]
    assert [d["embedded_id"] for d in json.loads(stored)] == ["222"]

    assert bridge.handle_callback(f"expand_{summary.summary_id}") == ""
    assert "STOPAZART (1): 222" in transport.edits[-1]["text"]


def test_cursor_advances_and_items_are_not_reprocessed(store, transport):
    source = FakeSource([stopazart(1, "111", 0), stopazart(2, "222", 5)])
    bridge = build(store, transport, source)

    bridge.ingest()
    assert store.get_state("cursor") == "2"

    stats = bridge.ingest()
    assert stats["items_fetched"] == 0
    assert len(store.list_pending()) == 1
    assert source.calls == [None, "2"]


def test_source_failure_leaves_cursor_unchanged(store, transport):
    source = FakeSource([stopazart(1, "111", 0)])
    source.fail = True
    bridge = build(store, transport, source)

    with pytest.raises(TransientSourceError):
        bridge.ingest()

    assert store.get_state("cursor") is None
    assert transport.sent == []


def test_failed_immediate_alert_is_never_sent_twice(store, transport):
    source = FakeSource([stopazart(1, "111", 0)])
    bridge = build(store, transport, source)

    transport.fail_sends = True
    with pytest.raises(DispatchError):
        bridge.ingest()
    assert store.get_state("cursor") is None

    transport.fail_sends = False
    bridge.ingest()
    assert transport.sent == []
    assert store.get_state("cursor") == "1"
    assert store.has_seen("STOPAZART") is True

class SubjectFailingTransport(FakeTransport):
    """Fails sends whose text mentions ``fail_on`` while it is set."""

    def __init__(self, fail_on):
        super().__init__()
        self.fail_on = fail_on

    def send(self, destination, text, controls=None):
        if self.fail_on and self.fail_on in text:
            raise DispatchError("boom")
        return super().send(destination, text, controls)


def test_retry_after_later_failure_does_not_aggregate_alerted_item(store):
    transport = SubjectFailingTransport("SmartBridge")
    source = FakeSource([
        stopazart(1, "111", 0),
        make_item(2, "Ошибка SmartBridge", body="номер транзакции 5", ts=ts(9, 5)),
    ])
    bridge = build(store, transport, source)

    with pytest.raises(DispatchError):
        bridge.ingest()
    assert len(transport.sent) == 1
    assert store.get_state("cursor") is None

    transport.fail_on = None
    stats = bridge.ingest()

    assert stats["alerts_aggregated"] == 0
    assert len(transport.sent) == 1
    assert store.get_state("cursor") == "2"
    assert store.list_pending() == []
    assert bridge.flush_hourly() is None


def test_same_category_later_item_still_aggregated_after_retry(store):
    transport = SubjectFailingTransport("SmartBridge")
    source = FakeSource([
        stopazart(1, "111", 0),
        make_item(2, "Ошибка SmartBridge", body="номер транзакции 5", ts=ts(9, 5)),
        stopazart(3, "333", 10),
    ])
    bridge = build(store, transport, source)

    with pytest.raises(DispatchError):
        bridge.ingest()
    transport.fail_on = None
    bridge.ingest()

    assert [occ.item_id for _, occ in store.list_pending()] == ["3"]



def test_epoch_reset_allows_a_new_immediate_alert(store, transport):
    source = FakeSource([stopazart(1, "111", 0)])
    bridge = build(store, transport, source)
    bridge.ingest()

    assert bridge.reset_epoch() == 1

    source.items.append(stopazart(2, "222", 30))
    bridge.ingest()
    assert len(transport.sent) == 2
    assert store.list_pending() == []


def test_flush_without_pending_is_silent(store, transport):
    bridge = build(store, transport, FakeSource())
    assert bridge.flush_hourly() is None
    assert transport.sent == []


def test_informational_items_are_digested(store, transport):
    summarizer = FakeSummarizer()
    source = FakeSource([
        make_item(1, "Вопрос по выгрузке", body="Подскажите сроки", sender="ivan@winline.kz"),
        stopazart(2, "111", 5),
    ])
    bridge = build(store, transport, source, summarizer=summarizer)

    stats = bridge.ingest()

    assert stats["informational"] == 1
    assert "Вопрос по выгрузке" in summarizer.calls[0]
    assert "ID: 1" in summarizer.calls[0]
    texts = [s["text"] for s in transport.sent]
    assert any(t.startswith("📝 *Message summary:*") for t in texts)
    assert any("New alert" in t for t in texts)


def test_digest_failure_does_not_block_cursor(store, transport):
    source = FakeSource([make_item(1, "hello", sender="ivan@winline.kz")])
    bridge = build(store, transport, source, summarizer=FakeSummarizer())
    transport.fail_sends = True

    bridge.ingest()
    assert store.get_state("cursor") == "1"


def test_run_task_dispatches_by_name(store, transport):
    bridge = build(store, transport, FakeSource())
    assert bridge.run_task("flush_hourly") is None
    assert bridge.run_task("news_tick") == 0
    with pytest.raises(ValueError):
        bridge.run_task("drop_tables")


def test_create_orchestrator_from_settings(tmp_path):
    settings = Settings.from_overrides(
        db_path=str(tmp_path / "state" / "bridge.db"),
        telegram_chat_id=CHAT,
        telegram_bot_token="TOKEN",
        summarizer_api_key="",
        news_list_url="",
        dedup_key="category",
    )
    transport = FakeTransport()
    bridge = create_orchestrator_from_settings(
        settings,
        transport=transport,
        source=FakeSource([stopazart(1, "111", 0)]),
    )

    assert bridge.ctx.news is None
    bridge.ingest()
    assert (tmp_path / "state" / "bridge.db").exists()
    assert len(transport.sent) == 1


def test_create_orchestrator_requires_chat(tmp_path):
    settings = Settings.from_overrides(db_path=str(tmp_path / "b.db"), telegram_chat_id="")
    with pytest.raises(ValueError):
        create_orchestrator_from_settings(settings, transport=FakeTransport(), source=FakeSource())
