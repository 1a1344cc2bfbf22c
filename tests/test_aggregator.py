from datetime import datetime, timezone

import pytest

from alert_bridge.alerts.aggregator import AlertAggregator, group_by_category, render_collapsed
from alert_bridge.alerts.delivery import SendGuard
from alert_bridge.errors import DispatchError
from alert_bridge.models import AlertOccurrence

CHAT = "-100123"


def occ(item_id, category, embedded_id, minute=0):
    return AlertOccurrence(
        item_id=str(item_id),
        category=category,
        embedded_id=embedded_id,
        subject=f"Ошибка {category}",
        timestamp=datetime(2025, 3, 15, 9, minute, tzinfo=timezone.utc),
    )


@pytest.fixture
def aggregator(store, transport):
    return AlertAggregator(store, SendGuard(store, transport), CHAT, "Europe/Moscow")


def test_flush_with_nothing_pending_sends_nothing(aggregator, store, transport):
    assert aggregator.flush() is None
    assert transport.sent == []
    assert store.list_pending() == []


def test_flush_groups_and_clears(aggregator, store, transport):
    aggregator.record(occ(1, "STOPAZART", "222", minute=5))
    aggregator.record(occ(2, "SmartBridge", "9", minute=10))
    aggregator.record(occ(3, "STOPAZART", "333", minute=20))

    summary = aggregator.flush()

    assert summary is not None
    assert len(transport.sent) == 1
    text = transport.sent[0]["text"]
    # 09:20 UTC is 12:20 in Moscow
    assert "📌 STOPAZART: 2 (last seen 15.03.2025 12:20:00)" in text
    assert "📌 SmartBridge: 1" in text
    assert transport.sent[0]["controls"][0].token == f"expand_{summary.summary_id}"
    assert store.list_pending() == []
    assert store.get_summary(summary.summary_id).summary_text == text


def test_failed_flush_keeps_pending(aggregator, store, transport):
    aggregator.record(occ(1, "STOPAZART", "222"))
    transport.fail_sends = True

    with pytest.raises(DispatchError):
        aggregator.flush()

    assert len(store.list_pending()) == 1


def test_skipped_flush_keeps_pending(aggregator, store, transport):
    aggregator.record(occ(1, "STOPAZART", "222"))
    text = render_collapsed([occ(1, "STOPAZART", "222")], "Europe/Moscow")
    SendGuard(store, transport).dispatch(CHAT, text)

    assert aggregator.flush() is None
    assert len(store.list_pending()) == 1


def test_record_same_item_twice(aggregator, store):
    assert aggregator.record(occ(1, "STOPAZART", "222")) is True
    assert aggregator.record(occ(1, "STOPAZART", "222")) is False


def test_group_by_category_keeps_first_seen_order():
    grouped = group_by_category([occ(1, "B", None, 30), occ(2, "A", None, 10), occ(3, "B", None, 5)])
    assert list(grouped) == ["B", "A"]
    assert grouped["B"].count == 2
    assert grouped["B"].last_seen.minute == 30
