import sqlite3
from datetime import datetime, timedelta, timezone

from alert_bridge.alerts.store import BridgeStore
from alert_bridge.models import AlertOccurrence, DetailEntry, NewsItem, Summary


NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


def make_occurrence(item_id="1", category="STOPAZART", embedded_id="111"):
    return AlertOccurrence(
        item_id=item_id,
        category=category,
        embedded_id=embedded_id,
        subject=f"Ошибка {category}",
        timestamp=NOW,
    )


def make_news(external_id="a1", planned_at=NOW, created_at=NOW):
    return NewsItem(
        source="announcements",
        external_id=external_id,
        title="Maintenance",
        raw_date="15.03.2025",
        url=f"https://example.org/{external_id}",
        content="body",
        summary="short",
        planned_at=planned_at,
        created_at=created_at,
    )


def test_init_creates_all_tables(store):
    conn = sqlite3.connect(store.db_path)
    names = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {
        "bridge_state",
        "seen_keys",
        "pending_occurrences",
        "error_summaries",
        "sent_fingerprints",
        "news_items",
    } <= names


def test_set_state_if_respects_predicate(store):
    assert store.set_state_if("cursor", "5", lambda cur: True) is True
    assert store.set_state_if("cursor", "3", lambda cur: False) is False
    assert store.get_state("cursor") == "5"


def test_fingerprint_unique_per_destination(store):
    assert store.insert_fingerprint("chat-a", "h1") is True
    assert store.insert_fingerprint("chat-a", "h1") is False
    # same content, different destination is a separate claim
    assert store.insert_fingerprint("chat-b", "h1") is True


def test_add_pending_is_idempotent_per_item(store):
    assert store.add_pending(make_occurrence("1")) is True
    assert store.add_pending(make_occurrence("1")) is False
    assert store.add_pending(make_occurrence("2", embedded_id="222")) is True

    pending = store.list_pending()
    assert [occ.item_id for _, occ in pending] == ["1", "2"]
    assert pending[0][1].timestamp == NOW


def test_commit_summary_clears_only_covered_pending(store):
    store.add_pending(make_occurrence("1"))
    store.add_pending(make_occurrence("2"))
    covered = [row_id for row_id, _ in store.list_pending()][:1]

    summary = Summary(
        summary_id="abc123",
        chat_id="-100",
        message_id="7",
        summary_text="text",
        details=[DetailEntry("STOPAZART", None, "s", NOW)],
        created_at=NOW,
    )
    store.commit_summary(summary, covered)

    assert [occ.item_id for _, occ in store.list_pending()] == ["2"]
    loaded = store.get_summary("abc123")
    assert loaded.ref.message_id == "7"
    assert loaded.details == [DetailEntry("STOPAZART", None, "s", NOW)]


def test_news_insert_due_and_mark_posted_once(store):
    item = make_news()
    assert store.insert_news(item) is True
    assert item.id is not None
    assert store.insert_news(make_news()) is False

    assert store.due_news(NOW - timedelta(minutes=1)) == []
    due = store.due_news(NOW)
    assert [n.external_id for n in due] == ["a1"]

    assert store.mark_news_posted(item.id, NOW) is True
    assert store.mark_news_posted(item.id, NOW) is False
    assert store.due_news(NOW + timedelta(days=1)) == []
    assert store.get_news("announcements", "a1").posted is True


def test_seen_key_remembers_first_item(store):
    assert store.mark_seen("STOPAZART", "1") is True
    assert store.mark_seen("STOPAZART", "2") is False
    assert store.seen_item_id("STOPAZART") == "1"
    assert store.seen_item_id("SmartBridge") is None


def test_news_failure_hash_is_kept(store):
    item = make_news()
    store.insert_news(item)
    assert store.get_news("announcements", "a1").failed_hash is None

    store.record_news_failure(item.id, "deadbeef")
    assert store.get_news("announcements", "a1").failed_hash == "deadbeef"
    assert store.get_news("announcements", "a1").posted is False


def test_older_seen_keys_table_gains_item_column(tmp_path):
    db_path = tmp_path / "old.db"
    conn = sqlite3.connect(db_path)
    conn.execute("CREATE TABLE seen_keys (dedup_key TEXT PRIMARY KEY, first_seen_at TEXT NOT NULL)")
    conn.execute("INSERT INTO seen_keys VALUES ('STOPAZART', '2025-03-15T09:00:00+00:00')")
    conn.commit()
    conn.close()

    store = BridgeStore(db_path)
    assert store.has_seen("STOPAZART") is True
    assert store.seen_item_id("STOPAZART") is None
    assert store.mark_seen("SmartBridge", "2") is True
    assert store.seen_item_id("SmartBridge") == "2"
