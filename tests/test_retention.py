from datetime import datetime, timezone

from dateutil.relativedelta import relativedelta

from alert_bridge.alerts.retention import RetentionJanitor
from alert_bridge.alerts.toggle import ToggleHandler
from alert_bridge.errors import PersistenceError
from alert_bridge.models import DetailEntry, NewsItem, Summary

NOW = datetime(2025, 6, 15, 3, 0, tzinfo=timezone.utc)


def summary(summary_id, created_at):
    return Summary(
        summary_id=summary_id,
        chat_id="-100123",
        message_id="1",
        summary_text="text",
        details=[DetailEntry("STOPAZART", "1", "s", created_at)],
        created_at=created_at,
    )


def news(external_id, created_at):
    return NewsItem(
        source="announcements",
        external_id=external_id,
        title="t",
        raw_date="",
        url="",
        content="",
        summary="",
        planned_at=created_at,
        created_at=created_at,
    )


def test_purge_removes_only_old_rows(store):
    store.commit_summary(summary("old", NOW - relativedelta(months=3, days=1)), [])
    store.commit_summary(summary("fresh", NOW - relativedelta(months=2)), [])
    store.insert_news(news("old", NOW - relativedelta(months=4)))
    store.insert_news(news("fresh", NOW - relativedelta(days=1)))

    report = RetentionJanitor(store).purge(now=NOW)

    assert report.summaries_deleted == 1
    assert report.news_deleted == 1
    assert store.get_summary("old") is None
    assert store.get_summary("fresh") is not None
    assert store.get_news("announcements", "old") is None


def test_purge_never_touches_cursor_or_seen_keys(store):
    store.set_state_if("cursor", "10", lambda cur: True)
    store.mark_seen("STOPAZART")
    RetentionJanitor(store).purge(now=NOW)
    assert store.get_state("cursor") == "10"
    assert store.has_seen("STOPAZART")


def test_purged_summary_toggle_is_stale(store, transport):
    store.commit_summary(summary("old", NOW - relativedelta(months=4)), [])
    RetentionJanitor(store).purge(now=NOW)
    assert ToggleHandler(store, transport).handle_token("expand_old") == ToggleHandler.NOT_AVAILABLE


def test_news_purge_runs_even_if_summary_purge_fails(store, monkeypatch):
    store.insert_news(news("old", NOW - relativedelta(months=4)))

    def broken(cutoff):
        raise PersistenceError("disk I/O error")

    monkeypatch.setattr(store, "delete_summaries_before", broken)
    report = RetentionJanitor(store).purge(now=NOW)

    assert report.summaries_deleted is None
    assert report.news_deleted == 1
