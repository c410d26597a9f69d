import datetime as dt

from conftest import make_event

from email_analytics.models import EventType


def _insert(event_store, event) -> bool:
    with event_store.engine.begin() as conn:
        return event_store.insert(event, conn)


def test_insert_is_idempotent_on_dedup_key(event_store) -> None:
    first = make_event("evt-1", EventType.OPENED)
    again = make_event("evt-1", EventType.OPENED, created_at="2025-01-16 08:00:00")

    assert _insert(event_store, first) is True
    assert _insert(event_store, again) is False
    assert event_store.count() == 1


def test_scan_range_uses_inclusive_calendar_days(event_store) -> None:
    _insert(event_store, make_event("a", created_at="2025-01-14 23:59:59"))
    _insert(event_store, make_event("b", created_at="2025-01-15 00:00:00"))
    _insert(event_store, make_event("c", created_at="2025-01-16 23:59:59"))
    _insert(event_store, make_event("d", created_at="2025-01-17 00:00:00"))

    df = event_store.scan_range(dt.date(2025, 1, 15), dt.date(2025, 1, 16))
    assert sorted(df["dedup_key"]) == ["b", "c"]
    assert list(df.columns) == ["dedup_key", "email_id", "campaign_id", "event_type", "created_at"]


def test_count_since_and_recent(event_store) -> None:
    _insert(event_store, make_event("s1", EventType.SENT, "2025-01-15 10:00:00"))
    _insert(event_store, make_event("s2", EventType.SENT, "2025-01-15 11:00:00"))
    _insert(event_store, make_event("b1", EventType.BOUNCED, "2025-01-15 12:00:00"))
    _insert(event_store, make_event("old", EventType.SENT, "2025-01-10 12:00:00"))

    counts = event_store.count_since(
        dt.datetime(2025, 1, 15), ["sent", "bounced", "complained"]
    )
    assert counts == {"sent": 2, "bounced": 1, "complained": 0}

    recent = event_store.recent(2)
    assert [r["dedup_key"] for r in recent] == ["b1", "s2"]
    assert recent[0]["created_at"] == "2025-01-15T12:00:00"
