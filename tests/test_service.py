import dataclasses
import datetime as dt

import pytest

from conftest import make_event

from email_analytics.analytics.service import AnalyticsService, resolve_range
from email_analytics.errors import ValidationError
from email_analytics.models import EventType


@pytest.fixture
def service(rollup_store, settings) -> AnalyticsService:
    return AnalyticsService(rollup_store, settings)


def test_resolve_range_defaults_to_trailing_week() -> None:
    today = dt.date(2025, 3, 10)
    assert resolve_range(today=today) == (dt.date(2025, 3, 4), today)
    assert resolve_range(preset="30d", today=today) == (dt.date(2025, 2, 9), today)
    assert resolve_range("2025-01-01", "2025-01-31", today=today) == (
        dt.date(2025, 1, 1),
        dt.date(2025, 1, 31),
    )
    with pytest.raises(ValidationError):
        resolve_range(preset="2w", today=today)


def test_empty_week_is_zero_filled(service) -> None:
    daily = service.get_daily_email_metrics("2025-01-01", "2025-01-07")
    assert [d.date for d in daily] == [dt.date(2025, 1, i) for i in range(1, 8)]
    assert all(d.sent == 0 and d.opened == 0 for d in daily)

    trends = service.get_email_engagement_trends("2025-01-01", "2025-01-07")
    assert len(trends) == 7
    assert all(t.open_rate == 0.0 and t.bounce_rate == 0.0 for t in trends)

    totals = service.get_email_analytics("2025-01-01", "2025-01-07")
    assert totals.sent == 0
    assert totals.open_rate == 0.0 and totals.click_rate == 0.0


def test_single_email_full_funnel_rates(recorder, service) -> None:
    for i, event_type in enumerate(
        [EventType.SENT, EventType.DELIVERED, EventType.OPENED, EventType.CLICKED]
    ):
        recorder.record(make_event(f"evt-{i}", event_type, f"2025-01-15 10:0{i}:00"))

    analytics = service.get_email_analytics("2025-01-15", "2025-01-15")
    assert (analytics.sent, analytics.delivered, analytics.opened, analytics.clicked) == (1, 1, 1, 1)
    assert analytics.open_rate == 1.0
    assert analytics.click_rate == 1.0
    assert analytics.bounce_rate == 0.0
    assert analytics.start_date == analytics.end_date == dt.date(2025, 1, 15)


def test_daily_and_trends_follow_counters(recorder, service) -> None:
    recorder.record(make_event("s1", EventType.SENT, "2025-01-14 10:00:00"))
    recorder.record(make_event("d1", EventType.DELIVERED, "2025-01-14 10:01:00"))
    recorder.record(make_event("b1", EventType.BOUNCED, "2025-01-16 10:00:00"))

    daily = service.get_daily_email_metrics("2025-01-13", "2025-01-16")
    assert [(d.sent, d.delivered, d.bounced) for d in daily] == [
        (0, 0, 0),
        (1, 1, 0),
        (0, 0, 0),
        (0, 0, 1),
    ]
    trends = service.get_email_engagement_trends("2025-01-13", "2025-01-16")
    # a bounce with no send that day still yields a finite rate
    assert trends[3].bounce_rate == 0.0
    assert trends[1].open_rate == 0.0


def test_unknown_campaign_yields_zero_record(recorder, service) -> None:
    recorder.record(make_event("s1", EventType.SENT, campaign_id="known"))
    recorder.record(make_event("o1", EventType.OPENED, campaign_id="known"))

    result = service.get_email_campaign_analytics(["unknown", "known", "unknown"])
    assert [r.campaign_id for r in result] == ["unknown", "known"]
    unknown, known = result
    assert unknown.sent == 0 and unknown.opened == 0 and unknown.open_rate == 0.0
    assert known.sent == 1 and known.opened == 1
    assert known.open_rate == 0.0  # nothing delivered yet


def test_invalid_ranges_are_rejected(service, rollup_store, settings) -> None:
    with pytest.raises(ValidationError):
        service.get_email_analytics("2025-01-10", "2025-01-01")
    with pytest.raises(ValidationError):
        service.get_daily_email_metrics("yesterday", "2025-01-01")
    with pytest.raises(ValidationError):
        service.get_email_campaign_analytics(["ok", ""])

    short = AnalyticsService(rollup_store, dataclasses.replace(settings, max_range_days=30))
    short.get_daily_email_metrics("2025-01-01", "2025-01-30")
    with pytest.raises(ValidationError):
        short.get_daily_email_metrics("2025-01-01", "2025-01-31")
