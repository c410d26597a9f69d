import datetime as dt
from concurrent.futures import ThreadPoolExecutor

from conftest import make_event

from email_analytics.models import EventType, RecordOutcome

DAY = dt.date(2025, 1, 15)


def _counters(rollup_store) -> dict:
    df = rollup_store.read_range(DAY, DAY, campaign_id=None)
    return {
        (rec["event_type"], rec["campaign_id"]): rec["event_count"]
        for rec in df.to_dict("records")
    }


def test_duplicate_delivery_counts_once(recorder, event_store, rollup_store) -> None:
    event = make_event("evt-1", EventType.OPENED)
    assert recorder.record(event) is RecordOutcome.INSERTED
    assert recorder.record(event) is RecordOutcome.DUPLICATE
    assert event_store.count() == 1
    assert _counters(rollup_store) == {("opened", ""): 1}


def test_campaign_event_bumps_global_and_campaign_counters(recorder, rollup_store) -> None:
    recorder.record(make_event("s1", EventType.SENT, campaign_id="spring"))
    recorder.record(make_event("s2", EventType.SENT))
    assert _counters(rollup_store) == {("sent", ""): 2, ("sent", "spring"): 1}


def test_concurrent_duplicates_insert_exactly_once(recorder, event_store, rollup_store) -> None:
    event = make_event("evt-race", EventType.CLICKED, campaign_id="c1")
    with ThreadPoolExecutor(max_workers=12) as pool:
        outcomes = list(pool.map(lambda _: recorder.record(event), range(30)))

    assert outcomes.count(RecordOutcome.INSERTED) == 1
    assert outcomes.count(RecordOutcome.DUPLICATE) == 29
    assert event_store.count() == 1
    assert _counters(rollup_store) == {("clicked", ""): 1, ("clicked", "c1"): 1}


def test_out_of_order_events_land_on_their_own_day(recorder, rollup_store) -> None:
    recorder.record(make_event("late", EventType.OPENED, "2025-01-15 09:00:00"))
    recorder.record(make_event("early", EventType.SENT, "2025-01-14 22:00:00"))
    df = rollup_store.read_range(DAY - dt.timedelta(days=1), DAY)
    got = {(r["metric_date"], r["event_type"]): r["event_count"] for r in df.to_dict("records")}
    assert got == {(DAY - dt.timedelta(days=1), "sent"): 1, (DAY, "opened"): 1}


def test_record_many_reports_each_outcome(recorder) -> None:
    events = [make_event("a"), make_event("b"), make_event("a")]
    assert recorder.record_many(events) == [
        RecordOutcome.INSERTED,
        RecordOutcome.INSERTED,
        RecordOutcome.DUPLICATE,
    ]
