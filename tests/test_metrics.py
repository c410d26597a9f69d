import datetime as dt

import pandas as pd

from email_analytics.analytics.metrics import (
    EVENT_TYPES,
    add_rates,
    daily_event_counts,
    daily_frame,
    rates_for,
    safe_rate,
    totals,
)


def _events() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "dedup_key": ["k1", "k2", "k2", "k3", "k4"],
            "event_type": ["sent", "sent", "sent", "opened", "sent"],
            "campaign_id": ["A", None, None, "A", "B"],
            "created_at": pd.to_datetime(
                [
                    "2025-01-15 08:00:00",
                    "2025-01-15 09:00:00",
                    "2025-01-15 09:00:00",
                    "2025-01-15 23:59:00",
                    "2025-01-16 00:01:00",
                ]
            ),
        }
    )


def test_daily_event_counts_global_and_campaign_rows() -> None:
    counts = daily_event_counts(_events())
    got = {
        (r["metric_date"], r["event_type"], r["campaign_id"]): r["event_count"]
        for r in counts.to_dict("records")
    }
    d15, d16 = dt.date(2025, 1, 15), dt.date(2025, 1, 16)
    assert got == {
        (d15, "sent", ""): 2,
        (d15, "sent", "A"): 1,
        (d15, "opened", ""): 1,
        (d15, "opened", "A"): 1,
        (d16, "sent", ""): 1,
        (d16, "sent", "B"): 1,
    }
    assert counts["event_count"].dtype == "int64"


def test_daily_event_counts_empty() -> None:
    assert daily_event_counts(pd.DataFrame()).empty


def test_daily_frame_zero_fills_every_day() -> None:
    counters = pd.DataFrame(
        {
            "metric_date": [dt.date(2025, 1, 3)],
            "event_type": ["opened"],
            "campaign_id": [""],
            "event_count": [4],
        }
    )
    frame = daily_frame(counters, dt.date(2025, 1, 1), dt.date(2025, 1, 7))
    assert len(frame) == 7
    assert list(frame.index) == [dt.date(2025, 1, d) for d in range(1, 8)]
    assert list(frame.columns) == EVENT_TYPES
    assert frame.loc[dt.date(2025, 1, 3), "opened"] == 4
    assert int(frame.to_numpy().sum()) == 4

    empty = daily_frame(counters.iloc[0:0], dt.date(2025, 1, 1), dt.date(2025, 1, 2))
    assert empty.shape == (2, len(EVENT_TYPES))
    assert int(empty.to_numpy().sum()) == 0


def test_rates_never_divide_by_zero() -> None:
    assert safe_rate(3, 0) == 0.0
    assert safe_rate(1, 4) == 0.25

    frame = pd.DataFrame({t: [0, 2] for t in EVENT_TYPES})
    frame["opened"] = [5, 1]
    with_rates = add_rates(frame)
    assert with_rates["open_rate"].tolist() == [0.0, 0.5]
    assert with_rates["click_to_open_rate"].tolist() == [0.0, 2.0]
    assert not with_rates.isna().any().any()


def test_rates_for_counts() -> None:
    counts = {"sent": 4, "delivered": 2, "opened": 1, "clicked": 1, "bounced": 1}
    rates = rates_for(counts)
    assert rates["open_rate"] == 0.5
    assert rates["click_rate"] == 0.5
    assert rates["bounce_rate"] == 0.25
    assert rates["delivery_rate"] == 0.5
    assert rates["complaint_rate"] == 0.0
    assert rates["click_to_open_rate"] == 1.0


def test_totals_fill_missing_types() -> None:
    counters = pd.DataFrame(
        {"event_type": ["sent", "sent", "opened"], "event_count": [2, 3, 1]}
    )
    out = totals(counters)
    assert out["sent"] == 5 and out["opened"] == 1
    assert set(out) == set(EVENT_TYPES)
    assert out["unsubscribed"] == 0
