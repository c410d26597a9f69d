"""Computation of email engagement counts and rates.

This module holds the pure frame transformations shared by the query service,
the rollup recompute path and the reconciler:

* :func:`daily_event_counts` aggregates raw events into rollup counters;
* :func:`daily_frame` turns stored counters into one zero-filled row per day;
* :func:`add_rates` derives engagement rates, defining every rate with a zero
  denominator as ``0.0`` rather than NaN or infinity.
"""

from __future__ import annotations

import datetime as dt
from typing import Mapping

import pandas as pd
import polars as pl

from email_analytics.analytics.frame_bridge import (
    counts_to_pd,
    events_to_pl,
    sort_for_determinism,
)
from email_analytics.models import GLOBAL_SCOPE, EventType

EVENT_TYPES: list[str] = EventType.values()

COUNTER_COLUMNS = ["metric_date", "event_type", "campaign_id", "event_count"]

# rate name -> (numerator, denominator)
RATES: dict[str, tuple[str, str]] = {
    "open_rate": ("opened", "delivered"),
    "click_rate": ("clicked", "delivered"),
    "bounce_rate": ("bounced", "sent"),
    "delivery_rate": ("delivered", "sent"),
    "complaint_rate": ("complained", "sent"),
    "unsubscribe_rate": ("unsubscribed", "sent"),
    "click_to_open_rate": ("clicked", "opened"),
}

TREND_RATES = ("open_rate", "click_rate", "bounce_rate")


def daily_event_counts(events: pd.DataFrame) -> pd.DataFrame:
    """Aggregate raw events into rollup counter rows.

    Parameters
    ----------
    events:
        Event rows with at least ``dedup_key``, ``event_type``,
        ``campaign_id`` and ``created_at``.  Rows sharing a ``dedup_key``
        count once.

    Returns
    -------
    pd.DataFrame
        Columns ``metric_date, event_type, campaign_id, event_count``: one
        global row (``campaign_id == ""``) per day and type, plus one row per
        day, type and campaign for events that carry a campaign.
    """
    ev = events_to_pl(events)
    if ev.is_empty():
        return pd.DataFrame(columns=COUNTER_COLUMNS)

    ev = ev.unique(subset=["dedup_key"], keep="first").with_columns(
        pl.col("created_at").dt.date().alias("metric_date")
    )
    global_counts = (
        ev.group_by(["metric_date", "event_type"])
        .agg(pl.len().alias("event_count"))
        .with_columns(pl.lit(GLOBAL_SCOPE).alias("campaign_id"))
        .select(COUNTER_COLUMNS)
    )
    campaign_counts = (
        ev.filter(pl.col("campaign_id") != GLOBAL_SCOPE)
        .group_by(["metric_date", "event_type", "campaign_id"])
        .agg(pl.len().alias("event_count"))
        .select(COUNTER_COLUMNS)
    )
    counts = sort_for_determinism(
        pl.concat([global_counts, campaign_counts]),
        ["metric_date", "event_type", "campaign_id"],
    )
    return counts_to_pd(counts)


def safe_rate(numerator: float, denominator: float) -> float:
    """``numerator / denominator``, or ``0.0`` when the denominator is zero."""
    if not denominator:
        return 0.0
    return float(numerator) / float(denominator)


def add_rates(df: pd.DataFrame, rates: tuple[str, ...] | None = None) -> pd.DataFrame:
    """Append rate columns computed from the per-type count columns."""
    df = df.copy()
    for name in rates or tuple(RATES):
        num, den = RATES[name]
        denominator = df[den].where(df[den] > 0)
        df[name] = (df[num] / denominator).fillna(0.0).astype(float)
    return df


def rates_for(counts: Mapping[str, int], rates: tuple[str, ...] | None = None) -> dict[str, float]:
    """Scalar version of :func:`add_rates` for one set of counts."""
    return {
        name: safe_rate(counts.get(RATES[name][0], 0), counts.get(RATES[name][1], 0))
        for name in rates or tuple(RATES)
    }


def empty_counts() -> dict[str, int]:
    return {t: 0 for t in EVENT_TYPES}


def totals(counters: pd.DataFrame) -> dict[str, int]:
    """Sum ``event_count`` per event type, with every type present."""
    out = empty_counts()
    if counters.empty:
        return out
    summed = counters.groupby("event_type")["event_count"].sum()
    for event_type, value in summed.items():
        if event_type in out:
            out[str(event_type)] = int(value)
    return out


def daily_frame(counters: pd.DataFrame, start: dt.date, end: dt.date) -> pd.DataFrame:
    """One row per calendar day in [start, end] with a column per event type.

    Days without counters are zero-filled; rows are in chronological order.
    """
    days = pd.date_range(start=start, end=end, freq="D").date
    if counters.empty:
        frame = pd.DataFrame(0, index=days, columns=EVENT_TYPES)
    else:
        frame = (
            counters.pivot_table(
                index="metric_date",
                columns="event_type",
                values="event_count",
                aggfunc="sum",
                fill_value=0,
            )
            .reindex(index=days, columns=EVENT_TYPES, fill_value=0)
            .fillna(0)
        )
    frame = frame.astype("int64")
    frame.index.name = "date"
    frame.columns.name = None
    return frame


__all__ = [
    "EVENT_TYPES",
    "RATES",
    "TREND_RATES",
    "daily_event_counts",
    "safe_rate",
    "add_rates",
    "rates_for",
    "empty_counts",
    "totals",
    "daily_frame",
]
