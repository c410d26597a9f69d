"""Bridges between pandas and Polars for analytics internals.

Storage reads come back as pandas DataFrames (``pd.read_sql_query``) and the
HTTP layer serialises pandas results.  Heavy group-bys over raw event frames
run in Polars for multi-threaded execution; these helpers convert at the
boundary and normalise the event columns on the way in.
"""

from __future__ import annotations

from collections.abc import Iterable

import pandas as pd
import polars as pl

from email_analytics.models import GLOBAL_SCOPE


def events_to_pl(events: pd.DataFrame | None) -> pl.DataFrame:
    """Convert a pandas event frame to Polars with clean key columns.

    ``created_at`` is parsed leniently (unparseable rows are dropped) and a
    missing campaign becomes the global scope marker so it groups as a string.
    """
    if events is None or events.empty:
        return pl.DataFrame(
            schema={
                "dedup_key": pl.Utf8,
                "event_type": pl.Utf8,
                "campaign_id": pl.Utf8,
                "created_at": pl.Datetime("us"),
            }
        )
    assert_columns(events, ["dedup_key", "event_type", "campaign_id", "created_at"])
    ev = events[["dedup_key", "event_type", "campaign_id", "created_at"]].copy()
    ev["created_at"] = pd.to_datetime(ev["created_at"], errors="coerce")
    ev = ev.dropna(subset=["created_at"])
    ev["campaign_id"] = ev["campaign_id"].fillna(GLOBAL_SCOPE).astype(str)
    ev["event_type"] = ev["event_type"].astype(str)
    ev["dedup_key"] = ev["dedup_key"].astype(str)
    return pl.from_pandas(ev, include_index=False)


def counts_to_pd(counts: pl.DataFrame) -> pd.DataFrame:
    """Convert a Polars counter frame back to pandas with ``date`` objects."""
    out = counts.to_pandas()
    if "metric_date" in out.columns:
        out["metric_date"] = pd.to_datetime(out["metric_date"]).dt.date
    if "event_count" in out.columns:
        out["event_count"] = out["event_count"].astype("int64")
    return out


def assert_columns(df: pl.DataFrame | pd.DataFrame, cols: Iterable[str]) -> None:
    """Raise ``ValueError`` if any of ``cols`` is missing from ``df``."""
    present = set(df.columns)
    missing = [c for c in cols if c not in present]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def sort_for_determinism(df: pl.DataFrame, keys: list[str]) -> pl.DataFrame:
    """Stable sort on the subset of ``keys`` present in ``df``."""
    valid = [k for k in keys if k in df.columns]
    return df.sort(valid, maintain_order=True) if valid else df
