"""Pre-aggregated daily counters derived from the event log.

The rollups are a cache with a repair path: :meth:`RollupStore.increment`
keeps them current during ingestion, :meth:`RollupStore.recompute` rebuilds a
date range from the raw events when drift is suspected.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Iterable, Optional, Sequence

import pandas as pd
from sqlalchemy import delete, func, select, update
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Connection, Engine

from email_analytics.analytics.metrics import daily_event_counts
from email_analytics.config import Settings, get_settings
from email_analytics.errors import ValidationError
from email_analytics.models import GLOBAL_SCOPE, MetricKey
from email_analytics.storage.db import (
    daily_metrics_table,
    dialect_insert,
    events_table,
    with_retry,
)
from email_analytics.storage.event_store import EVENT_COLUMNS, day_bounds

LOGGER = logging.getLogger(__name__)

_T = daily_metrics_table


def _batches(items: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class RollupStore:
    """Keyed counters over ``(date, event_type, campaign_id)``."""

    def __init__(self, engine: Engine, settings: Optional[Settings] = None) -> None:
        self._engine = engine
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    def _upsert_add(self, conn: Connection, key: MetricKey, delta: int) -> None:
        now = dt.datetime.utcnow()
        stmt = dialect_insert(self._engine, _T)
        if stmt is not None:
            stmt = stmt.values(
                metric_date=key.date,
                event_type=key.event_type.value,
                campaign_id=key.campaign_id,
                event_count=delta,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["metric_date", "event_type", "campaign_id"],
                set_={
                    "event_count": _T.c.event_count + stmt.excluded.event_count,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            conn.execute(stmt)
            return

        # Generic path: single-statement UPDATE ... SET n = n + delta, and an
        # INSERT guarded by the primary key when the row does not exist yet.
        where = (
            (_T.c.metric_date == key.date)
            & (_T.c.event_type == key.event_type.value)
            & (_T.c.campaign_id == key.campaign_id)
        )
        bump = update(_T).where(where).values(
            event_count=_T.c.event_count + delta, updated_at=now
        )
        if conn.execute(bump).rowcount:
            return
        savepoint = conn.begin_nested()
        try:
            conn.execute(
                _T.insert().values(
                    metric_date=key.date,
                    event_type=key.event_type.value,
                    campaign_id=key.campaign_id,
                    event_count=delta,
                    updated_at=now,
                )
            )
        except sa_exc.IntegrityError:
            savepoint.rollback()
            conn.execute(bump)
        else:
            savepoint.commit()

    def increment_many(self, keys: Iterable[MetricKey], conn: Connection) -> None:
        """Add one to every key on the caller's connection/transaction."""
        for key in keys:
            self._upsert_add(conn, key, 1)

    def increment(self, key: MetricKey, delta: int = 1) -> None:
        """Atomically add ``delta`` to ``key``, creating the row if absent."""
        if isinstance(delta, bool) or not isinstance(delta, int) or delta < 1:
            raise ValidationError(f"delta must be a positive integer, got {delta!r}")

        def _write() -> None:
            with self._engine.begin() as conn:
                self._upsert_add(conn, key, delta)

        with_retry(_write, "rollup increment", self._settings)

    def recompute(self, start: dt.date, end: dt.date) -> int:
        """Rebuild every counter of days [start, end] from the raw events.

        The stored rows of the range are replaced, not adjusted, so running
        this twice yields the same result.  Returns the number of counter rows
        written.
        """
        if start > end:
            raise ValidationError("start must not be after end")
        lower, upper = day_bounds(start, end)
        events_query = (
            select(*(events_table.c[name] for name in EVENT_COLUMNS))
            .where(events_table.c.created_at >= lower)
            .where(events_table.c.created_at < upper)
        )

        def _rebuild() -> int:
            with self._engine.begin() as conn:
                # Delete first so SQLite takes the write lock before reading.
                conn.execute(
                    delete(_T).where(_T.c.metric_date.between(start, end))
                )
                events = pd.read_sql_query(events_query, conn)
                counts = daily_event_counts(events)
                if counts.empty:
                    return 0
                now = dt.datetime.utcnow()
                rows = [
                    {
                        "metric_date": rec["metric_date"],
                        "event_type": rec["event_type"],
                        "campaign_id": rec["campaign_id"],
                        "event_count": int(rec["event_count"]),
                        "updated_at": now,
                    }
                    for rec in counts.to_dict("records")
                ]
                conn.execute(_T.insert(), rows)
                return len(rows)

        written = with_retry(_rebuild, "rollup recompute", self._settings)
        LOGGER.info("recomputed %d rollup rows for %s..%s", written, start, end)
        return written

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def read_range(
        self,
        start: dt.date,
        end: dt.date,
        campaign_id: Optional[str] = GLOBAL_SCOPE,
    ) -> pd.DataFrame:
        """Counters of days [start, end] for one scope.

        ``campaign_id=None`` returns every scope, including the global one,
        with a ``campaign_id`` column.
        """
        cols = [_T.c.metric_date, _T.c.event_type, _T.c.campaign_id, _T.c.event_count]
        query = select(*cols).where(_T.c.metric_date.between(start, end))
        if campaign_id is not None:
            query = query.where(_T.c.campaign_id == campaign_id)

        def _read() -> pd.DataFrame:
            with self._engine.connect() as conn:
                return pd.read_sql_query(query, conn)

        df = with_retry(_read, "rollup range read", self._settings)
        df["metric_date"] = pd.to_datetime(df["metric_date"], errors="coerce").dt.date
        df["event_count"] = df["event_count"].astype("int64")
        return df

    def read_campaign_totals(self, campaign_ids: Sequence[str]) -> pd.DataFrame:
        """Per-type totals over all dates for ``campaign_ids``, read in batches."""
        frames: list[pd.DataFrame] = []
        ids = [c for c in campaign_ids if c != GLOBAL_SCOPE]
        for batch in _batches(ids, self._settings.campaign_batch_size):
            query = (
                select(
                    _T.c.campaign_id,
                    _T.c.event_type,
                    func.sum(_T.c.event_count).label("event_count"),
                )
                .where(_T.c.campaign_id.in_(list(batch)))
                .group_by(_T.c.campaign_id, _T.c.event_type)
            )

            def _read(q: Any = query) -> pd.DataFrame:
                with self._engine.connect() as conn:
                    return pd.read_sql_query(q, conn)

            frames.append(with_retry(_read, "campaign totals read", self._settings))
        if not frames:
            return pd.DataFrame(columns=["campaign_id", "event_type", "event_count"])
        out = pd.concat(frames, ignore_index=True)
        out["event_count"] = out["event_count"].fillna(0).astype("int64")
        return out

    def recent(self, limit: int = 10) -> list[dict[str, Any]]:
        query = (
            select(_T.c.metric_date, _T.c.event_type, _T.c.campaign_id, _T.c.event_count)
            .order_by(_T.c.metric_date.desc(), _T.c.updated_at.desc())
            .limit(limit)
        )

        def _read() -> list[dict[str, Any]]:
            with self._engine.connect() as conn:
                return [dict(row._mapping) for row in conn.execute(query)]

        rows = with_retry(_read, "recent rollups", self._settings)
        for row in rows:
            row["metric_date"] = row["metric_date"].isoformat()
        return rows


__all__ = ["RollupStore"]
