"""Append-only store of canonical email events.

Rows are never updated or deleted.  Inserting is idempotent on ``dedup_key``:
the unique index is the only synchronisation point, so the existence check
and the insert happen as one statement instead of a read followed by a write.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Iterable, Optional

import pandas as pd
from sqlalchemy import func, select
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Connection, Engine

from email_analytics.config import Settings, get_settings
from email_analytics.models import EmailEvent
from email_analytics.storage.db import dialect_insert, events_table, with_retry

LOGGER = logging.getLogger(__name__)

EVENT_COLUMNS = [
    "dedup_key",
    "email_id",
    "campaign_id",
    "event_type",
    "created_at",
]


def day_bounds(start: dt.date, end: dt.date) -> tuple[dt.datetime, dt.datetime]:
    """Half-open datetime interval covering the calendar days [start, end]."""
    lower = dt.datetime.combine(start, dt.time.min)
    upper = dt.datetime.combine(end + dt.timedelta(days=1), dt.time.min)
    return lower, upper


class EventStore:
    """Durable event log backed by the ``email_events`` table."""

    def __init__(self, engine: Engine, settings: Optional[Settings] = None) -> None:
        self._engine = engine
        self._settings = settings or get_settings()

    @property
    def engine(self) -> Engine:
        return self._engine

    def _row(self, event: EmailEvent) -> dict[str, Any]:
        return {
            "dedup_key": event.dedup_key,
            "email_id": event.email_id,
            "campaign_id": event.campaign_id,
            "event_type": event.event_type.value,
            "created_at": event.created_at,
            "payload": event.payload or {},
            "recorded_at": dt.datetime.utcnow(),
        }

    def insert(self, event: EmailEvent, conn: Connection) -> bool:
        """Insert ``event`` unless its ``dedup_key`` is already stored.

        Runs on the caller's connection so the caller controls the
        transaction.  Returns ``True`` when a new row was written and
        ``False`` for a duplicate.
        """
        row = self._row(event)
        stmt = dialect_insert(self._engine, events_table)
        if stmt is not None:
            result = conn.execute(
                stmt.values(**row).on_conflict_do_nothing(
                    index_elements=["dedup_key"]
                )
            )
            return result.rowcount == 1

        # Other dialects: rely on the unique index raising.
        savepoint = conn.begin_nested()
        try:
            conn.execute(events_table.insert().values(**row))
        except sa_exc.IntegrityError:
            savepoint.rollback()
            return False
        savepoint.commit()
        return True

    def scan_range(self, start: dt.date, end: dt.date) -> pd.DataFrame:
        """Return the events whose ``created_at`` falls on days [start, end]."""
        lower, upper = day_bounds(start, end)
        query = (
            select(*(events_table.c[name] for name in EVENT_COLUMNS))
            .where(events_table.c.created_at >= lower)
            .where(events_table.c.created_at < upper)
        )

        def _read() -> pd.DataFrame:
            with self._engine.connect() as conn:
                return pd.read_sql_query(query, conn)

        df = with_retry(_read, "event range scan", self._settings)
        if "created_at" in df.columns:
            df["created_at"] = pd.to_datetime(df["created_at"], errors="coerce")
        return df

    def count_since(
        self, since: dt.datetime, event_types: Iterable[str]
    ) -> dict[str, int]:
        """Count events per type with ``created_at >= since``."""
        types = list(event_types)
        query = (
            select(events_table.c.event_type, func.count())
            .where(events_table.c.created_at >= since)
            .where(events_table.c.event_type.in_(types))
            .group_by(events_table.c.event_type)
        )

        def _read() -> dict[str, int]:
            with self._engine.connect() as conn:
                return {row[0]: int(row[1]) for row in conn.execute(query)}

        counts = with_retry(_read, "event count", self._settings)
        return {t: counts.get(t, 0) for t in types}

    def count(self) -> int:
        def _read() -> int:
            with self._engine.connect() as conn:
                query = select(func.count()).select_from(events_table)
                return int(conn.execute(query).scalar_one())

        return with_retry(_read, "event count", self._settings)

    def recent(self, limit: int = 10) -> list[dict[str, Any]]:
        """Most recently created events, newest first."""
        query = (
            select(*(events_table.c[name] for name in EVENT_COLUMNS))
            .order_by(events_table.c.created_at.desc(), events_table.c.id.desc())
            .limit(limit)
        )

        def _read() -> list[dict[str, Any]]:
            with self._engine.connect() as conn:
                return [dict(row._mapping) for row in conn.execute(query)]

        rows = with_retry(_read, "recent events", self._settings)
        for row in rows:
            row["created_at"] = row["created_at"].isoformat()
        return rows


__all__ = ["EventStore", "EVENT_COLUMNS", "day_bounds"]
