"""Idempotent recording of canonical events.

:class:`EventRecorder` is the single write path into storage.  It does not
care how an event arrived (webhook, queue consumer, diagnostic endpoint):
callers hand it an :class:`~email_analytics.models.EmailEvent` and get back
whether the event was new or a duplicate.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from email_analytics.config import Settings, get_settings
from email_analytics.models import EmailEvent, RecordOutcome
from email_analytics.storage.db import with_retry
from email_analytics.storage.event_store import EventStore
from email_analytics.storage.rollup_store import RollupStore

LOGGER = logging.getLogger(__name__)


class EventRecorder:
    """Write one event and its rollup increments, at most once per key."""

    def __init__(
        self,
        events: EventStore,
        rollups: RollupStore,
        settings: Optional[Settings] = None,
    ) -> None:
        self._events = events
        self._rollups = rollups
        self._settings = settings or get_settings()

    def record(self, event: EmailEvent) -> RecordOutcome:
        """Store ``event`` and bump its counters unless it was seen before.

        The insert and the increments share one transaction, in that order:
        a duplicate key skips the increments, and a failure rolls both back.

        Raises:
            StorageError: If storage keeps failing after bounded retries.
        """

        def _write() -> RecordOutcome:
            with self._events.engine.begin() as conn:
                if not self._events.insert(event, conn):
                    return RecordOutcome.DUPLICATE
                self._rollups.increment_many(event.metric_keys(), conn)
                return RecordOutcome.INSERTED

        outcome = with_retry(_write, f"record {event.dedup_key}", self._settings)
        LOGGER.debug(
            "%s %s event %s for email %s",
            outcome.value, event.event_type.value, event.dedup_key, event.email_id,
        )
        return outcome

    def record_many(self, events: Iterable[EmailEvent]) -> list[RecordOutcome]:
        """Record events one by one; each has its own transaction."""
        return [self.record(event) for event in events]


__all__ = ["EventRecorder"]
