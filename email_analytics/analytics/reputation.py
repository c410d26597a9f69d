"""Sender reputation alerts for bounces and spam complaints.

Email providers suspend senders whose bounce or complaint rates stay above
their published limits (4 % bounces, 0.08 % complaints).  After a new bounce or
complaint is recorded, :func:`check_reputation` looks at the trailing 24 hours
of the event log and logs a warning when a limit is crossed.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Optional

from email_analytics.analytics.metrics import safe_rate
from email_analytics.config import Settings, get_settings
from email_analytics.models import EventType
from email_analytics.storage.event_store import EventStore

LOGGER = logging.getLogger(__name__)

WINDOW = dt.timedelta(hours=24)


@dataclass(frozen=True)
class ReputationSnapshot:
    sent: int
    bounced: int
    complained: int
    bounce_rate: float
    complaint_rate: float
    bounce_alert: bool
    complaint_alert: bool


def check_reputation(
    events: EventStore,
    settings: Optional[Settings] = None,
    now: Optional[dt.datetime] = None,
) -> ReputationSnapshot:
    """Compute trailing-24h bounce and complaint rates and warn on breaches."""
    settings = settings or get_settings()
    since = (now or dt.datetime.utcnow()) - WINDOW
    counts = events.count_since(
        since,
        [EventType.SENT.value, EventType.BOUNCED.value, EventType.COMPLAINED.value],
    )
    sent = counts[EventType.SENT.value]
    bounced = counts[EventType.BOUNCED.value]
    complained = counts[EventType.COMPLAINED.value]
    bounce_rate = safe_rate(bounced, sent)
    complaint_rate = safe_rate(complained, sent)

    snapshot = ReputationSnapshot(
        sent=sent,
        bounced=bounced,
        complained=complained,
        bounce_rate=bounce_rate,
        complaint_rate=complaint_rate,
        bounce_alert=bounce_rate > settings.bounce_rate_threshold,
        complaint_alert=complaint_rate > settings.complaint_rate_threshold,
    )
    if snapshot.bounce_alert:
        LOGGER.warning(
            "High bounce rate detected: %.2f%% (%d of %d sent in 24h)",
            bounce_rate * 100, bounced, sent,
        )
    if snapshot.complaint_alert:
        LOGGER.warning(
            "High complaint rate detected: %.4f%% (%d of %d sent in 24h)",
            complaint_rate * 100, complained, sent,
        )
    return snapshot


__all__ = ["check_reputation", "ReputationSnapshot", "WINDOW"]
