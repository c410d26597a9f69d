"""Domain types for email lifecycle events and their rollups."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import pandas as pd

from email_analytics.errors import ValidationError

# Rollup rows that are not scoped to a campaign carry this campaign id so the
# (date, type, campaign) unique key never contains NULL.
GLOBAL_SCOPE = ""


class EventType(str, Enum):
    """Lifecycle stages an outbound email can report."""

    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    BOUNCED = "bounced"
    COMPLAINED = "complained"
    UNSUBSCRIBED = "unsubscribed"

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


class RecordOutcome(str, Enum):
    """Result of recording one event; both values mean success."""

    INSERTED = "inserted"
    DUPLICATE = "duplicate"


def to_utc_naive(value: Any) -> dt.datetime:
    """Parse ``value`` into a naive UTC datetime.

    Strings with an offset (including ``Z``) are converted to UTC; naive
    inputs are assumed to already be UTC.

    Raises:
        ValidationError: If ``value`` is missing or cannot be parsed.
    """
    if value is None or value == "":
        raise ValidationError("timestamp is required")
    if not isinstance(value, (str, dt.date)):
        raise ValidationError(f"invalid timestamp: {value!r}")
    ts = pd.to_datetime(value, errors="coerce", utc=True)
    if pd.isna(ts):
        raise ValidationError(f"invalid timestamp: {value!r}")
    return ts.tz_convert(None).to_pydatetime()


def parse_date(value: Any, name: str = "date") -> dt.date:
    """Parse an ISO calendar date (``YYYY-MM-DD``) or pass a date through."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        return dt.date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"{name} must be an ISO date, got {value!r}") from exc


@dataclass(frozen=True)
class MetricKey:
    """Identity of one rollup counter."""

    date: dt.date
    event_type: EventType
    campaign_id: str = GLOBAL_SCOPE

    @property
    def is_global(self) -> bool:
        return self.campaign_id == GLOBAL_SCOPE


@dataclass(frozen=True)
class EmailEvent:
    """Canonical, immutable email lifecycle event.

    ``created_at`` is the provider's timestamp as naive UTC; ``payload`` keeps
    the provider's raw data for audit purposes.
    """

    dedup_key: str
    email_id: str
    event_type: EventType
    created_at: dt.datetime
    campaign_id: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if not self.dedup_key:
            raise ValidationError("dedup_key is required")
        if not self.email_id:
            raise ValidationError("email_id is required")
        if not isinstance(self.event_type, EventType):
            raise ValidationError(f"unknown event type: {self.event_type!r}")
        if self.created_at.tzinfo is not None:
            object.__setattr__(self, "created_at", to_utc_naive(self.created_at))
        if self.campaign_id == GLOBAL_SCOPE:
            object.__setattr__(self, "campaign_id", None)

    @property
    def day(self) -> dt.date:
        return self.created_at.date()

    def metric_keys(self) -> list[MetricKey]:
        """Counters that one new occurrence of this event increments."""
        keys = [MetricKey(self.day, self.event_type)]
        if self.campaign_id:
            keys.append(MetricKey(self.day, self.event_type, self.campaign_id))
        return keys


__all__ = [
    "GLOBAL_SCOPE",
    "EventType",
    "RecordOutcome",
    "MetricKey",
    "EmailEvent",
    "to_utc_naive",
    "parse_date",
]
