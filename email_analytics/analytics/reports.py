"""Typed records returned by the analytics query service and the HTTP API."""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, ConfigDict


class EmailCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    sent: int = 0
    delivered: int = 0
    opened: int = 0
    clicked: int = 0
    bounced: int = 0
    complained: int = 0
    unsubscribed: int = 0


class EngagementRates(BaseModel):
    """Trend-line rates; each is ``0.0`` when its denominator is zero."""

    model_config = ConfigDict(frozen=True)

    open_rate: float = 0.0
    click_rate: float = 0.0
    bounce_rate: float = 0.0


class EmailRates(EngagementRates):
    delivery_rate: float = 0.0
    complaint_rate: float = 0.0
    unsubscribe_rate: float = 0.0
    click_to_open_rate: float = 0.0


class EmailAnalytics(EmailCounts, EmailRates):
    """Totals and rates over an inclusive date range."""

    start_date: dt.date
    end_date: dt.date


class DailyEmailMetrics(EmailCounts):
    date: dt.date


class EmailEngagementTrend(EmailCounts, EngagementRates):
    date: dt.date


class CampaignAnalytics(EmailCounts, EmailRates):
    campaign_id: str


__all__ = [
    "EmailCounts",
    "EngagementRates",
    "EmailRates",
    "EmailAnalytics",
    "DailyEmailMetrics",
    "EmailEngagementTrend",
    "CampaignAnalytics",
]
