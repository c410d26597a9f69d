"""Read-only analytics queries over the rollup counters.

Every query reads the pre-aggregated ``email_daily_metrics`` rows, never the
raw event log, and never writes.  Queries run concurrently with ingestion
without locking; a query may not yet reflect an in-flight webhook.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Iterable, Optional

from email_analytics.analytics import metrics
from email_analytics.analytics.reports import (
    CampaignAnalytics,
    DailyEmailMetrics,
    EmailAnalytics,
    EmailEngagementTrend,
)
from email_analytics.config import Settings, get_settings
from email_analytics.errors import ValidationError
from email_analytics.models import GLOBAL_SCOPE, parse_date
from email_analytics.storage.rollup_store import RollupStore

LOGGER = logging.getLogger(__name__)

RANGE_PRESETS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}


def resolve_range(
    start: Optional[str | dt.date] = None,
    end: Optional[str | dt.date] = None,
    preset: Optional[str] = None,
    today: Optional[dt.date] = None,
) -> tuple[dt.date, dt.date]:
    """Turn optional query parameters into an inclusive ``(start, end)``.

    Without explicit dates the window is the trailing ``preset`` (default
    ``7d``) ending today: seven calendar days including today.
    """
    today = today or dt.datetime.utcnow().date()
    if preset is not None and preset not in RANGE_PRESETS:
        raise ValidationError(
            f"range must be one of {', '.join(RANGE_PRESETS)}, got {preset!r}"
        )
    days = RANGE_PRESETS[preset or "7d"]
    end_date = parse_date(end, "end") if end else today
    start_date = (
        parse_date(start, "start") if start else end_date - dt.timedelta(days=days - 1)
    )
    return start_date, end_date


class AnalyticsService:
    """Totals, daily series, trends and per-campaign breakdowns."""

    def __init__(self, rollups: RollupStore, settings: Optional[Settings] = None) -> None:
        self._rollups = rollups
        self._settings = settings or get_settings()

    def _check_range(self, start: str | dt.date, end: str | dt.date) -> tuple[dt.date, dt.date]:
        start_date = parse_date(start, "start")
        end_date = parse_date(end, "end")
        if start_date > end_date:
            raise ValidationError("start must not be after end")
        span = (end_date - start_date).days + 1
        if span > self._settings.max_range_days:
            raise ValidationError(
                f"date range spans {span} days, the maximum is "
                f"{self._settings.max_range_days}"
            )
        return start_date, end_date

    def get_email_analytics(self, start: str | dt.date, end: str | dt.date) -> EmailAnalytics:
        """Counts per event type and derived rates over [start, end]."""
        start_date, end_date = self._check_range(start, end)
        counters = self._rollups.read_range(start_date, end_date, GLOBAL_SCOPE)
        counts = metrics.totals(counters)
        return EmailAnalytics(
            start_date=start_date,
            end_date=end_date,
            **counts,
            **metrics.rates_for(counts),
        )

    def get_daily_email_metrics(
        self, start: str | dt.date, end: str | dt.date
    ) -> list[DailyEmailMetrics]:
        """Exactly one zero-filled entry per day in [start, end], oldest first."""
        start_date, end_date = self._check_range(start, end)
        counters = self._rollups.read_range(start_date, end_date, GLOBAL_SCOPE)
        frame = metrics.daily_frame(counters, start_date, end_date)
        return [
            DailyEmailMetrics(date=day, **{k: int(v) for k, v in row.items()})
            for day, row in frame.iterrows()
        ]

    def get_email_engagement_trends(
        self, start: str | dt.date, end: str | dt.date
    ) -> list[EmailEngagementTrend]:
        """Daily counts with open, click and bounce rates for trend lines."""
        start_date, end_date = self._check_range(start, end)
        counters = self._rollups.read_range(start_date, end_date, GLOBAL_SCOPE)
        frame = metrics.add_rates(
            metrics.daily_frame(counters, start_date, end_date), metrics.TREND_RATES
        )
        trends = []
        for day, row in frame.iterrows():
            counts = {t: int(row[t]) for t in metrics.EVENT_TYPES}
            rates = {r: float(row[r]) for r in metrics.TREND_RATES}
            trends.append(EmailEngagementTrend(date=day, **counts, **rates))
        return trends

    def get_email_campaign_analytics(
        self, campaign_ids: Iterable[str]
    ) -> list[CampaignAnalytics]:
        """Per-campaign counts and rates, one record per distinct id.

        Records follow the order of ``campaign_ids``; ids with no recorded
        events get an all-zero record.
        """
        ids = list(dict.fromkeys(str(c) for c in campaign_ids))
        if any(not c for c in ids):
            raise ValidationError("campaign ids must be non-empty strings")
        by_campaign: dict[str, dict[str, int]] = {c: metrics.empty_counts() for c in ids}
        totals = self._rollups.read_campaign_totals(ids)
        for rec in totals.to_dict("records"):
            bucket = by_campaign.get(rec["campaign_id"])
            if bucket is not None and rec["event_type"] in bucket:
                bucket[rec["event_type"]] += int(rec["event_count"])
        LOGGER.debug("campaign analytics for %d ids", len(ids))
        return [
            CampaignAnalytics(campaign_id=c, **counts, **metrics.rates_for(counts))
            for c, counts in by_campaign.items()
        ]


__all__ = ["AnalyticsService", "resolve_range", "RANGE_PRESETS"]
