"""Exception taxonomy shared by ingestion, storage and analytics.

Duplicated webhook deliveries are deliberately absent: a duplicate is a
successful outcome (:class:`email_analytics.models.RecordOutcome`), never an
exception.
"""

from __future__ import annotations

from typing import Any


class EmailAnalyticsError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(EmailAnalyticsError):
    """Malformed payload, unknown event type or invalid date range.

    Surfaced immediately and never retried.
    """


class AuthError(EmailAnalyticsError):
    """Webhook signature or caller credential failure."""


class StorageError(EmailAnalyticsError):
    """Storage kept failing after the bounded retries were exhausted."""


class ReconciliationMismatch(EmailAnalyticsError):
    """A stored rollup counter disagrees with the raw event log.

    Never raised to callers; instances are built so that mismatches are
    logged with a uniform message before the rollups are recomputed.
    """

    def __init__(self, key: Any, stored: int, expected: int) -> None:
        self.key = key
        self.stored = stored
        self.expected = expected
        super().__init__(
            f"rollup {key} holds {stored}, events say {expected}"
        )


__all__ = [
    "EmailAnalyticsError",
    "ValidationError",
    "AuthError",
    "StorageError",
    "ReconciliationMismatch",
]
