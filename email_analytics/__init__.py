"""Top‑level package for the mailpulse email analytics service.

This package ingests provider webhooks describing the lifecycle of outbound
emails, stores them idempotently, keeps daily rollups up to date and answers
analytics queries over date ranges.  Individual subpackages handle specific
concerns: ``storage`` owns the event log and the rollup counters,
``tracking`` receives and records provider events and exposes the HTTP API,
and ``analytics`` answers queries and repairs drifted rollups.

The ``__all__`` variable enumerates the primary public modules for
convenience when using ``from email_analytics import ...``.
"""

from __future__ import annotations

__all__ = [
    "analytics",
    "config",
    "errors",
    "models",
    "storage",
    "tracking",
]

# SemVer version of the package
__version__: str = "0.1.0"
