"""Analytics subsystem: queries, rates, reconciliation and reputation alerts.

``frame_bridge`` and ``metrics`` are pure frame transformations and are
imported eagerly; ``service``, ``reconcile`` and ``reputation`` talk to the
storage layer (which itself depends on ``metrics``) and are imported by their
full module path.
"""

from . import frame_bridge, metrics

__all__ = [
    "frame_bridge",
    "metrics",
    "reconcile",
    "reports",
    "reputation",
    "service",
]
