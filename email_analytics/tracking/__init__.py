"""Event ingestion: webhook verification, normalisation and recording.

``recorder`` is the transport-agnostic write path; ``webhook`` turns signed
provider deliveries into canonical events; ``server`` exposes both, together
with the analytics API, over HTTP.
"""

from __future__ import annotations

__all__ = ["recorder", "webhook", "server"]
