"""Durable storage: the append-only event log and the rollup counters."""

from __future__ import annotations

from .db import create_storage_engine, get_engine, init_schema, reset_engine
from .event_store import EventStore
from .rollup_store import RollupStore

__all__ = [
    "EventStore",
    "RollupStore",
    "create_storage_engine",
    "get_engine",
    "init_schema",
    "reset_engine",
]
