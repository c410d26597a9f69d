"""Compare the rollup counters with the event log and repair any drift.

Run it after an outage, a manual database fix or on a nightly schedule::

    python scripts/reconcile_rollups.py --start 2025-01-01 --end 2025-01-31
    python scripts/reconcile_rollups.py --start 2025-01-01 --end 2025-01-31 --dry-run

The database is taken from ``EMAIL_ANALYTICS_DB_URL`` unless ``--db-url`` is
given.  The exit status is 0 when the range is consistent (or was repaired)
and 1 when a dry run found mismatches.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from email_analytics.analytics.reconcile import Reconciler  # noqa: E402
from email_analytics.config import get_settings  # noqa: E402
from email_analytics.models import parse_date  # noqa: E402
from email_analytics.storage import (  # noqa: E402
    EventStore,
    RollupStore,
    create_storage_engine,
    init_schema,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--start", required=True, help="first day, YYYY-MM-DD")
    parser.add_argument("--end", required=True, help="last day, YYYY-MM-DD")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="report mismatches without recomputing the rollups",
    )
    parser.add_argument("--db-url", default=None, help="SQLAlchemy database URL")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    start = parse_date(args.start, "start")
    end = parse_date(args.end, "end")

    engine = create_storage_engine(args.db_url or settings.database_url)
    try:
        init_schema(engine)
        reconciler = Reconciler(
            EventStore(engine, settings), RollupStore(engine, settings)
        )
        report = reconciler.reconcile(start, end, dry_run=args.dry_run)
    finally:
        engine.dispose()

    print(json.dumps(report.as_dict(), indent=2))
    return 1 if args.dry_run and not report.consistent else 0


if __name__ == "__main__":  # pragma: no cover - manual invocation
    sys.exit(main())
