import base64
import datetime as dt
import sys
from pathlib import Path
from typing import Optional

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from email_analytics.config import Settings
from email_analytics.models import EmailEvent, EventType
from email_analytics.storage import EventStore, RollupStore, create_storage_engine, init_schema
from email_analytics.tracking.recorder import EventRecorder

WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"mailpulse-test-signing-key").decode()
API_TOKEN = "test-analytics-token"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'analytics.db'}",
        webhook_secret=WEBHOOK_SECRET,
        api_token=API_TOKEN,
        storage_timeout_seconds=30.0,
        storage_max_attempts=5,
        storage_backoff_min_seconds=0.01,
        storage_backoff_max_seconds=0.2,
    )


@pytest.fixture
def engine(settings: Settings):
    eng = create_storage_engine(settings.database_url, settings.storage_timeout_seconds)
    init_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def event_store(engine, settings: Settings) -> EventStore:
    return EventStore(engine, settings)


@pytest.fixture
def rollup_store(engine, settings: Settings) -> RollupStore:
    return RollupStore(engine, settings)


@pytest.fixture
def recorder(event_store: EventStore, rollup_store: RollupStore, settings: Settings) -> EventRecorder:
    return EventRecorder(event_store, rollup_store, settings)


def make_event(
    dedup_key: str,
    event_type: EventType = EventType.SENT,
    created_at: str = "2025-01-15 10:00:00",
    email_id: str = "e1",
    campaign_id: Optional[str] = None,
) -> EmailEvent:
    return EmailEvent(
        dedup_key=dedup_key,
        email_id=email_id,
        event_type=event_type,
        created_at=dt.datetime.fromisoformat(created_at),
        campaign_id=campaign_id,
    )
