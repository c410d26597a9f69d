"""Web server for email event ingestion and analytics.

This module exposes a typed API using FastAPI.  The email provider posts
signed webhook deliveries to ``/api/webhooks``; dashboards read totals, daily
series, trends and campaign breakdowns from ``/api/analytics/email``.  The
server can be run standalone::

    uvicorn email_analytics.tracking.server:app --reload

or embedded elsewhere through :func:`create_app`, which also accepts a
pre-built settings object and engine (tests use a temporary SQLite file).
"""

from __future__ import annotations

import datetime as dt
import hmac
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Literal, Optional

import uvicorn
from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy import text
from sqlalchemy.engine import Engine
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from email_analytics.analytics.reputation import check_reputation
from email_analytics.analytics.service import AnalyticsService, resolve_range
from email_analytics.config import Settings, get_settings
from email_analytics.errors import AuthError, StorageError, ValidationError
from email_analytics.models import EmailEvent, EventType, RecordOutcome
from email_analytics.storage import EventStore, RollupStore, create_storage_engine, init_schema
from email_analytics.tracking.recorder import EventRecorder
from email_analytics.tracking.webhook import WebhookReceiver

LOGGER = logging.getLogger(__name__)

_REPUTATION_TYPES = {EventType.BOUNCED, EventType.COMPLAINED}
_bearer = HTTPBearer(auto_error=False)


@dataclass
class Components:
    """Everything a request handler needs, built once per application."""

    settings: Settings
    engine: Engine
    events: EventStore
    rollups: RollupStore
    recorder: EventRecorder
    receiver: WebhookReceiver
    analytics: AnalyticsService


def _build_components(settings: Settings, engine: Optional[Engine]) -> Components:
    if engine is None:
        engine = create_storage_engine(
            settings.database_url, settings.storage_timeout_seconds
        )
    init_schema(engine)
    events = EventStore(engine, settings)
    rollups = RollupStore(engine, settings)
    recorder = EventRecorder(events, rollups, settings)
    return Components(
        settings=settings,
        engine=engine,
        events=events,
        rollups=rollups,
        recorder=recorder,
        receiver=WebhookReceiver(recorder, settings),
        analytics=AnalyticsService(rollups, settings),
    )


def get_components(request: Request) -> Components:
    """Return the application's components, connecting on first use."""
    state = request.app.state
    if state.components is None:
        with state.components_lock:
            if state.components is None:
                state.components = _build_components(state.settings, state.engine)
    return state.components


def require_api_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> None:
    """Reject callers without ``Authorization: Bearer <ANALYTICS_API_TOKEN>``."""
    expected = request.app.state.settings.api_token
    if not expected:
        LOGGER.error("ANALYTICS_API_TOKEN environment variable is not set")
        raise AuthError("unauthorized")
    if credentials is None or not hmac.compare_digest(
        credentials.credentials.encode("utf-8"), expected.encode("utf-8")
    ):
        raise AuthError("unauthorized")


def require_diagnostics(request: Request) -> None:
    """Hide the diagnostic endpoints unless ENABLE_DIAGNOSTICS is set."""
    if not request.app.state.settings.enable_diagnostics:
        raise StarletteHTTPException(status_code=404, detail="Not Found")


class CampaignAnalyticsRequest(BaseModel):
    campaign_ids: list[str] = Field(
        validation_alias=AliasChoices("campaign_ids", "campaignIds", "emailIds")
    )


class DiagnosticRequest(BaseModel):
    action: Literal["test_event", "check_events"]
    email_id: Optional[str] = None
    campaign_id: Optional[str] = None


def _reputation_task(events: EventStore, settings: Settings) -> None:
    """Background check after new bounces or complaints; never raises."""
    try:
        check_reputation(events, settings)
    except Exception:  # noqa: BLE001 - runs after the response was sent
        LOGGER.exception("Reputation check failed")


# ---------------------- Error handlers ----------------------
def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return _error(400, str(exc))


async def _request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    if errors:
        where = ".".join(str(p) for p in errors[0].get("loc", ()))
        return _error(400, f"{where}: {errors[0].get('msg', 'invalid value')}")
    return _error(400, "invalid request")


async def _auth_error(request: Request, exc: AuthError) -> JSONResponse:
    LOGGER.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
    return _error(401, "unauthorized")


async def _storage_error(request: Request, exc: StorageError) -> JSONResponse:
    LOGGER.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return _error(500, "internal server error")


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "internal server error")


# ---------------------- Application ----------------------
def create_app(
    settings: Optional[Settings] = None, engine: Optional[Engine] = None
) -> FastAPI:
    """Return a configured FastAPI application.

    Storage is connected lazily on the first request, so importing this
    module never touches the database.
    """
    settings = settings or get_settings()
    app = FastAPI(title="Mailpulse Email Analytics API")
    app.state.settings = settings
    app.state.engine = engine
    app.state.components = None
    app.state.components_lock = threading.Lock()

    app.add_exception_handler(ValidationError, _validation_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(AuthError, _auth_error)
    app.add_exception_handler(StorageError, _storage_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(Exception, _unexpected_error)

    @app.post("/api/webhooks", summary="Signed provider webhook ingress")
    async def receive_webhook(
        request: Request,
        background_tasks: BackgroundTasks,
        components: Components = Depends(get_components),
    ) -> dict[str, Any]:
        body = await request.body()
        result = await run_in_threadpool(
            components.receiver.handle, body, request.headers
        )
        if result.inserted_types & _REPUTATION_TYPES:
            background_tasks.add_task(
                _reputation_task, components.events, components.settings
            )
        return result.as_dict()

    @app.get("/api/webhooks", summary="Webhook accessibility check")
    def webhook_status() -> dict[str, Any]:
        return {
            "message": "Webhook endpoint is accessible",
            "configured": bool(settings.webhook_secret),
        }

    @app.get(
        "/api/analytics/email",
        summary="Totals, daily metrics and trends",
        dependencies=[Depends(require_api_token)],
    )
    def email_analytics(
        start: Optional[str] = None,
        end: Optional[str] = None,
        preset: Optional[str] = Query(default=None, alias="range"),
        components: Components = Depends(get_components),
    ) -> dict[str, Any]:
        start_date, end_date = resolve_range(start, end, preset)
        service = components.analytics
        return {
            "analytics": service.get_email_analytics(start_date, end_date).model_dump(
                mode="json"
            ),
            "daily": [
                d.model_dump(mode="json")
                for d in service.get_daily_email_metrics(start_date, end_date)
            ],
            "trends": [
                t.model_dump(mode="json")
                for t in service.get_email_engagement_trends(start_date, end_date)
            ],
        }

    @app.get(
        "/api/analytics/email/daily",
        summary="Zero-filled daily counts",
        dependencies=[Depends(require_api_token)],
    )
    def email_daily(
        start: Optional[str] = None,
        end: Optional[str] = None,
        preset: Optional[str] = Query(default=None, alias="range"),
        components: Components = Depends(get_components),
    ) -> list[dict[str, Any]]:
        start_date, end_date = resolve_range(start, end, preset)
        return [
            d.model_dump(mode="json")
            for d in components.analytics.get_daily_email_metrics(start_date, end_date)
        ]

    @app.get(
        "/api/analytics/email/trends",
        summary="Daily engagement trends",
        dependencies=[Depends(require_api_token)],
    )
    def email_trends(
        start: Optional[str] = None,
        end: Optional[str] = None,
        preset: Optional[str] = Query(default=None, alias="range"),
        components: Components = Depends(get_components),
    ) -> list[dict[str, Any]]:
        start_date, end_date = resolve_range(start, end, preset)
        return [
            t.model_dump(mode="json")
            for t in components.analytics.get_email_engagement_trends(start_date, end_date)
        ]

    @app.post(
        "/api/analytics/email/campaigns",
        summary="Per-campaign analytics",
        dependencies=[Depends(require_api_token)],
    )
    def email_campaigns(
        req: CampaignAnalyticsRequest,
        components: Components = Depends(get_components),
    ) -> list[dict[str, Any]]:
        return [
            c.model_dump(mode="json")
            for c in components.analytics.get_email_campaign_analytics(req.campaign_ids)
        ]

    @app.get("/api/health", summary="Configuration and database health")
    def health(request: Request) -> JSONResponse:
        checks: dict[str, Any] = {
            "webhook_secret": bool(settings.webhook_secret),
            "api_token": bool(settings.api_token),
        }
        started = time.perf_counter()
        try:
            components = get_components(request)
            with components.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            checks["database"] = {
                "status": "connected",
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            }
            healthy = True
        except Exception as exc:  # noqa: BLE001 - reported, not raised
            LOGGER.error("Health check failed: %s", exc)
            checks["database"] = {"status": "error"}
            healthy = False
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "healthy" if healthy else "unhealthy",
                "timestamp": dt.datetime.utcnow().isoformat(),
                "checks": checks,
            },
        )

    @app.post(
        "/api/debug/email-events",
        summary="Diagnostic ingestion",
        include_in_schema=settings.enable_diagnostics,
        dependencies=[Depends(require_diagnostics), Depends(require_api_token)],
    )
    def debug_email_events(
        req: DiagnosticRequest,
        components: Components = Depends(get_components),
    ) -> dict[str, Any]:
        if req.action == "test_event":
            event = EmailEvent(
                dedup_key=f"diagnostic-{uuid.uuid4().hex}",
                email_id=req.email_id or f"diagnostic-{uuid.uuid4().hex[:12]}",
                event_type=EventType.SENT,
                created_at=dt.datetime.utcnow(),
                campaign_id=req.campaign_id,
                payload={"source": "diagnostic"},
            )
            outcome = components.recorder.record(event)
            LOGGER.info("Diagnostic event %s: %s", event.dedup_key, outcome.value)
            return {
                "success": outcome is RecordOutcome.INSERTED,
                "outcome": outcome.value,
                "dedup_key": event.dedup_key,
            }
        return {
            "events": components.events.recent(10),
            "metrics": components.rollups.recent(10),
            "total_events": components.events.count(),
        }

    return app


app = create_app()


def main() -> None:
    """Serve the module level application with uvicorn."""
    settings = app.state.settings
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        app,
        host=settings.server_host,
        port=settings.server_port,
        log_level=settings.log_level.lower(),
    )


__all__ = [
    "app",
    "create_app",
    "main",
    "get_components",
    "require_api_token",
    "require_diagnostics",
    "Components",
]


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
