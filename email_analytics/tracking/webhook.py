"""Verification and normalisation of provider webhook deliveries.

The provider signs each delivery the Svix way: three headers carry a message
id, a unix timestamp and one or more ``v1,<base64 HMAC-SHA256>`` signatures of
``"{id}.{timestamp}.{raw body}"``.  The shared secret is configured through
``WEBHOOK_SECRET``; a ``whsec_`` prefix marks base64 key material.

A verified body holds one provider event object or a list of them.  Each
object is normalised into an :class:`~email_analytics.models.EmailEvent` and
handed to the :class:`~email_analytics.tracking.recorder.EventRecorder`.
Events of unknown type are dropped with a warning instead of failing the
whole delivery; duplicates are successes.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from email_analytics.config import Settings, get_settings
from email_analytics.errors import AuthError, ValidationError
from email_analytics.models import EmailEvent, EventType, RecordOutcome, to_utc_naive
from email_analytics.tracking.recorder import EventRecorder

LOGGER = logging.getLogger(__name__)

ID_HEADER = "svix-id"
TIMESTAMP_HEADER = "svix-timestamp"
SIGNATURE_HEADER = "svix-signature"

PROVIDER_EVENT_TYPES: dict[str, EventType] = {
    "email.sent": EventType.SENT,
    "email.delivered": EventType.DELIVERED,
    "email.opened": EventType.OPENED,
    "email.clicked": EventType.CLICKED,
    "email.bounced": EventType.BOUNCED,
    "email.complained": EventType.COMPLAINED,
    "email.unsubscribed": EventType.UNSUBSCRIBED,
}
PROVIDER_EVENT_TYPES.update({t.value: t for t in EventType})


# ---------------------- Signatures ----------------------
def _secret_key(secret: str) -> bytes:
    if secret.startswith("whsec_"):
        try:
            return base64.b64decode(secret[len("whsec_"):])
        except (binascii.Error, ValueError) as exc:
            raise AuthError("webhook secret is not valid base64") from exc
    return secret.encode("utf-8")


def compute_signature(secret: str, msg_id: str, timestamp: str, body: bytes) -> str:
    """Return the ``v1,<base64>`` signature for one delivery."""
    signed = f"{msg_id}.{timestamp}.".encode("utf-8") + body
    digest = hmac.new(_secret_key(secret), signed, hashlib.sha256).digest()
    return "v1," + base64.b64encode(digest).decode("ascii")


def verify_signature(
    secret: Optional[str],
    body: bytes,
    headers: Mapping[str, str],
    tolerance_seconds: int = 300,
    now: Optional[float] = None,
) -> str:
    """Check the delivery signature and return the provider message id.

    Raises:
        AuthError: If the secret is unset, a header is missing, the timestamp
            is outside ``tolerance_seconds`` or no signature matches.
    """
    if not secret:
        LOGGER.error("WEBHOOK_SECRET environment variable is not set")
        raise AuthError("webhook secret not configured")

    lowered = {k.lower(): v for k, v in headers.items()}
    msg_id = lowered.get(ID_HEADER)
    timestamp = lowered.get(TIMESTAMP_HEADER)
    signatures = lowered.get(SIGNATURE_HEADER)
    if not msg_id or not timestamp or not signatures:
        raise AuthError("missing required webhook headers")

    try:
        sent_at = int(timestamp)
    except ValueError as exc:
        raise AuthError("invalid webhook timestamp") from exc
    current = time.time() if now is None else now
    if abs(current - sent_at) > tolerance_seconds:
        raise AuthError("webhook timestamp outside tolerance")

    expected = compute_signature(secret, msg_id, timestamp, body)
    for candidate in signatures.split():
        # Header values may carry non-ASCII (latin-1) bytes; compare as bytes
        if candidate.startswith("v1,") and hmac.compare_digest(
            candidate.encode("utf-8"), expected.encode("ascii")
        ):
            return msg_id
    raise AuthError("invalid webhook signature")


# ---------------------- Normalisation ----------------------
class ProviderEventData(BaseModel):
    """The ``data`` object of a provider event.

    Only the fields needed to count the event are typed; recipients, tags and
    any other keys are audit payload and accepted in whatever shape arrives.
    """

    model_config = ConfigDict(
        extra="allow", populate_by_name=True, coerce_numbers_to_str=True
    )

    email_id: str = Field(min_length=1)
    created_at: Optional[str] = None
    to: Any = None
    campaign_id: Optional[str] = Field(default=None, alias="campaignId")
    tags: Any = None


def map_event_type(raw_type: Any) -> EventType:
    """Map a provider type string (``email.opened`` or ``opened``) to the enum."""
    key = str(raw_type or "").strip().lower()
    try:
        return PROVIDER_EVENT_TYPES[key]
    except KeyError:
        raise ValidationError(f"unrecognised event type: {raw_type!r}") from None


def _campaign_from(data: ProviderEventData) -> Optional[str]:
    if data.campaign_id:
        return str(data.campaign_id)
    tags = data.tags
    if isinstance(tags, dict):
        value = tags.get("campaign_id") or tags.get("campaignId")
        return str(value) if value else None
    if isinstance(tags, list):
        for tag in tags:
            if not isinstance(tag, dict):
                continue
            if tag.get("name") in ("campaign_id", "campaignId") and tag.get("value"):
                return str(tag["value"])
    return None


def content_dedup_key(email_id: str, event_type: EventType, created_at: Any) -> str:
    """Fallback idempotency key when the provider sends no event id."""
    raw = f"{email_id}|{event_type.value}|{created_at.isoformat()}"
    return "sha256:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()


def normalize_event(raw: Any, fallback_id: Optional[str] = None) -> EmailEvent:
    """Turn one provider event object into a canonical event.

    Both the nested provider shape ``{"type", "created_at", "data": {...}}``
    and a flat object carrying ``email_id`` next to ``type`` are accepted.

    Raises:
        ValidationError: For a non-object, an unknown type, a missing
            ``email_id`` or an unparseable timestamp.
    """
    if not isinstance(raw, dict):
        raise ValidationError("event must be a JSON object")
    event_type = map_event_type(raw.get("type") or raw.get("event_type"))
    data_raw = raw["data"] if isinstance(raw.get("data"), dict) else raw
    try:
        data = ProviderEventData.model_validate(data_raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"malformed event data: {exc.errors()[0]['msg']}") from exc

    created_at = to_utc_naive(data.created_at or raw.get("created_at"))
    provider_id = raw.get("id") or raw.get("event_id") or fallback_id
    dedup_key = (
        str(provider_id)
        if provider_id
        else content_dedup_key(data.email_id, event_type, created_at)
    )
    return EmailEvent(
        dedup_key=dedup_key,
        email_id=data.email_id,
        event_type=event_type,
        created_at=created_at,
        campaign_id=_campaign_from(data),
        payload=raw,
    )


def parse_body(body: bytes) -> list[Any]:
    """Decode a JSON body into a list of event objects."""
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError("body is not valid JSON") from exc
    if isinstance(payload, dict):
        return [payload]
    if isinstance(payload, list):
        return payload
    raise ValidationError("body must be an event object or a list of them")


@dataclass
class WebhookResult:
    inserted: int = 0
    duplicates: int = 0
    rejected: list[str] = field(default_factory=list)
    inserted_types: set[EventType] = field(default_factory=set)

    @property
    def received(self) -> int:
        return self.inserted + self.duplicates + len(self.rejected)

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "received": self.received,
            "inserted": self.inserted,
            "duplicates": self.duplicates,
            "rejected": len(self.rejected),
        }


class WebhookReceiver:
    """Authenticate, normalise and record provider deliveries."""

    def __init__(self, recorder: EventRecorder, settings: Optional[Settings] = None) -> None:
        self._recorder = recorder
        self._settings = settings or get_settings()

    def handle(self, body: bytes, headers: Mapping[str, str]) -> WebhookResult:
        """Process one signed delivery.

        Raises:
            AuthError: Before any parsing when the signature is bad.
            ValidationError: When the body is not JSON event data.
            StorageError: When recording keeps failing; the provider retries
                and already recorded events of the batch become duplicates.
        """
        msg_id = verify_signature(
            self._settings.webhook_secret,
            body,
            headers,
            self._settings.webhook_tolerance_seconds,
        )
        items = parse_body(body)
        return self.process(items, fallback_id=msg_id if len(items) == 1 else None)

    def process(self, items: list[Any], fallback_id: Optional[str] = None) -> WebhookResult:
        result = WebhookResult()
        for item in items:
            try:
                event = normalize_event(item, fallback_id)
            except ValidationError as exc:
                LOGGER.warning("Dropping webhook event: %s", exc)
                result.rejected.append(str(exc))
                continue
            if self._recorder.record(event) is RecordOutcome.INSERTED:
                result.inserted += 1
                result.inserted_types.add(event.event_type)
            else:
                result.duplicates += 1
        LOGGER.info(
            "Processed webhook: %d inserted, %d duplicate, %d rejected",
            result.inserted, result.duplicates, len(result.rejected),
        )
        return result


__all__ = [
    "PROVIDER_EVENT_TYPES",
    "compute_signature",
    "verify_signature",
    "map_event_type",
    "normalize_event",
    "content_dedup_key",
    "parse_body",
    "WebhookResult",
    "WebhookReceiver",
]
