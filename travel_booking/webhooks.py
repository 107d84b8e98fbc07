"""
Provider webhook ingress.

Signatures are HMAC-SHA256 (hex) over ``timestamp + raw body`` with the shared
webhook secret. When no secret is configured verification is skipped: this is
insecure and is logged on startup and on every event.

Once an event is verified and parsed it is always acknowledged. A failed
local write is left to the provider's redelivery.
"""
import hashlib
import hmac
import json
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from travel_booking import errors
from travel_booking.reconciliation import ReconciliationEngine

logger = structlog.get_logger(__name__)

EVENT_STATUSES = {
    "payment_intent.succeeded": "succeeded",
    "payment_intent.payment_failed": "failed",
    "payment_intent.cancelled": "cancelled",
    "payment_intent.canceled": "cancelled",
    "payment_intent.requires_capture": "requires_capture",
}


def compute_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), timestamp.encode("utf-8") + raw_body, hashlib.sha256).hexdigest()


def _timestamp_seconds(timestamp: str) -> float:
    value = float(timestamp)
    if not math.isfinite(value):
        raise ValueError(f"non-finite timestamp {timestamp!r}")
    # millisecond epochs are accepted too
    return value / 1000 if value > 1e11 else value


def _failure_message(intent: Dict[str, Any]) -> Optional[str]:
    for key in ("latest_payment_error", "last_payment_error"):
        error = intent.get(key)
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
    return None


@dataclass(frozen=True)
class Ack:
    event: Optional[str]
    handled: bool
    received: bool = True


class WebhookIngress:
    def __init__(
        self,
        engine: ReconciliationEngine,
        secret: Optional[str] = None,
        tolerance_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ):
        self.engine = engine
        self.secret = secret
        self.tolerance_seconds = tolerance_seconds
        self.clock = clock
        if not secret:
            logger.warning("webhook_signature_verification_disabled", reason="WEBHOOK_SECRET not set")

    def verify(self, raw_body: bytes, signature: Optional[str], timestamp: Optional[str]) -> None:
        if not self.secret:
            logger.warning("webhook_accepted_unsigned")
            return

        if not signature or not timestamp:
            logger.error("webhook_signature_missing", has_signature=bool(signature), has_timestamp=bool(timestamp))
            raise errors.InvalidSignatureError("Missing signature headers")

        expected = compute_signature(self.secret, timestamp, raw_body)
        if not hmac.compare_digest(expected.encode("utf-8"), signature.strip().lower().encode("utf-8")):
            logger.error("webhook_signature_invalid")
            raise errors.InvalidSignatureError("Invalid signature")

        if self.tolerance_seconds:
            try:
                sent_at = _timestamp_seconds(timestamp)
            except ValueError:
                raise errors.InvalidSignatureError("Invalid timestamp")
            if abs(self.clock() - sent_at) > self.tolerance_seconds:
                logger.error("webhook_timestamp_outside_tolerance", timestamp=timestamp)
                raise errors.InvalidSignatureError("Timestamp outside the tolerance zone")

    def handle_event(self, raw_body: bytes, signature_header: Optional[str], timestamp_header: Optional[str]) -> Ack:
        self.verify(raw_body, signature_header, timestamp_header)

        try:
            event = json.loads(raw_body)
        except ValueError:
            raise errors.ValidationError("Invalid payload")
        if not isinstance(event, dict):
            raise errors.ValidationError("Invalid payload")

        name = event.get("name") or event.get("type")
        if name is not None and not isinstance(name, str):
            raise errors.ValidationError("Invalid payload")
        data = event.get("data") if isinstance(event.get("data"), dict) else {}
        intent = data.get("object") if isinstance(data.get("object"), dict) else {}

        raw_status = EVENT_STATUSES.get(name)
        if raw_status is None:
            logger.info("webhook_event_ignored", event_name=name, payment_intent_id=intent.get("id"))
            return Ack(event=name, handled=False)

        intent_id = intent.get("id")
        if not intent_id or not isinstance(intent_id, str):
            raise errors.ValidationError("Missing payment intent id")

        logger.info("webhook_event_received", event_name=name, payment_intent_id=intent_id)
        try:
            self.engine.reconcile(intent_id, raw_status, _failure_message(intent))
        except errors.BookingNotFound:
            # logged by the engine; acknowledged so the provider does not retry-storm
            return Ack(event=name, handled=False)
        except SQLAlchemyError as exc:
            logger.error(
                "webhook_reconciliation_write_failed",
                event_name=name,
                payment_intent_id=intent_id,
                error=str(exc),
            )
            return Ack(event=name, handled=False)

        return Ack(event=name, handled=True)
