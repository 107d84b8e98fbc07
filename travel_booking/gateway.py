from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional, Protocol

import stripe
import structlog

from travel_booking.errors import GatewayUnavailableError

logger = structlog.get_logger(__name__)

# provider spelling -> the raw statuses the reconciliation table is keyed on
_STATUS_ALIASES = {
    "canceled": "cancelled",
    "requires_action": "requires_customer_action",
}


def normalize_status(raw_status: str) -> str:
    return _STATUS_ALIASES.get(raw_status, raw_status)


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


@dataclass(frozen=True)
class Intent:
    id: str
    status: str
    amount: Decimal
    currency: str
    client_secret: Optional[str] = None
    failure_message: Optional[str] = None
    created_at: Optional[datetime] = None


class PaymentGateway(Protocol):
    def create_intent(
        self, amount: Decimal, currency: str, metadata: Dict[str, str], idempotency_key: str
    ) -> Intent:
        ...

    def get_intent(self, intent_id: str) -> Intent:
        ...


class StripeGateway:
    """Payment intents on Stripe. Every SDK failure surfaces as GatewayUnavailableError."""

    def __init__(self, api_key: Optional[str], timeout: int = 10, max_retries: int = 0):
        stripe.api_key = api_key
        stripe.max_network_retries = max_retries
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    def create_intent(
        self, amount: Decimal, currency: str, metadata: Dict[str, str], idempotency_key: str
    ) -> Intent:
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=currency.lower(),
                automatic_payment_methods={"enabled": True},
                metadata={key: str(value) for key, value in metadata.items()},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            logger.error(
                "gateway_create_intent_failed",
                merchant_order_id=idempotency_key,
                error=str(exc),
                code=getattr(exc, "code", None),
            )
            raise GatewayUnavailableError(
                "Unable to connect to payment provider. Please try again later.",
                code=getattr(exc, "code", None),
            ) from exc

        logger.info("gateway_intent_created", payment_intent_id=intent.id, status=intent.status)
        return self._to_intent(intent)

    def get_intent(self, intent_id: str) -> Intent:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id)
        except stripe.StripeError as exc:
            logger.error(
                "gateway_get_intent_failed",
                payment_intent_id=intent_id,
                error=str(exc),
                code=getattr(exc, "code", None),
            )
            raise GatewayUnavailableError(
                "Unable to verify payment status. Please try again later.",
                code=getattr(exc, "code", None),
            ) from exc
        return self._to_intent(intent)

    @staticmethod
    def _to_intent(intent) -> Intent:
        last_error = getattr(intent, "last_payment_error", None)
        created = getattr(intent, "created", None)
        return Intent(
            id=intent.id,
            status=normalize_status(intent.status),
            amount=from_minor_units(intent.amount),
            currency=str(intent.currency).upper(),
            client_secret=getattr(intent, "client_secret", None),
            failure_message=getattr(last_error, "message", None) if last_error else None,
            created_at=datetime.fromtimestamp(created, tz=timezone.utc) if isinstance(created, int) else None,
        )
