from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from travel_booking import errors
from travel_booking.gateway import PaymentGateway
from travel_booking.models import BookingStatus
from travel_booking.reconciliation import Outcome, ReconciliationEngine
from travel_booking.store import BookingStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ConfirmationResult:
    booking_id: int
    payment_intent_id: str
    status: BookingStatus
    payment_status: str
    outcome: Outcome
    failure_reason: Optional[str] = None


class ConfirmationService:
    """Client-driven confirmation: ask the provider, then reconcile like the webhook does."""

    def __init__(self, store: BookingStore, gateway: PaymentGateway, engine: ReconciliationEngine):
        self.store = store
        self.gateway = gateway
        self.engine = engine

    def confirm(self, payment_intent_id: str) -> ConfirmationResult:
        intent = self.gateway.get_intent(payment_intent_id)
        logger.info("confirmation_intent_fetched", payment_intent_id=intent.id, payment_status=intent.status)

        result = self.engine.reconcile(intent.id, intent.status, intent.failure_message)
        return ConfirmationResult(
            booking_id=result.booking_id,
            payment_intent_id=result.payment_intent_id,
            status=result.status,
            payment_status=result.payment_status,
            outcome=result.outcome,
            failure_reason=result.failure_reason,
        )

    def status(self, payment_intent_id: str) -> Dict[str, Any]:
        """Current provider view of the intent next to the local booking. Writes nothing."""
        intent = self.gateway.get_intent(payment_intent_id)
        booking = self.store.find_by_payment_intent_id(payment_intent_id)
        return {
            "payment_intent": {
                "id": intent.id,
                "status": intent.status,
                "amount": str(intent.amount),
                "currency": intent.currency,
                "created_at": intent.created_at.isoformat() if intent.created_at else None,
            },
            "booking": None if booking is None else {
                "id": booking.id,
                "order_number": booking.order_number,
                "status": booking.status,
                "payment_status": booking.payment_status,
            },
        }


def raise_for_outcome(result: ConfirmationResult) -> ConfirmationResult:
    """Turn a confirmation that left the customer without a booking into an error."""
    if result.outcome is Outcome.INCOMPLETE:
        raise errors.PaymentIncompleteError(result.payment_intent_id, result.payment_status, result.booking_id)
    if result.outcome is Outcome.CANCELLED:
        raise errors.PaymentFailedError(
            result.payment_intent_id, result.payment_status, result.booking_id, reason=result.failure_reason
        )
    return result
