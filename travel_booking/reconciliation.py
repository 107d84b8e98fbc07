"""
Reconciliation of local bookings against provider payment-intent statuses.

``TRANSITIONS`` is the only place that maps a raw provider status to a
booking status. The webhook ingress and the polling confirmation both go
through ``ReconciliationEngine.reconcile`` so the two delivery paths cannot
disagree.

Only ``pending`` bookings move. A confirmed or cancelled booking keeps its
status forever; later events just re-stamp ``payment_status`` for audit.
"""
import enum
from dataclasses import dataclass
from typing import Dict, Optional

import structlog

from travel_booking.errors import BookingNotFound
from travel_booking.gateway import normalize_status
from travel_booking.models import Booking, BookingStatus
from travel_booking.notifications import BookingNotifier, LoggingNotifier
from travel_booking.store import BookingStore

logger = structlog.get_logger(__name__)


class Outcome(str, enum.Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    INCOMPLETE = "incomplete"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Transition:
    target: Optional[BookingStatus]
    outcome: Outcome
    default_reason: Optional[str] = None
    provider_reason: bool = False

    def failure_reason(self, provider_message: Optional[str]) -> Optional[str]:
        if self.provider_reason and provider_message:
            return provider_message
        return self.default_reason


TRANSITIONS: Dict[str, Transition] = {
    "succeeded": Transition(BookingStatus.CONFIRMED, Outcome.CONFIRMED),
    # captured but not settled: callers decide what to do with it
    "requires_capture": Transition(None, Outcome.PENDING),
    "failed": Transition(BookingStatus.CANCELLED, Outcome.CANCELLED, "Payment failed", provider_reason=True),
    "cancelled": Transition(BookingStatus.CANCELLED, Outcome.CANCELLED, "payment cancelled"),
    "requires_payment_method": Transition(None, Outcome.INCOMPLETE),
    "requires_customer_action": Transition(None, Outcome.INCOMPLETE),
}

# processing, requires_confirmation and anything the provider adds later
AUDIT_ONLY = Transition(None, Outcome.PENDING)


def transition_for(raw_status: str) -> Transition:
    return TRANSITIONS.get(normalize_status(raw_status), AUDIT_ONLY)


@dataclass(frozen=True)
class ReconciliationResult:
    booking_id: int
    payment_intent_id: str
    status: BookingStatus
    payment_status: str
    outcome: Outcome
    changed: bool
    failure_reason: Optional[str] = None


class ReconciliationEngine:
    def __init__(self, store: BookingStore, notifier: Optional[BookingNotifier] = None):
        self.store = store
        self.notifier = notifier or LoggingNotifier()

    def reconcile(
        self, payment_intent_id: str, raw_status: str, failure_message: Optional[str] = None
    ) -> ReconciliationResult:
        """Apply one provider status to the booking tagged with ``payment_intent_id``.

        Raises BookingNotFound when no booking carries that intent id; the
        store is left untouched in that case.
        """
        raw_status = normalize_status(raw_status)
        transition = transition_for(raw_status)
        reason = transition.failure_reason(failure_message)

        before = self.store.find_by_payment_intent_id(payment_intent_id)
        affected = self.store.apply_status_update(
            payment_intent_id, transition.target, raw_status, failure_reason=reason
        )
        if affected == 0:
            logger.error(
                "reconciliation_booking_not_found",
                payment_intent_id=payment_intent_id,
                payment_status=raw_status,
            )
            raise BookingNotFound(payment_intent_id)

        after = self.store.find_by_payment_intent_id(payment_intent_id)
        status = after.domain_status
        # the row can appear between the read and the update (creation racing the webhook)
        previous_status = before.domain_status if before is not None else BookingStatus.PENDING
        previous_payment_status = before.payment_status if before is not None else None
        changed = status is not previous_status

        if transition.target is not None and previous_status.is_terminal and transition.target is not status:
            logger.warning(
                "terminal_status_preserved",
                booking_id=after.id,
                payment_intent_id=payment_intent_id,
                status=status.value,
                rejected_status=transition.target.value,
                payment_status=raw_status,
            )
        else:
            logger.info(
                "booking_reconciled",
                booking_id=after.id,
                payment_intent_id=payment_intent_id,
                status=status.value,
                payment_status=raw_status,
                changed=changed,
            )

        self._notify(after, previous_payment_status, raw_status, changed)

        if status is BookingStatus.CONFIRMED:
            outcome = Outcome.CONFIRMED
        elif status is BookingStatus.CANCELLED:
            outcome = Outcome.CANCELLED
        else:
            outcome = transition.outcome

        return ReconciliationResult(
            booking_id=after.id,
            payment_intent_id=payment_intent_id,
            status=status,
            payment_status=after.payment_status,
            outcome=outcome,
            changed=changed,
            failure_reason=after.payment_failure_reason,
        )

    def _notify(
        self, after: Booking, previous_payment_status: Optional[str], raw_status: str, changed: bool
    ) -> None:
        try:
            if changed and after.domain_status is BookingStatus.CONFIRMED:
                self.notifier.booking_confirmed(after)
            elif changed and after.domain_status is BookingStatus.CANCELLED:
                self.notifier.payment_failed(after, after.payment_failure_reason)
            elif (
                raw_status == "requires_capture"
                and after.domain_status is BookingStatus.PENDING
                and previous_payment_status != "requires_capture"
            ):
                self.notifier.capture_required(after)
        except Exception:
            # the row is already reconciled at this point
            logger.exception("booking_notification_failed", booking_id=after.id)
