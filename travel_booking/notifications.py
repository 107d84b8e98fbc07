from typing import Protocol

import structlog

from travel_booking.models import Booking

logger = structlog.get_logger(__name__)


class BookingNotifier(Protocol):
    def booking_confirmed(self, booking: Booking) -> None:
        ...

    def payment_failed(self, booking: Booking, reason: str) -> None:
        ...

    def capture_required(self, booking: Booking) -> None:
        ...


class LoggingNotifier:
    """Default notifier: records what would be sent. Email delivery lives elsewhere."""

    def booking_confirmed(self, booking: Booking) -> None:
        logger.info(
            "notify_booking_confirmed",
            booking_id=booking.id,
            order_number=booking.order_number,
            customer_email=booking.customer_email,
        )

    def payment_failed(self, booking: Booking, reason: str) -> None:
        logger.info(
            "notify_payment_failed",
            booking_id=booking.id,
            customer_email=booking.customer_email,
            reason=reason,
        )

    def capture_required(self, booking: Booking) -> None:
        logger.info(
            "notify_admin_capture_required",
            booking_id=booking.id,
            payment_intent_id=booking.payment_intent_id,
        )
