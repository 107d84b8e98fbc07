"""
Booking creation: payment intent first, provisional booking second.

The two steps are not one transaction. A gateway failure leaves nothing
behind; a store failure after the gateway succeeded leaves an orphaned
intent at the provider, which is logged as ``orphaned_payment_intent`` and
not compensated.
"""
import secrets
import time
from dataclasses import dataclass
from decimal import Decimal

import structlog
from sqlalchemy.exc import SQLAlchemyError

from travel_booking import errors
from travel_booking.gateway import PaymentGateway
from travel_booking.models import Booking, BookingStatus
from travel_booking.schemas import BookingRequest
from travel_booking.store import BookingStore

logger = structlog.get_logger(__name__)

REQUIRED_FIELDS = ["package_id", "customer_name", "customer_email", "travel_date", "total_amount"]


@dataclass(frozen=True)
class BookingCreated:
    booking_id: int
    payment_intent_id: str
    client_secret: str
    merchant_order_id: str
    amount: Decimal
    currency: str


def generate_merchant_order_id(package_id: int) -> str:
    return f"FT-{package_id}-{int(time.time() * 1000)}-{secrets.token_hex(5)}"


class IntentOrchestrator:
    def __init__(self, store: BookingStore, gateway: PaymentGateway, currency: str = "SGD"):
        self.store = store
        self.gateway = gateway
        self.currency = currency

    def create_booking(self, request: BookingRequest, user_id: int = 0) -> BookingCreated:
        amount = self._validate(request)
        merchant_order_id = request.merchant_order_id or generate_merchant_order_id(request.package_id)

        if self.store.merchant_order_exists(merchant_order_id):
            logger.warning("duplicate_merchant_order_rejected", merchant_order_id=merchant_order_id)
            raise errors.DuplicateOrderError(merchant_order_id)

        total_pax = request.adults + request.children + request.infants
        intent = self.gateway.create_intent(
            amount,
            self.currency,
            metadata={
                "package_id": request.package_id,
                "customer_name": request.customer_name,
                "customer_email": request.customer_email,
                "travel_date": request.travel_date.isoformat(),
                "adults": request.adults,
                "children": request.children,
                "infants": request.infants,
                "total_pax": total_pax,
                "special_requests": request.special_requests or "",
                "merchant_order_id": merchant_order_id,
                "booking_type": "travel_package",
            },
            idempotency_key=merchant_order_id,
        )

        booking = Booking(
            payment_intent_id=intent.id,
            merchant_order_id=merchant_order_id,
            amount=amount,
            currency=self.currency,
            status=BookingStatus.PENDING.value,
            payment_status=intent.status,
            package_id=request.package_id,
            user_id=user_id,
            customer_name=request.customer_name.strip(),
            customer_email=request.customer_email.strip(),
            customer_phone=request.customer_phone or "",
            travel_date=request.travel_date,
            adults=request.adults,
            children=request.children,
            infants=request.infants,
            special_requests=request.special_requests or "",
            passenger_details=request.passenger_details,
            contact_details=request.contact_details,
        )

        try:
            booking_id = self.store.insert_provisional(booking)
        except errors.DuplicateOrderError:
            # concurrent request with the same token won the insert; the
            # provider deduplicated the intent on the same idempotency key
            logger.warning(
                "duplicate_merchant_order_race",
                merchant_order_id=merchant_order_id,
                payment_intent_id=intent.id,
            )
            raise
        except SQLAlchemyError as exc:
            logger.error(
                "orphaned_payment_intent",
                payment_intent_id=intent.id,
                merchant_order_id=merchant_order_id,
                amount=str(amount),
                currency=self.currency,
                error=str(exc),
            )
            raise errors.PersistenceError(
                "Payment intent was created but the booking could not be saved.",
                payment_intent_id=intent.id,
            ) from exc

        logger.info(
            "booking_created",
            booking_id=booking_id,
            payment_intent_id=intent.id,
            merchant_order_id=merchant_order_id,
            amount=str(amount),
            currency=self.currency,
        )
        return BookingCreated(
            booking_id=booking_id,
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            merchant_order_id=merchant_order_id,
            amount=amount,
            currency=self.currency,
        )

    @staticmethod
    def _validate(request: BookingRequest) -> Decimal:
        missing = []
        for field in REQUIRED_FIELDS:
            value = getattr(request, field)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(field)
        if missing:
            raise errors.ValidationError("Missing required fields", required=REQUIRED_FIELDS)

        if "@" not in request.customer_email:
            raise errors.ValidationError("Invalid customer_email")

        amount = Decimal(request.total_amount).quantize(Decimal("0.01"))
        if amount <= 0:
            raise errors.ValidationError("Amount must be a positive number")
        return amount
