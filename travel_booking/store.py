"""
Booking persistence.

The store owns its engine: ``open()`` creates the schema and the session
factory, ``close()`` disposes of the connection pool. Nothing is created at
import time, so every process (and every test) decides which database it
talks to.
"""
from typing import List, Optional

import structlog
from sqlalchemy import case, literal, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from travel_booking.database import Base, make_engine, make_session_factory
from travel_booking.errors import DuplicateOrderError
from travel_booking.models import Booking, BookingStatus, utcnow

logger = structlog.get_logger(__name__)


class BookingStore:
    def __init__(self, database_url: str):
        self.database_url = database_url
        self._engine = None
        self._sessions = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> "BookingStore":
        if self.is_open:
            return self
        self._engine = make_engine(self.database_url)
        Base.metadata.create_all(bind=self._engine)
        self._sessions = make_session_factory(self._engine)
        logger.info("booking_store_opened", dialect=self._engine.dialect.name)
        return self

    def close(self) -> None:
        if not self.is_open:
            return
        self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info("booking_store_closed")

    def __enter__(self) -> "BookingStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def session(self) -> Session:
        if not self.is_open:
            raise RuntimeError("BookingStore is not open")
        return self._sessions()

    def insert_provisional(self, booking: Booking) -> int:
        """Persist a new booking and return its id.

        Raises DuplicateOrderError if the merchant order id is already taken.
        """
        with self.session() as db:
            db.add(booking)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                if self.merchant_order_exists(booking.merchant_order_id):
                    raise DuplicateOrderError(booking.merchant_order_id) from exc
                raise
            return booking.id

    def merchant_order_exists(self, merchant_order_id: str) -> bool:
        with self.session() as db:
            found = db.scalar(
                select(Booking.id).where(Booking.merchant_order_id == merchant_order_id)
            )
            return found is not None

    def find_by_payment_intent_id(self, payment_intent_id: str) -> Optional[Booking]:
        with self.session() as db:
            return db.scalars(
                select(Booking).where(Booking.payment_intent_id == payment_intent_id)
            ).first()

    def find_by_id(self, booking_id: int) -> Optional[Booking]:
        with self.session() as db:
            return db.get(Booking, booking_id)

    def apply_status_update(
        self,
        payment_intent_id: str,
        new_status: Optional[BookingStatus],
        raw_payment_status: str,
        failure_reason: Optional[str] = None,
    ) -> int:
        """Stamp the raw provider status and, for pending rows only, move the domain status.

        One UPDATE statement: a booking that is already confirmed or cancelled
        only gets ``payment_status`` and ``updated_at`` rewritten. Returns the
        number of matched rows (0 when the intent is unknown).
        """
        now = utcnow()
        assignments = [
            (Booking.payment_status, raw_payment_status),
            (Booking.updated_at, now),
        ]

        if new_status is not None:
            # every CASE below reads the pre-update status; keep `status` last
            # so left-to-right evaluating backends (MySQL) see it too
            still_pending = Booking.status == BookingStatus.PENDING.value
            if new_status is BookingStatus.CONFIRMED:
                assignments.append((
                    Booking.payment_confirmed_at,
                    case(
                        (still_pending, literal(now, Booking.payment_confirmed_at.type)),
                        else_=Booking.payment_confirmed_at,
                    ),
                ))
            if failure_reason is not None:
                assignments.append((
                    Booking.payment_failure_reason,
                    case(
                        (still_pending, literal(failure_reason, Booking.payment_failure_reason.type)),
                        else_=Booking.payment_failure_reason,
                    ),
                ))
            assignments.append((
                Booking.status,
                case(
                    (still_pending, literal(new_status.value, Booking.status.type)),
                    else_=Booking.status,
                ),
            ))

        stmt = (
            update(Booking)
            .where(Booking.payment_intent_id == payment_intent_id)
            .ordered_values(*assignments)
            .execution_options(synchronize_session=False)
        )

        with self.session() as db:
            result = db.execute(stmt)
            db.commit()
            return result.rowcount

    def list_bookings(
        self,
        user_id: Optional[int] = None,
        customer_email: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Booking]:
        query = select(Booking)
        if user_id:
            query = query.where(Booking.user_id == user_id)
        elif customer_email:
            query = query.where(Booking.customer_email == customer_email)
        if status is not None:
            query = query.where(Booking.status == status.value)
        query = query.order_by(Booking.created_at.desc(), Booking.id.desc()).limit(limit).offset(offset)

        with self.session() as db:
            return list(db.scalars(query))
