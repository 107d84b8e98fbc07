import enum
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, Date, DateTime, Integer, Numeric, String, Text

from travel_booking.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not BookingStatus.PENDING


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_intent_id = Column(String(64), unique=True, index=True, nullable=False)
    merchant_order_id = Column(String(128), unique=True, index=True, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    status = Column(String(16), nullable=False, default=BookingStatus.PENDING.value)   # pending | confirmed | cancelled
    payment_status = Column(String(64))                                                # raw provider status
    payment_failure_reason = Column(Text)
    payment_confirmed_at = Column(DateTime(timezone=True))

    package_id = Column(Integer, nullable=False)
    user_id = Column(Integer, nullable=False, default=0)                               # 0 = guest
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), index=True, nullable=False)
    customer_phone = Column(String(64))
    travel_date = Column(Date, nullable=False)
    adults = Column(Integer, default=0)
    children = Column(Integer, default=0)
    infants = Column(Integer, default=0)
    special_requests = Column(Text)
    passenger_details = Column(JSON)
    contact_details = Column(JSON)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def domain_status(self) -> BookingStatus:
        return BookingStatus(self.status)

    @property
    def order_number(self) -> str:
        return f"FT{self.id:06d}"

    def __repr__(self) -> str:
        return f"<Booking id={self.id} intent={self.payment_intent_id} status={self.status}>"
