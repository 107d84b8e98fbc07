from typing import List, Optional


class BookingError(Exception):
    """Base class for errors raised by the booking payment flow."""


class ValidationError(BookingError):
    """Bad input. Raised before any network call or write."""

    def __init__(self, message: str, required: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.required = required or []


class DuplicateOrderError(BookingError):
    def __init__(self, merchant_order_id: str):
        super().__init__(f"Order {merchant_order_id} already exists")
        self.merchant_order_id = merchant_order_id


class GatewayUnavailableError(BookingError):
    """The payment provider could not be reached or answered with an error."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class BookingNotFound(BookingError):
    def __init__(self, payment_intent_id: str):
        super().__init__(f"No booking found for payment intent {payment_intent_id}")
        self.payment_intent_id = payment_intent_id


class InvalidSignatureError(BookingError):
    pass


class PersistenceError(BookingError):
    """The local booking write failed after the provider created an intent."""

    def __init__(self, message: str, payment_intent_id: Optional[str] = None):
        super().__init__(message)
        self.payment_intent_id = payment_intent_id


class PaymentIncompleteError(BookingError):
    def __init__(self, payment_intent_id: str, payment_status: str, booking_id: Optional[int] = None):
        super().__init__("Payment has not been completed yet.")
        self.payment_intent_id = payment_intent_id
        self.payment_status = payment_status
        self.booking_id = booking_id


class PaymentFailedError(BookingError):
    def __init__(self, payment_intent_id: str, payment_status: str, booking_id: Optional[int] = None,
                 reason: Optional[str] = None):
        super().__init__("Payment was cancelled or failed.")
        self.payment_intent_id = payment_intent_id
        self.payment_status = payment_status
        self.booking_id = booking_id
        self.reason = reason
