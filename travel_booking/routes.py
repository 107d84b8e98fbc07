from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool

from travel_booking.auth import current_user_id
from travel_booking.confirmation import ConfirmationService, raise_for_outcome
from travel_booking.models import Booking, BookingStatus
from travel_booking.orchestrator import IntentOrchestrator
from travel_booking.schemas import BookingRequest, ConfirmRequest
from travel_booking.store import BookingStore
from travel_booking.webhooks import WebhookIngress

router = APIRouter()


def get_orchestrator(request: Request) -> IntentOrchestrator:
    return request.app.state.orchestrator


def get_confirmation(request: Request) -> ConfirmationService:
    return request.app.state.confirmation


def get_ingress(request: Request) -> WebhookIngress:
    return request.app.state.ingress


def get_store(request: Request) -> BookingStore:
    return request.app.state.store


def booking_summary(booking: Booking) -> dict:
    return {
        "id": booking.id,
        "order_number": booking.order_number,
        "package_id": booking.package_id,
        "customer_name": booking.customer_name,
        "customer_email": booking.customer_email,
        "travel_date": booking.travel_date.isoformat() if booking.travel_date else None,
        "price": f"{booking.amount:.2f}",
        "currency": booking.currency,
        "pax": (booking.adults or 0) + (booking.children or 0) + (booking.infants or 0),
        "status": booking.status,
        "payment_status": booking.payment_status,
        "created_at": booking.created_at.isoformat() if booking.created_at else None,
        "updated_at": booking.updated_at.isoformat() if booking.updated_at else None,
    }


@router.post("/payments/intents")
def create_payment_intent(
    body: BookingRequest,
    user_id: int = Depends(current_user_id),
    orchestrator: IntentOrchestrator = Depends(get_orchestrator),
):
    created = orchestrator.create_booking(body, user_id=user_id)
    return {
        "success": True,
        "client_secret": created.client_secret,
        "payment_intent_id": created.payment_intent_id,
        "booking_id": created.booking_id,
        "merchant_order_id": created.merchant_order_id,
        "amount": float(created.amount),
        "currency": created.currency,
    }


@router.post("/payments/confirm")
def confirm_payment(
    body: ConfirmRequest,
    confirmation: ConfirmationService = Depends(get_confirmation),
):
    result = raise_for_outcome(confirmation.confirm(body.payment_intent_id))
    return {
        "success": True,
        "status": result.status.value,
        "booking_id": result.booking_id,
        "payment_intent_id": result.payment_intent_id,
        "payment_status": result.payment_status,
    }


@router.get("/payments/{payment_intent_id}/status")
def payment_status(
    payment_intent_id: str,
    confirmation: ConfirmationService = Depends(get_confirmation),
):
    return {"success": True, **confirmation.status(payment_intent_id)}


@router.post("/webhooks/provider")
async def provider_webhook(
    request: Request,
    x_signature: Optional[str] = Header(None),
    x_timestamp: Optional[str] = Header(None),
    ingress: WebhookIngress = Depends(get_ingress),
):
    payload = await request.body()
    ack = await run_in_threadpool(ingress.handle_event, payload, x_signature, x_timestamp)
    return {"received": ack.received}


@router.get("/bookings")
def list_bookings(
    user_email: Optional[str] = None,
    status: str = "all",
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(current_user_id),
    store: BookingStore = Depends(get_store),
):
    if not user_id and not user_email:
        raise HTTPException(
            status_code=400,
            detail="User identification required: send a bearer token or user_email",
        )

    status_filter = None
    if status != "all":
        try:
            status_filter = BookingStatus(status.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown status {status!r}")

    bookings = store.list_bookings(
        user_id=user_id or None,
        customer_email=user_email,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
    return {
        "success": True,
        "count": len(bookings),
        "bookings": [booking_summary(b) for b in bookings],
    }
