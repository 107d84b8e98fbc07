import uuid
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from travel_booking import errors
from travel_booking.config import Settings
from travel_booking.confirmation import ConfirmationService
from travel_booking.gateway import PaymentGateway, StripeGateway
from travel_booking.logging_config import setup_logging
from travel_booking.notifications import BookingNotifier
from travel_booking.orchestrator import IntentOrchestrator
from travel_booking.reconciliation import ReconciliationEngine
from travel_booking.routes import router
from travel_booking.store import BookingStore
from travel_booking.webhooks import WebhookIngress

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[BookingStore] = None,
    gateway: Optional[PaymentGateway] = None,
    notifier: Optional[BookingNotifier] = None,
) -> FastAPI:
    """Wire the booking payment service.

    A store passed in is owned by the caller and left open on shutdown; a
    store built here from ``settings.database_url`` is closed with the app.
    """
    settings = settings or Settings.from_env()
    setup_logging(settings)

    owns_store = store is None
    store = store or BookingStore(settings.database_url)
    gateway = gateway or StripeGateway(
        settings.stripe_secret_key,
        timeout=settings.gateway_timeout_seconds,
        max_retries=settings.gateway_max_retries,
    )
    engine = ReconciliationEngine(store, notifier)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.open()
        logger.info("application_startup", currency=settings.payment_currency,
                    webhook_signing=bool(settings.webhook_secret))
        yield
        if owns_store:
            store.close()
        logger.info("application_shutdown")

    app = FastAPI(title="Travel Booking Payment Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.orchestrator = IntentOrchestrator(store, gateway, currency=settings.payment_currency)
    app.state.confirmation = ConfirmationService(store, gateway, engine)
    app.state.ingress = WebhookIngress(
        engine,
        secret=settings.webhook_secret,
        tolerance_seconds=settings.webhook_tolerance_seconds,
    )

    app.include_router(router)
    register_error_handlers(app)

    @app.middleware("http")
    async def bind_request_id(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(
            request_id=request_id, method=request.method, path=request.url.path
        )
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    return app


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        fields = []
        for error in exc.errors():
            loc = [str(part) for part in error.get("loc", ()) if part != "body"]
            fields.append({"field": ".".join(loc), "message": error.get("msg", "")})
        return JSONResponse(status_code=400, content={
            "error": "Invalid request",
            "message": "; ".join(f"{f['field']}: {f['message']}" for f in fields),
            "fields": fields,
        })

    @app.exception_handler(errors.ValidationError)
    async def validation_error(request: Request, exc: errors.ValidationError):
        content = {"error": exc.message}
        if exc.required:
            content["required"] = exc.required
        return JSONResponse(status_code=400, content=content)

    @app.exception_handler(errors.InvalidSignatureError)
    async def invalid_signature(request: Request, exc: errors.InvalidSignatureError):
        return JSONResponse(status_code=400, content={"error": "Invalid signature", "message": str(exc)})

    @app.exception_handler(errors.PaymentIncompleteError)
    async def payment_incomplete(request: Request, exc: errors.PaymentIncompleteError):
        return JSONResponse(status_code=400, content={
            "error": "Payment incomplete",
            "message": str(exc),
            "status": exc.payment_status,
            "payment_intent_id": exc.payment_intent_id,
            "booking_id": exc.booking_id,
        })

    @app.exception_handler(errors.PaymentFailedError)
    async def payment_failed(request: Request, exc: errors.PaymentFailedError):
        return JSONResponse(status_code=400, content={
            "error": "Payment failed",
            "message": str(exc),
            "status": exc.payment_status,
            "reason": exc.reason,
            "payment_intent_id": exc.payment_intent_id,
            "booking_id": exc.booking_id,
        })

    @app.exception_handler(errors.BookingNotFound)
    async def booking_not_found(request: Request, exc: errors.BookingNotFound):
        return JSONResponse(status_code=404, content={
            "error": "Booking not found",
            "payment_intent_id": exc.payment_intent_id,
        })

    @app.exception_handler(errors.DuplicateOrderError)
    async def duplicate_order(request: Request, exc: errors.DuplicateOrderError):
        return JSONResponse(status_code=409, content={
            "error": "Duplicate order",
            "merchant_order_id": exc.merchant_order_id,
        })

    @app.exception_handler(errors.PersistenceError)
    async def persistence_error(request: Request, exc: errors.PersistenceError):
        return JSONResponse(status_code=500, content={
            "error": "Booking could not be saved",
            "message": "Please contact support before retrying the payment.",
            "payment_intent_id": exc.payment_intent_id,
        })

    @app.exception_handler(errors.GatewayUnavailableError)
    async def gateway_unavailable(request: Request, exc: errors.GatewayUnavailableError):
        return JSONResponse(status_code=502, content={
            "error": "Payment service unavailable",
            "message": exc.message,
            "code": exc.code or "PAYMENT_SERVICE_ERROR",
        })

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        logger.error("unhandled_exception", error=str(exc), error_type=type(exc).__name__,
                     path=request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
