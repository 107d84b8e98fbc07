import json


def create_booking(client, **overrides):
    payload = {
        "package_id": 17,
        "customer_name": "Aiko Tan",
        "customer_email": "aiko@example.com",
        "travel_date": "2026-12-20",
        "adults": 2,
        "total_amount": "250.00",
    }
    payload.update(overrides)
    response = client.post("/payments/intents", json=payload)
    assert response.status_code == 200
    return response.json()


def send_event(client, sign, name, intent):
    body = json.dumps({"name": name, "data": {"object": intent}}).encode()
    return client.post("/webhooks/provider", content=body, headers=sign(body))


def test_booking_confirmed_by_webhook(signed_client, store, sign):
    """
    1. Create booking for 250.00 SGD -> provider intent pi_1
    2. One pending booking tagged pi_1
    3. Signed payment_intent.succeeded webhook confirms it
    """
    created = create_booking(signed_client)
    assert created["payment_intent_id"] == "pi_1"
    assert created["currency"] == "SGD"

    bookings = store.list_bookings(customer_email="aiko@example.com")
    assert len(bookings) == 1
    assert bookings[0].payment_intent_id == "pi_1"
    assert bookings[0].status == "pending"

    response = send_event(signed_client, sign, "payment_intent.succeeded", {"id": "pi_1"})
    assert response.status_code == 200
    assert response.json() == {"received": True}

    booking = store.find_by_payment_intent_id("pi_1")
    assert booking.status == "confirmed"
    assert booking.payment_status == "succeeded"


def test_booking_cancelled_by_failed_payment_webhook(signed_client, store, sign):
    create_booking(signed_client)
    created = create_booking(signed_client, customer_email="ren@example.com")
    assert created["payment_intent_id"] == "pi_2"

    send_event(
        signed_client, sign, "payment_intent.payment_failed",
        {"id": "pi_2", "latest_payment_error": {"message": "card declined"}},
    )

    booking = store.find_by_payment_intent_id("pi_2")
    assert booking.status == "cancelled"
    assert booking.payment_failure_reason == "card declined"
    assert store.find_by_payment_intent_id("pi_1").status == "pending"


def test_wrong_signature_has_no_side_effect(signed_client, store, sign):
    create_booking(signed_client)
    body = json.dumps({"name": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}}}).encode()
    headers = sign(b"some other body")

    response = signed_client.post("/webhooks/provider", content=body, headers=headers)

    assert response.status_code == 400
    booking = store.find_by_payment_intent_id("pi_1")
    assert booking.status == "pending"
    assert booking.payment_status == "requires_payment_method"


def test_webhook_for_unknown_intent_is_acknowledged(signed_client, store, sign):
    response = send_event(signed_client, sign, "payment_intent.succeeded", {"id": "pi_unknown"})

    assert response.status_code == 200
    assert store.find_by_payment_intent_id("pi_unknown") is None


def test_poll_and_webhook_agree(signed_client, gateway, store, sign):
    create_booking(signed_client)
    gateway.set_status("pi_1", "succeeded")

    polled = signed_client.post("/payments/confirm", json={"payment_intent_id": "pi_1"})
    send_event(signed_client, sign, "payment_intent.succeeded", {"id": "pi_1"})

    assert polled.json()["status"] == "confirmed"
    assert store.find_by_payment_intent_id("pi_1").status == "confirmed"


def test_late_cancel_webhook_cannot_undo_confirmation(signed_client, gateway, store, sign):
    create_booking(signed_client)
    send_event(signed_client, sign, "payment_intent.succeeded", {"id": "pi_1"})

    send_event(signed_client, sign, "payment_intent.cancelled", {"id": "pi_1"})

    booking = store.find_by_payment_intent_id("pi_1")
    assert booking.status == "confirmed"
    assert booking.payment_status == "cancelled"

    gateway.set_status("pi_1", "succeeded")
    polled = signed_client.post("/payments/confirm", json={"payment_intent_id": "pi_1"})
    assert polled.json()["status"] == "confirmed"


def test_requires_capture_webhook_leaves_booking_pending(signed_client, store, sign, mocker):
    capture_required = mocker.patch("travel_booking.notifications.LoggingNotifier.capture_required")
    create_booking(signed_client)

    response = send_event(signed_client, sign, "payment_intent.requires_capture", {"id": "pi_1"})

    assert response.status_code == 200
    booking = store.find_by_payment_intent_id("pi_1")
    assert booking.status == "pending"
    assert booking.payment_status == "requires_capture"
    capture_required.assert_called_once()
