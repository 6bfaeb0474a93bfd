"""Test the HTTP layer: headers, roles, error bodies, webhooks and exports."""
import json
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from api.main import app
from conftest import CUSTOMER_ID, SALON_ID, STAFF_ID, make_event
from core.csv_export import BOM
from core.database import get_session
from verticals.salon.notifications import get_notifier
from verticals.salon.payments import get_payment_gateway

CUSTOMER = {"X-Salon-ID": str(SALON_ID), "X-Customer-ID": str(CUSTOMER_ID)}
STAFF = {"X-Salon-ID": str(SALON_ID), "X-Actor-Role": "staff"}
ADMIN = {"X-Salon-ID": str(SALON_ID), "X-Actor-Role": "admin"}


@pytest_asyncio.fixture
async def client(session, gateway, notifier):
    async def override_session():
        yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def _future_slot():
    """10:00 UTC two days from now; inside lead time and horizon."""
    day = datetime.now(timezone.utc) + timedelta(days=2)
    return day.replace(hour=10, minute=0, second=0, microsecond=0)


def _order_body(seed, **overrides):
    body = {
        "items": [{"product_id": str(seed.shampoo_id), "quantity": 2}],
        "customer_name": "Anna Muster",
        "customer_email": "anna@example.ch",
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_salon_header_is_required(client):
    response = await client.get("/api/salon/loyalty")
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert "X-Salon-ID" in body["field_errors"]


@pytest.mark.asyncio
async def test_unknown_role_is_rejected(client):
    response = await client.get("/api/salon/loyalty", headers={**CUSTOMER, "X-Actor-Role": "owner"})
    assert response.status_code == 400
    assert "X-Actor-Role" in response.json()["field_errors"]


@pytest.mark.asyncio
async def test_staff_routes_reject_customers(client, seed):
    response = await client.get("/api/salon/orders", headers=CUSTOMER)
    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"

    response = await client.post(
        f"/api/salon/products/{seed.shampoo_id}/stock", json={"new_level": 5}, headers=STAFF
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_invalid_body_lists_fields(client, seed):
    response = await client.post("/api/salon/orders", json=_order_body(seed, items=[]), headers=CUSTOMER)
    assert response.status_code == 422
    assert "items" in response.json()["field_errors"]


# -- booking --

@pytest.mark.asyncio
async def test_book_and_double_book(client, seed):
    body = {
        "staff_id": str(STAFF_ID),
        "service_ids": [str(seed.haircut_id)],
        "starts_at": _future_slot().isoformat(),
        "customer_name": "Anna Muster",
        "customer_email": "anna@example.ch",
    }

    created = await client.post("/api/salon/appointments", json=body, headers=CUSTOMER)
    assert created.status_code == 201
    assert created.json()["status"] == "confirmed"

    taken = await client.post("/api/salon/appointments", json=body, headers=CUSTOMER)
    assert taken.status_code == 409
    assert taken.json()["code"] == "BOOKING_SLOT_ALREADY_TAKEN"

    cancelled = await client.post(
        f"/api/salon/appointments/{created.json()['id']}/cancel", json={"reason": "Umgeplant"}, headers=STAFF
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["cancelled_by"] == "admin"


@pytest.mark.asyncio
async def test_slots(client, seed):
    day = _future_slot().date().isoformat()
    response = await client.get(
        "/api/salon/slots",
        params={"staff_id": str(STAFF_ID), "day": day, "service_ids": [str(seed.haircut_id)]},
        headers=CUSTOMER,
    )
    assert response.status_code == 200
    assert len(response.json()) == 38


# -- orders and webhooks --

@pytest.mark.asyncio
async def test_checkout_and_payment_webhook(client, seed, gateway):
    placed = await client.post("/api/salon/orders", json=_order_body(seed), headers=CUSTOMER)
    assert placed.status_code == 201
    order = placed.json()["order"]
    assert order["total"] == "58.70"
    assert placed.json()["client_secret"].startswith(order["payment_intent_id"])

    payload = json.dumps(
        make_event(
            "evt_api_1",
            "payment_intent.succeeded",
            {"id": order["payment_intent_id"], "status": "succeeded", "amount_received": 5870},
        )
    )
    first = await client.post(
        "/api/salon/webhooks/stripe", content=payload, headers={"Stripe-Signature": "valid"}
    )
    assert first.json() == {"received": True, "status": "processed", "action": "order_paid"}

    replay = await client.post(
        "/api/salon/webhooks/stripe", content=payload, headers={"Stripe-Signature": "valid"}
    )
    assert replay.json()["status"] == "already_processed"

    fetched = await client.get(f"/api/salon/orders/{order['id']}", headers=STAFF)
    assert fetched.json()["status"] == "paid"


@pytest.mark.asyncio
async def test_webhook_signature_is_checked(client):
    response = await client.post(
        "/api/salon/webhooks/stripe", content=b"{}", headers={"Stripe-Signature": "forged"}
    )
    assert response.status_code == 400
    assert response.json()["code"] == "PAYMENT_WEBHOOK_INVALID"


@pytest.mark.asyncio
async def test_refund_is_admin_only(client, seed):
    placed = await client.post(
        "/api/salon/orders", json=_order_body(seed, payment_method="invoice"), headers=CUSTOMER
    )
    order_id = placed.json()["order"]["id"]

    assert (await client.post(f"/api/salon/orders/{order_id}/refund", json={}, headers=STAFF)).status_code == 403

    not_paid = await client.post(f"/api/salon/orders/{order_id}/refund", json={}, headers=ADMIN)
    assert not_paid.status_code == 409
    assert not_paid.json()["code"] == "ORDER_NOT_PAID"


@pytest.mark.asyncio
async def test_list_orders_paginates(client, seed):
    for _ in range(3):
        await client.post("/api/salon/orders", json=_order_body(seed, items=[
            {"product_id": str(seed.shampoo_id), "quantity": 1}
        ]), headers=CUSTOMER)

    response = await client.get("/api/salon/orders", params={"limit": 2}, headers=STAFF)
    body = response.json()
    assert len(body["data"]) == 2
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "total_pages": 2}


# -- loyalty, stock, exports --

@pytest.mark.asyncio
async def test_loyalty_needs_customer(client):
    response = await client.get("/api/salon/loyalty", headers=STAFF)
    assert response.status_code == 400
    assert "X-Customer-ID" in response.json()["field_errors"]

    summary = await client.get("/api/salon/loyalty", headers=CUSTOMER)
    assert summary.json()["tier"]["id"] == "bronze"


@pytest.mark.asyncio
async def test_low_stock_and_adjustment(client, seed):
    low = await client.get("/api/salon/products/low-stock", headers=STAFF)
    assert low.json()["count"] == 1

    adjusted = await client.post(
        f"/api/salon/products/{seed.conditioner_id}/stock", json={"new_level": 12}, headers=ADMIN
    )
    assert adjusted.json()["stock_quantity"] == 12

    movements = await client.get(f"/api/salon/products/{seed.conditioner_id}/movements", headers=STAFF)
    [count] = [m for m in movements.json()["data"] if m["reference_type"] == "adjustment"]
    assert count["delta"] == 10


@pytest.mark.asyncio
async def test_order_export_is_csv(client, seed):
    await client.post("/api/salon/orders", json=_order_body(seed), headers=CUSTOMER)

    response = await client.get("/api/salon/exports/orders.csv", headers=ADMIN)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "bestellungen.csv" in response.headers["content-disposition"]
    lines = response.text.removeprefix(BOM).split("\n")
    assert lines[0].startswith("Bestellnummer;")
    assert len(lines) == 2
