"""Test the persisted stock ledger."""
import logging
from decimal import Decimal
from uuid import UUID

import pytest

from conftest import SALON_ID, fixed_clock, make_event
from core.errors import NotFoundError, ValidationError
from domain.order_states import OrderStatus, PaymentMethod
from verticals.salon.models.db_models import Order, Product
from verticals.salon.models.schemas import OrderCreate, OrderItemCreate, ProductCreate
from verticals.salon.services.order_service import OrderService
from verticals.salon.services.stock import InventoryService
from verticals.salon.services.webhook_service import WebhookService


@pytest.fixture
def inventory(session):
    return InventoryService(session)


@pytest.fixture
def orders(session, gateway):
    return OrderService(session, gateway, clock=fixed_clock)


def _cart(product_id, quantity, method=PaymentMethod.CARD):
    return OrderCreate(
        items=[OrderItemCreate(product_id=product_id, quantity=quantity)],
        customer_name="Anna Muster",
        customer_email="anna@example.ch",
        payment_method=method,
    )


async def _stock(session, product_id):
    return (await session.get(Product, product_id)).stock_quantity


@pytest.mark.asyncio
async def test_manual_adjustment_is_recorded(inventory, session, seed):
    product = await inventory.adjust(SALON_ID, seed.shampoo_id, 15, notes="Inventur März")

    assert product["stock_quantity"] == 15
    history = await inventory.history(SALON_ID, seed.shampoo_id)
    assert sorted(m["reference_type"] for m in history) == ["adjustment", "opening_balance"]
    [count] = [m for m in history if m["reference_type"] == "adjustment"]
    assert count["delta"] == 5
    assert count["stock_after"] == 15
    assert count["notes"] == "Inventur März"


@pytest.mark.asyncio
async def test_adjust_unknown_product(inventory, seed):
    with pytest.raises(NotFoundError):
        await inventory.adjust(SALON_ID, seed.haircut_id, 3)


@pytest.mark.asyncio
async def test_low_stock_report(inventory, seed):
    low = await inventory.low_stock(SALON_ID)
    assert [p["name"] for p in low] == ["Conditioner"]

    await inventory.adjust(SALON_ID, seed.shampoo_id, 1)
    low = await inventory.low_stock(SALON_ID)
    assert [p["name"] for p in low] == ["Pflegeshampoo", "Conditioner"]


@pytest.mark.asyncio
async def test_deduction_runs_once_per_order(inventory, orders, session, seed):
    placed = await orders.place_order(SALON_ID, _cart(seed.shampoo_id, 2, PaymentMethod.INVOICE))
    order = await session.get(Order, UUID(placed["order"]["id"]))

    assert order.stock_deducted
    assert await inventory.deduct_for_order(order) == []
    assert await _stock(session, seed.shampoo_id) == 8


@pytest.mark.asyncio
async def test_sale_floors_at_zero_and_warns(orders, session, seed, caplog):
    placed = await orders.place_order(SALON_ID, _cart(seed.conditioner_id, 2))
    # stock counted down between checkout and payment
    await InventoryService(session).adjust(SALON_ID, seed.conditioner_id, 1)

    intent = {"id": placed["order"]["payment_intent_id"], "status": "succeeded"}
    with caplog.at_level(logging.WARNING):
        await WebhookService(session, clock=fixed_clock).process_event(
            make_event("evt_1", "payment_intent.succeeded", intent)
        )

    assert await _stock(session, seed.conditioner_id) == 0
    history = await InventoryService(session).history(SALON_ID, seed.conditioner_id)
    [sale] = [m for m in history if m["movement_type"] == "sale"]
    assert sale["delta"] == -1
    assert sale["requested_quantity"] == 2
    assert "reconciliation needed" in caplog.text


@pytest.mark.asyncio
async def test_restock_is_capped_at_max_stock(inventory, orders, session, seed):
    placed = await orders.place_order(SALON_ID, _cart(seed.shampoo_id, 2, PaymentMethod.INVOICE))
    await inventory.adjust(SALON_ID, seed.shampoo_id, 19)

    await orders.update_status(SALON_ID, UUID(placed["order"]["id"]), OrderStatus.CANCELLED)

    assert await _stock(session, seed.shampoo_id) == 20
    history = await inventory.history(SALON_ID, seed.shampoo_id)
    [restock] = [m for m in history if m["movement_type"] == "refund"]
    assert restock["delta"] == 1


@pytest.mark.asyncio
async def test_level_always_equals_sum_of_movements(inventory, orders, session, seed):
    async def assert_in_sync(expected):
        report = await inventory.reconcile(SALON_ID, seed.shampoo_id)
        assert report["in_sync"]
        assert report["stock_quantity"] == report["ledger_total"] == expected

    await assert_in_sync(10)

    sold = await orders.place_order(SALON_ID, _cart(seed.shampoo_id, 3, PaymentMethod.INVOICE))
    await assert_in_sync(7)

    refunded = await orders.place_order(SALON_ID, _cart(seed.shampoo_id, 2, PaymentMethod.INVOICE))
    refunded_id = UUID(refunded["order"]["id"])
    await orders.update_status(SALON_ID, refunded_id, OrderStatus.PAID)
    await assert_in_sync(5)
    await orders.refund_order(SALON_ID, refunded_id)
    await assert_in_sync(7)

    await orders.cancel_order(SALON_ID, UUID(sold["order"]["id"]))
    await assert_in_sync(10)

    await inventory.adjust(SALON_ID, seed.shampoo_id, 6, notes="Inventur")
    await assert_in_sync(6)

    await inventory.receive(SALON_ID, seed.shampoo_id, 4)
    await assert_in_sync(10)


@pytest.mark.asyncio
async def test_new_product_books_opening_stock(inventory, session, seed):
    product = await inventory.add_product(
        SALON_ID, ProductCreate(name="Haaröl", price=Decimal("32.00"), opening_stock=6)
    )
    product_id = UUID(product["id"])

    assert product["stock_quantity"] == 6
    assert product["price"] == "32.00"
    [opening] = await inventory.history(SALON_ID, product_id)
    assert opening["movement_type"] == "adjustment"
    assert opening["reference_type"] == "opening_balance"
    assert opening["delta"] == 6

    empty = await inventory.add_product(SALON_ID, ProductCreate(name="Bürste", price=Decimal("12.00")))
    assert await inventory.history(SALON_ID, UUID(empty["id"])) == []
    assert (await inventory.reconcile(SALON_ID, UUID(empty["id"])))["in_sync"]


@pytest.mark.asyncio
async def test_goods_receipt_ignores_max_stock(inventory, session, seed):
    product = await inventory.receive(SALON_ID, seed.shampoo_id, 15, notes="Lieferung")

    assert product["stock_quantity"] == 25
    history = await inventory.history(SALON_ID, seed.shampoo_id)
    [receipt] = [m for m in history if m["reference_type"] == "goods_receipt"]
    assert receipt["delta"] == 15
    assert receipt["notes"] == "Lieferung"

    with pytest.raises(ValidationError):
        await inventory.receive(SALON_ID, seed.shampoo_id, 0)
    with pytest.raises(NotFoundError):
        await inventory.receive(SALON_ID, seed.haircut_id, 1)


@pytest.mark.asyncio
async def test_reconcile_reports_drift(inventory, session, seed, caplog):
    product = await session.get(Product, seed.conditioner_id)
    product.stock_quantity = 9
    await session.flush()

    with caplog.at_level(logging.WARNING):
        report = await inventory.reconcile(SALON_ID, seed.conditioner_id)

    assert report == {
        "product_id": str(seed.conditioner_id),
        "stock_quantity": 9,
        "ledger_total": 2,
        "in_sync": False,
    }
    assert "differs from movement ledger" in caplog.text
