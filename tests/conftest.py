"""Shared fixtures: in-memory database, fake payment gateway, recording notifier."""

import itertools
import json
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import core.resilience.idempotency  # noqa: F401
import verticals.salon.renderer  # noqa: F401
from core.errors import ErrorCode, PaymentError
from core.models.base import Base
from verticals.salon.models.db_models import (
    BookingRulesRecord,
    OpeningHoursRecord,
    Service,
    StaffWorkingHoursRecord,
    VoucherRecord,
)
from verticals.salon.models.schemas import ProductCreate
from verticals.salon.notifications import EmailNotifier
from verticals.salon.payments import PaymentIntentResult, RefundResult
from verticals.salon.services.stock import InventoryService

SALON_ID = uuid.UUID("5a10a000-0000-4000-8000-000000000001")
OTHER_SALON_ID = uuid.UUID("5a10a000-0000-4000-8000-000000000002")
STAFF_ID = uuid.UUID("57a4f000-0000-4000-8000-000000000001")
OTHER_STAFF_ID = uuid.UUID("57a4f000-0000-4000-8000-000000000002")
CUSTOMER_ID = uuid.UUID("c0570000-0000-4000-8000-000000000001")
OTHER_CUSTOMER_ID = uuid.UUID("c0570000-0000-4000-8000-000000000002")

# Monday morning; every test clock is pinned here
NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FakeGateway:
    """In-memory PaymentGateway that records every call."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.intents: dict[str, dict] = {}
        self.cancelled: list[str] = []
        self.refunds: list[dict] = []

    async def create_payment_intent(self, amount_minor, currency, metadata, idempotency_key=None):
        intent_id = f"pi_test_{next(self._ids)}"
        self.intents[intent_id] = {
            "amount": amount_minor,
            "currency": currency,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        }
        return PaymentIntentResult(intent_id, "requires_payment_method", amount_minor, f"{intent_id}_secret")

    async def retrieve_payment_intent(self, payment_intent_id):
        intent = self.intents[payment_intent_id]
        return PaymentIntentResult(payment_intent_id, "requires_payment_method", intent["amount"])

    async def cancel_payment_intent(self, payment_intent_id):
        self.cancelled.append(payment_intent_id)
        return PaymentIntentResult(payment_intent_id, "canceled", self.intents[payment_intent_id]["amount"])

    async def create_refund(self, payment_intent_id, amount_minor, idempotency_key=None):
        refund = {
            "id": f"re_test_{next(self._ids)}",
            "payment_intent": payment_intent_id,
            "amount": amount_minor,
            "idempotency_key": idempotency_key,
        }
        self.refunds.append(refund)
        return RefundResult(refund["id"], "succeeded", amount_minor)

    def construct_event(self, payload, signature):
        if signature != "valid":
            raise PaymentError(ErrorCode.PAYMENT_WEBHOOK_INVALID)
        return json.loads(payload)


class RecordingNotifier(EmailNotifier):
    """EmailNotifier that keeps payloads instead of calling Resend."""

    def __init__(self):
        super().__init__("re_test_key", "Salon <noreply@salon.example>")
        self.sent: list[dict] = []

    async def _deliver(self, payload):
        self.sent.append(payload)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

@dataclass
class Seed:
    haircut_id: uuid.UUID
    colour_id: uuid.UUID
    shampoo_id: uuid.UUID
    conditioner_id: uuid.UUID
    voucher_code: str


@pytest_asyncio.fixture
async def seed(session):
    """One salon open 08:00-18:00 every day, two staff members, products and a voucher."""
    haircut = Service(salon_id=SALON_ID, name="Haarschnitt", duration_minutes=45, price_minor=6500)
    colour = Service(
        salon_id=SALON_ID, name="Färben", duration_minutes=90, buffer_after_minutes=15, price_minor=12000
    )
    session.add_all([
        BookingRulesRecord(
            salon_id=SALON_ID,
            min_lead_time_minutes=60,
            max_horizon_days=30,
            cancellation_cutoff_hours=24,
            slot_granularity_minutes=15,
            buffer_between_bookings_minutes=0,
            no_show_fee_percent=Decimal("50"),
        ),
        haircut,
        colour,
        VoucherRecord(
            salon_id=SALON_ID, code="GIFT2026ABCD", total_value_minor=3000, remaining_value_minor=3000
        ),
    ])
    for day in range(7):
        session.add(OpeningHoursRecord(salon_id=SALON_ID, day_of_week=day, open_minutes=480, close_minutes=1080))
        for staff_id in (STAFF_ID, OTHER_STAFF_ID):
            session.add(
                StaffWorkingHoursRecord(
                    salon_id=SALON_ID, staff_id=staff_id, day_of_week=day, start_minutes=480, end_minutes=1080
                )
            )
    await session.flush()

    inventory = InventoryService(session)
    shampoo = await inventory.add_product(
        SALON_ID,
        ProductCreate(
            name="Pflegeshampoo", sku="SH-01", price=Decimal("24.90"),
            opening_stock=10, minimum_stock=2, max_stock=20,
        ),
    )
    conditioner = await inventory.add_product(
        SALON_ID,
        ProductCreate(
            name="Conditioner", sku="CO-01", price=Decimal("18.90"), opening_stock=2, minimum_stock=5
        ),
    )
    return Seed(
        haircut_id=haircut.id,
        colour_id=colour.id,
        shampoo_id=uuid.UUID(shampoo["id"]),
        conditioner_id=uuid.UUID(conditioner["id"]),
        voucher_code="gift-2026-abcd",
    )


def make_event(event_id: str, event_type: str, obj: dict) -> dict:
    """A Stripe-shaped webhook event."""
    return {"id": event_id, "type": event_type, "data": {"object": obj}}
