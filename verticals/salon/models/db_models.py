"""SQLAlchemy models for the salon vertical.

Every salon-owned model inherits from Base and SalonMixin. Money columns
hold integer minor units (``*_minor``); the ``to_dict()`` payloads expose
them as decimal strings. ``to_domain``-style helpers hand the pure rule
functions their frozen dataclasses.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.models.base import Base, SalonMixin
from domain.booking import (
    BookedInterval,
    BookedService,
    BookingRules,
    OpeningHours,
    StaffWorkingHours,
    as_utc,
)
from domain.money import from_smallest_unit, to_smallest_unit
from domain.order_states import OrderState, OrderStatus, PaymentMethod, PaymentStatus
from domain.vouchers import Voucher as VoucherSnapshot


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None


def _amount(minor: int, currency: str = "chf") -> str:
    return f"{from_smallest_unit(minor, currency):.2f}"


# ---------------------------------------------------------------------------
# Booking configuration
# ---------------------------------------------------------------------------

class BookingRulesRecord(SalonMixin, Base):
    """Per-salon booking rules; one row per salon."""

    __tablename__ = "booking_rules"
    __table_args__ = (UniqueConstraint("salon_id", name="uq_booking_rules_salon"),)

    min_lead_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    max_horizon_days: Mapped[int] = mapped_column(Integer, nullable=False)
    cancellation_cutoff_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=24)
    slot_granularity_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=15)
    buffer_between_bookings_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    no_show_fee_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)

    def to_rules(self) -> BookingRules:
        return BookingRules(
            min_lead_time_minutes=self.min_lead_time_minutes,
            max_horizon_days=self.max_horizon_days,
            cancellation_cutoff_hours=self.cancellation_cutoff_hours,
            slot_granularity_minutes=self.slot_granularity_minutes,
            buffer_between_bookings_minutes=self.buffer_between_bookings_minutes,
            no_show_fee_percent=self.no_show_fee_percent,
        )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "salon_id": str(self.salon_id),
            "min_lead_time_minutes": self.min_lead_time_minutes,
            "max_horizon_days": self.max_horizon_days,
            "cancellation_cutoff_hours": self.cancellation_cutoff_hours,
            "slot_granularity_minutes": self.slot_granularity_minutes,
            "buffer_between_bookings_minutes": self.buffer_between_bookings_minutes,
            "no_show_fee_percent": (
                str(self.no_show_fee_percent) if self.no_show_fee_percent is not None else None
            ),
        }


class Service(SalonMixin, Base):
    """A bookable salon service (haircut, colouring, ...)."""

    __tablename__ = "services"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    buffer_after_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_booked(self) -> BookedService:
        return BookedService(
            id=str(self.id),
            name=self.name,
            duration_minutes=self.duration_minutes,
            price=from_smallest_unit(self.price_minor),
            buffer_after_minutes=self.buffer_after_minutes,
        )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "salon_id": str(self.salon_id),
            "name": self.name,
            "duration_minutes": self.duration_minutes,
            "buffer_after_minutes": self.buffer_after_minutes,
            "price": _amount(self.price_minor),
            "is_active": self.is_active,
        }


class OpeningHoursRecord(SalonMixin, Base):
    __tablename__ = "opening_hours"
    __table_args__ = (UniqueConstraint("salon_id", "day_of_week", name="uq_opening_hours_day"),)

    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    open_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    close_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    def to_domain(self) -> OpeningHours:
        return OpeningHours(self.day_of_week, self.open_minutes, self.close_minutes)


class StaffWorkingHoursRecord(SalonMixin, Base):
    __tablename__ = "staff_working_hours"
    __table_args__ = (
        UniqueConstraint("staff_id", "day_of_week", name="uq_staff_working_hours_day"),
    )

    staff_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    end_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    def to_domain(self) -> StaffWorkingHours:
        return StaffWorkingHours(
            str(self.staff_id), self.day_of_week, self.start_minutes, self.end_minutes
        )


# ---------------------------------------------------------------------------
# Appointments
# ---------------------------------------------------------------------------

class Appointment(SalonMixin, Base):
    """A booked appointment with one staff member."""

    __tablename__ = "appointments"

    customer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    staff_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    staff_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="reserved")
    service_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    service_names: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    total_price_minor: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(20), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    no_show_fee_minor: Mapped[int | None] = mapped_column(Integer, nullable=True)

    claims: Mapped[list["AppointmentSlotClaim"]] = relationship(
        back_populates="appointment", cascade="all, delete-orphan", lazy="selectin"
    )

    def to_interval(self) -> BookedInterval:
        return BookedInterval(
            staff_id=str(self.staff_id),
            starts_at=as_utc(self.starts_at),
            ends_at=as_utc(self.ends_at),
            status=self.status,
        )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "salon_id": str(self.salon_id),
            "customer_id": str(self.customer_id) if self.customer_id else None,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "staff_id": str(self.staff_id),
            "staff_name": self.staff_name,
            "starts_at": _iso(self.starts_at),
            "ends_at": _iso(self.ends_at),
            "duration_minutes": self.duration_minutes,
            "status": self.status,
            "service_ids": list(self.service_ids or []),
            "service_names": list(self.service_names or []),
            "total_price": _amount(self.total_price_minor),
            "notes": self.notes,
            "cancelled_at": _iso(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "cancellation_reason": self.cancellation_reason,
            "no_show_fee": (
                _amount(self.no_show_fee_minor) if self.no_show_fee_minor is not None else None
            ),
            "created_at": _iso(self.created_at),
        }


class AppointmentSlotClaim(Base):
    """Lock row for one granularity bucket of a staff member's calendar.

    The unique (staff_id, slot_start) constraint makes double booking
    impossible even when two requests pass the rule checks concurrently.
    """

    __tablename__ = "appointment_slot_claims"
    __table_args__ = (
        UniqueConstraint("staff_id", "slot_start", name="uq_slot_claims_staff_slot"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    salon_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    staff_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    slot_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )

    appointment: Mapped["Appointment"] = relationship(back_populates="claims")


# ---------------------------------------------------------------------------
# Shop: products and stock
# ---------------------------------------------------------------------------

class Product(SalonMixin, Base):
    """A retail product with its current stock level."""

    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(300), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(64), nullable=True)
    price_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    minimum_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    max_stock: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "salon_id": str(self.salon_id),
            "name": self.name,
            "sku": self.sku,
            "price": _amount(self.price_minor),
            "stock_quantity": self.stock_quantity,
            "minimum_stock": self.minimum_stock,
            "max_stock": self.max_stock,
            "is_active": self.is_active,
        }


class StockMovementRecord(SalonMixin, Base):
    """Append-only stock ledger entry; ``delta`` is the applied change."""

    __tablename__ = "stock_movements"

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("products.id"), nullable=False, index=True
    )
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    requested_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stock_after: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "product_id": str(self.product_id),
            "delta": self.delta,
            "movement_type": self.movement_type,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "requested_quantity": self.requested_quantity,
            "stock_after": self.stock_after,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
        }


# ---------------------------------------------------------------------------
# Shop: orders
# ---------------------------------------------------------------------------

class Order(SalonMixin, Base):
    """A shop order. Status fields only change through ``apply_state``."""

    __tablename__ = "orders"
    __table_args__ = (UniqueConstraint("order_number", name="uq_orders_order_number"),)

    order_number: Mapped[str] = mapped_column(String(40), nullable=False)
    customer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, default="card")
    shipping_method: Mapped[str] = mapped_column(String(20), nullable=False, default="standard")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="chf")
    subtotal_minor: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount_minor: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shipping_minor: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_minor: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refunded_minor: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    voucher_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    points_redeemed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    stock_deducted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", lazy="selectin"
    )

    def to_state(self) -> OrderState:
        return OrderState(
            status=OrderStatus(self.status),
            payment_status=PaymentStatus(self.payment_status),
            payment_method=PaymentMethod(self.payment_method),
            subtotal=from_smallest_unit(self.subtotal_minor, self.currency),
            discount=from_smallest_unit(self.discount_minor, self.currency),
            shipping=from_smallest_unit(self.shipping_minor, self.currency),
            total=from_smallest_unit(self.total_minor, self.currency),
            refunded_amount=from_smallest_unit(self.refunded_minor, self.currency),
        )

    def apply_state(self, state: OrderState) -> None:
        self.status = state.status.value
        self.payment_status = state.payment_status.value
        self.refunded_minor = to_smallest_unit(state.refunded_amount, self.currency)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "salon_id": str(self.salon_id),
            "order_number": self.order_number,
            "customer_id": str(self.customer_id) if self.customer_id else None,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "shipping_method": self.shipping_method,
            "currency": self.currency,
            "subtotal": _amount(self.subtotal_minor, self.currency),
            "discount": _amount(self.discount_minor, self.currency),
            "shipping": _amount(self.shipping_minor, self.currency),
            "total": _amount(self.total_minor, self.currency),
            "refunded_amount": _amount(self.refunded_minor, self.currency),
            "voucher_code": self.voucher_code,
            "points_redeemed": self.points_redeemed,
            "payment_intent_id": self.payment_intent_id,
            "tracking_number": self.tracking_number,
            "items": [item.to_dict() for item in self.items],
            "paid_at": _iso(self.paid_at),
            "shipped_at": _iso(self.shipped_at),
            "cancelled_at": _iso(self.cancelled_at),
            "created_at": _iso(self.created_at),
        }


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id"), nullable=False)
    product_name: Mapped[str] = mapped_column(String(300), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    total_minor: Mapped[int] = mapped_column(Integer, nullable=False)

    order: Mapped["Order"] = relationship(back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "product_id": str(self.product_id),
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": _amount(self.unit_price_minor),
            "total": _amount(self.total_minor),
        }


# ---------------------------------------------------------------------------
# Vouchers
# ---------------------------------------------------------------------------

class VoucherRecord(SalonMixin, Base):
    """A gift voucher; ``remaining_value_minor`` only decreases."""

    __tablename__ = "vouchers"
    __table_args__ = (UniqueConstraint("salon_id", "code", name="uq_vouchers_salon_code"),)

    code: Mapped[str] = mapped_column(String(32), nullable=False)
    total_value_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    remaining_value_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_domain(self) -> VoucherSnapshot:
        return VoucherSnapshot(
            code=self.code,
            salon_id=str(self.salon_id),
            total_value=from_smallest_unit(self.total_value_minor),
            remaining_value=from_smallest_unit(self.remaining_value_minor),
            expires_at=as_utc(self.expires_at) if self.expires_at else None,
            is_active=self.is_active,
        )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "code": self.code,
            "total_value": _amount(self.total_value_minor),
            "remaining_value": _amount(self.remaining_value_minor),
            "expires_at": _iso(self.expires_at),
            "is_active": self.is_active,
        }


# ---------------------------------------------------------------------------
# Loyalty
# ---------------------------------------------------------------------------

class LoyaltyAccount(SalonMixin, Base):
    """Customer points balance. ``lifetime_points`` never decreases."""

    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        UniqueConstraint("salon_id", "customer_id", name="uq_loyalty_accounts_customer"),
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    current_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lifetime_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tier_id: Mapped[str] = mapped_column(String(20), nullable=False, default="bronze")
    is_enrolled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "customer_id": str(self.customer_id),
            "current_points": self.current_points,
            "lifetime_points": self.lifetime_points,
            "tier_id": self.tier_id,
            "is_enrolled": self.is_enrolled,
        }


class LoyaltyTransaction(SalonMixin, Base):
    __tablename__ = "loyalty_transactions"

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("loyalty_accounts.id"), nullable=False, index=True
    )
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "points": self.points,
            "transaction_type": self.transaction_type,
            "balance_after": self.balance_after,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "description": self.description,
            "created_at": _iso(self.created_at),
        }
