"""Salon repositories: async database access with salon isolation.

Extends BaseRepository with the queries the salon services need: calendar
windows, row locks for stock and orders, voucher and loyalty lookups.
"""

from datetime import datetime
from typing import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.repository import BaseRepository
from domain.booking import ACTIVE_STATUSES
from verticals.salon.models.db_models import (
    Appointment,
    BookingRulesRecord,
    LoyaltyAccount,
    LoyaltyTransaction,
    OpeningHoursRecord,
    Order,
    Product,
    Service,
    StaffWorkingHoursRecord,
    StockMovementRecord,
    VoucherRecord,
)

_ACTIVE = [s.value for s in ACTIVE_STATUSES]


# ---------------------------------------------------------------------------
# Booking
# ---------------------------------------------------------------------------

class BookingRulesRepository(BaseRepository[BookingRulesRecord]):
    model = BookingRulesRecord

    async def get_for_salon(self, salon_id: UUID) -> BookingRulesRecord | None:
        result = await self.session.execute(
            select(BookingRulesRecord).where(BookingRulesRecord.salon_id == salon_id)
        )
        return result.scalar_one_or_none()


class ServiceRepository(BaseRepository[Service]):
    model = Service

    async def get_active(self, salon_id: UUID, service_ids: Iterable[UUID]) -> list[Service]:
        ids = list(service_ids)
        result = await self.session.execute(
            select(Service).where(
                Service.salon_id == salon_id,
                Service.id.in_(ids),
                Service.is_active.is_(True),
            )
        )
        by_id = {s.id: s for s in result.scalars().all()}
        return [by_id[i] for i in ids if i in by_id]


class ScheduleRepository:
    """Salon opening hours and staff working hours."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def opening_hours(self, salon_id: UUID, weekday: int) -> OpeningHoursRecord | None:
        result = await self.session.execute(
            select(OpeningHoursRecord).where(
                OpeningHoursRecord.salon_id == salon_id,
                OpeningHoursRecord.day_of_week == weekday,
            )
        )
        return result.scalar_one_or_none()

    async def staff_hours(
        self, salon_id: UUID, staff_id: UUID, weekday: int
    ) -> StaffWorkingHoursRecord | None:
        result = await self.session.execute(
            select(StaffWorkingHoursRecord).where(
                StaffWorkingHoursRecord.salon_id == salon_id,
                StaffWorkingHoursRecord.staff_id == staff_id,
                StaffWorkingHoursRecord.day_of_week == weekday,
            )
        )
        return result.scalar_one_or_none()


class AppointmentRepository(BaseRepository[Appointment]):
    model = Appointment

    async def active_for_staff(
        self,
        salon_id: UUID,
        staff_id: UUID,
        window_start: datetime,
        window_end: datetime,
    ) -> list[Appointment]:
        """Reserved/confirmed appointments overlapping the window."""
        result = await self.session.execute(
            select(Appointment).where(
                Appointment.salon_id == salon_id,
                Appointment.staff_id == staff_id,
                Appointment.status.in_(_ACTIVE),
                Appointment.starts_at < window_end,
                Appointment.ends_at > window_start,
            )
        )
        return list(result.scalars().all())

    async def between(
        self, salon_id: UUID, start: datetime, end: datetime
    ) -> list[Appointment]:
        result = await self.session.execute(
            select(Appointment)
            .where(
                Appointment.salon_id == salon_id,
                Appointment.starts_at >= start,
                Appointment.starts_at < end,
            )
            .order_by(Appointment.starts_at)
        )
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Shop
# ---------------------------------------------------------------------------

class ProductRepository(BaseRepository[Product]):
    model = Product

    async def lock_many(self, salon_id: UUID, product_ids: Iterable[UUID]) -> dict[UUID, Product]:
        """SELECT ... FOR UPDATE on every product, in id order."""
        ids = sorted(set(product_ids), key=str)
        result = await self.session.execute(
            select(Product)
            .where(Product.salon_id == salon_id, Product.id.in_(ids))
            .order_by(Product.id)
            .with_for_update()
        )
        return {p.id: p for p in result.scalars().all()}

    async def low_stock(self, salon_id: UUID) -> list[dict]:
        result = await self.session.execute(
            select(Product)
            .where(
                Product.salon_id == salon_id,
                Product.is_active.is_(True),
                Product.stock_quantity <= Product.minimum_stock,
            )
            .order_by(Product.stock_quantity)
        )
        return [row.to_dict() for row in result.scalars().all()]


class StockMovementRepository(BaseRepository[StockMovementRecord]):
    model = StockMovementRecord

    async def for_product(self, salon_id: UUID, product_id: UUID) -> list[StockMovementRecord]:
        result = await self.session.execute(
            select(StockMovementRecord)
            .where(
                StockMovementRecord.salon_id == salon_id,
                StockMovementRecord.product_id == product_id,
            )
            .order_by(StockMovementRecord.created_at)
        )
        return list(result.scalars().all())

    async def total_delta(self, salon_id: UUID, product_id: UUID) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(StockMovementRecord.delta), 0)).where(
                StockMovementRecord.salon_id == salon_id,
                StockMovementRecord.product_id == product_id,
            )
        )
        return int(result.scalar_one())


class OrderRepository(BaseRepository[Order]):
    model = Order

    async def get_by_payment_intent(self, payment_intent_id: str) -> Order | None:
        """Webhook lookup; the processor does not know the salon context."""
        result = await self.session.execute(
            select(Order).where(Order.payment_intent_id == payment_intent_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def for_export(
        self,
        salon_id: UUID,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Order]:
        stmt = select(Order).where(Order.salon_id == salon_id)
        if start is not None:
            stmt = stmt.where(Order.created_at >= start)
        if end is not None:
            stmt = stmt.where(Order.created_at < end)
        result = await self.session.execute(stmt.order_by(Order.created_at))
        return list(result.scalars().all())


class VoucherRepository(BaseRepository[VoucherRecord]):
    model = VoucherRecord

    async def get_by_code(
        self, salon_id: UUID, code: str, *, for_update: bool = False
    ) -> VoucherRecord | None:
        stmt = select(VoucherRecord).where(
            VoucherRecord.salon_id == salon_id,
            VoucherRecord.code == code,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Loyalty
# ---------------------------------------------------------------------------

class LoyaltyRepository(BaseRepository[LoyaltyAccount]):
    model = LoyaltyAccount

    async def get_account(
        self, salon_id: UUID, customer_id: UUID, *, for_update: bool = False
    ) -> LoyaltyAccount | None:
        stmt = select(LoyaltyAccount).where(
            LoyaltyAccount.salon_id == salon_id,
            LoyaltyAccount.customer_id == customer_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def transactions(self, account_id: UUID, limit: int = 20) -> list[dict]:
        result = await self.session.execute(
            select(LoyaltyTransaction)
            .where(LoyaltyTransaction.account_id == account_id)
            .order_by(LoyaltyTransaction.created_at.desc())
            .limit(limit)
        )
        return [row.to_dict() for row in result.scalars().all()]
