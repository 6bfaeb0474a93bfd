"""Booking service: appointment lifecycle on top of the booking rules.

Rule checks run first and are pure; the insert of the appointment and its
slot claims then happens in one SAVEPOINT. The unique (staff, bucket)
constraint on the claims is what makes two concurrent bookings of the same
slot impossible: the loser gets BOOKING_SLOT_ALREADY_TAKEN.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import (
    BookingError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    error_from_result,
)
from core.models.base import utcnow
from domain.booking import (
    AppointmentStatus,
    BookingRules,
    CancellationActor,
    TimeSlot,
    as_utc,
    calculate_no_show_fee,
    calculate_total_duration,
    calculate_total_price,
    can_cancel,
    generate_time_slots,
    slot_buckets,
    transition_appointment,
    validate_booking,
)
from domain.money import from_smallest_unit, to_smallest_unit
from verticals.salon.models.db_models import Appointment, AppointmentSlotClaim, Service
from verticals.salon.models.schemas import AppointmentCreate
from verticals.salon.notifications import EmailNotifier
from verticals.salon.repository import (
    AppointmentRepository,
    BookingRulesRepository,
    ScheduleRepository,
    ServiceRepository,
)
from verticals.salon.services.loyalty_service import LoyaltyService

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _minutes_of_day(value: datetime) -> int:
    return value.hour * 60 + value.minute


class BookingService:
    def __init__(
        self,
        session: AsyncSession,
        notifier: EmailNotifier | None = None,
        loyalty: LoyaltyService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.notifier = notifier
        self.loyalty = loyalty or LoyaltyService(session)
        self.clock = clock
        self.rules = BookingRulesRepository(session)
        self.services = ServiceRepository(session)
        self.schedule = ScheduleRepository(session)
        self.appointments = AppointmentRepository(session)

    # -- Lookups --

    async def _booking_rules(self, salon_id: UUID) -> BookingRules:
        record = await self.rules.get_for_salon(salon_id)
        if record is None:
            raise NotFoundError(ErrorCode.NOT_FOUND, "Für diesen Salon sind keine Buchungsregeln hinterlegt.")
        return record.to_rules()

    async def _services(self, salon_id: UUID, service_ids: list[UUID]) -> list[Service]:
        services = await self.services.get_active(salon_id, service_ids)
        if len(services) != len(service_ids):
            raise ValidationError({"service_ids": "Unbekannte oder inaktive Leistung."})
        return services

    async def _appointment(self, salon_id: UUID, appointment_id: UUID) -> Appointment:
        appointment = await self.appointments.get_instance(appointment_id, salon_id, for_update=True)
        if appointment is None:
            raise BookingError(ErrorCode.BOOKING_NOT_FOUND, http_status=404)
        return appointment

    async def _ensure_staff_available(
        self, salon_id: UUID, staff_id: UUID, starts_at: datetime, ends_at: datetime
    ) -> None:
        """Salon and staff member must both be working for the whole interval."""
        weekday = starts_at.weekday()
        opening = await self.schedule.opening_hours(salon_id, weekday)
        hours = await self.schedule.staff_hours(salon_id, staff_id, weekday)
        start = _minutes_of_day(starts_at)
        # an appointment ending exactly at midnight counts as minute 1440
        end = start + int((ends_at - starts_at).total_seconds() // 60)
        if (
            opening is None
            or hours is None
            or start < max(opening.open_minutes, hours.start_minutes)
            or end > min(opening.close_minutes, hours.end_minutes)
        ):
            raise BookingError(ErrorCode.BOOKING_STAFF_NOT_AVAILABLE, http_status=409)

    # -- Availability --

    async def get_available_slots(
        self, salon_id: UUID, staff_id: UUID, day: date, service_ids: list[UUID]
    ) -> list[TimeSlot]:
        rules = await self._booking_rules(salon_id)
        services = await self._services(salon_id, service_ids)
        duration = calculate_total_duration(s.to_booked() for s in services)
        weekday = day.weekday()
        opening = await self.schedule.opening_hours(salon_id, weekday)
        hours = await self.schedule.staff_hours(salon_id, staff_id, weekday)

        day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        existing = await self.appointments.active_for_staff(
            salon_id, staff_id, day_start - timedelta(days=1), day_start + timedelta(days=2)
        )
        return generate_time_slots(
            day,
            str(staff_id),
            duration,
            opening.to_domain() if opening else None,
            hours.to_domain() if hours else None,
            [a.to_interval() for a in existing],
            rules,
            self.clock(),
        )

    # -- Create --

    async def create_appointment(
        self,
        salon_id: UUID,
        data: AppointmentCreate,
        *,
        customer_id: UUID | None = None,
        auto_confirm: bool = True,
    ) -> dict:
        """Book an appointment.

        The appointment is inserted as ``reserved`` together with its slot
        claims and, with ``auto_confirm``, confirmed in the same transaction.
        """
        now = self.clock()
        starts_at = as_utc(data.starts_at)
        rules = await self._booking_rules(salon_id)

        step = timedelta(minutes=rules.slot_granularity_minutes)
        if (starts_at - _EPOCH) % step:
            raise ValidationError(
                {"starts_at": f"Startzeit muss auf {rules.slot_granularity_minutes} Minuten ausgerichtet sein."}
            )

        services = await self._services(salon_id, data.service_ids)
        booked = [s.to_booked() for s in services]
        duration = calculate_total_duration(booked)
        ends_at = starts_at + timedelta(minutes=duration)
        buffer = timedelta(minutes=rules.buffer_between_bookings_minutes)

        await self._ensure_staff_available(salon_id, data.staff_id, starts_at, ends_at)

        existing = await self.appointments.active_for_staff(
            salon_id, data.staff_id, starts_at - buffer, ends_at + buffer
        )
        result = validate_booking(starts_at, duration, [a.to_interval() for a in existing], rules, now)
        if not result.passed:
            status = 409 if result.error_code == ErrorCode.BOOKING_SLOT_ALREADY_TAKEN else None
            raise error_from_result(result, BookingError, http_status=status)

        appointment = Appointment(
            salon_id=salon_id,
            customer_id=customer_id,
            customer_name=data.customer_name,
            customer_email=data.customer_email,
            staff_id=data.staff_id,
            staff_name=data.staff_name,
            starts_at=starts_at,
            ends_at=ends_at,
            duration_minutes=duration,
            status=AppointmentStatus.RESERVED.value,
            service_ids=[str(s.id) for s in services],
            service_names=[s.name for s in services],
            total_price_minor=to_smallest_unit(calculate_total_price(booked)),
            notes=data.notes,
        )
        appointment.claims = [
            AppointmentSlotClaim(salon_id=salon_id, staff_id=data.staff_id, slot_start=bucket)
            for bucket in slot_buckets(starts_at, ends_at + buffer, rules.slot_granularity_minutes)
        ]
        try:
            async with self.session.begin_nested():
                self.session.add(appointment)
                await self.session.flush()
        except IntegrityError:
            logger.info(
                "Slot claim lost to a concurrent booking",
                extra={"staff_id": str(data.staff_id), "starts_at": starts_at.isoformat()},
            )
            raise BookingError(ErrorCode.BOOKING_SLOT_ALREADY_TAKEN, http_status=409) from None

        if auto_confirm:
            appointment.status = transition_appointment(
                appointment.status, AppointmentStatus.CONFIRMED
            ).value
            await self.session.flush()

        logger.info(
            "Appointment booked",
            extra={"appointment_id": str(appointment.id), "status": appointment.status},
        )
        payload = appointment.to_dict()
        if self.notifier and appointment.status == AppointmentStatus.CONFIRMED.value:
            await self.notifier.booking_confirmation(payload)
        return payload

    # -- Status changes --

    async def confirm_appointment(self, salon_id: UUID, appointment_id: UUID) -> dict:
        appointment = await self._appointment(salon_id, appointment_id)
        if appointment.status == AppointmentStatus.RESERVED.value and as_utc(
            appointment.starts_at
        ) <= self.clock():
            raise BookingError(ErrorCode.BOOKING_SLOT_EXPIRED, http_status=409)
        appointment.status = transition_appointment(
            appointment.status, AppointmentStatus.CONFIRMED
        ).value
        await self.session.flush()
        payload = appointment.to_dict()
        if self.notifier:
            await self.notifier.booking_confirmation(payload)
        return payload

    async def cancel_appointment(
        self,
        salon_id: UUID,
        appointment_id: UUID,
        *,
        actor: CancellationActor = CancellationActor.CUSTOMER,
        customer_id: UUID | None = None,
        reason: str | None = None,
    ) -> dict:
        """Cancel and release the slot.

        Customers may only cancel their own appointments, and only before
        the cutoff; admins skip the cutoff.
        """
        appointment = await self._appointment(salon_id, appointment_id)
        if actor == CancellationActor.CUSTOMER and appointment.customer_id != customer_id:
            raise ForbiddenError()

        rules = await self._booking_rules(salon_id)
        result = can_cancel(appointment, rules, self.clock(), actor)
        if not result.passed:
            raise error_from_result(result, BookingError, http_status=409)

        appointment.status = transition_appointment(
            appointment.status, AppointmentStatus.CANCELLED
        ).value
        appointment.cancelled_at = self.clock()
        appointment.cancelled_by = CancellationActor(actor).value
        appointment.cancellation_reason = reason
        appointment.claims.clear()
        await self.session.flush()

        logger.info(
            "Appointment cancelled",
            extra={"appointment_id": str(appointment.id), "actor": appointment.cancelled_by},
        )
        payload = appointment.to_dict()
        if self.notifier:
            await self.notifier.booking_cancellation(payload)
        return payload

    async def complete_appointment(self, salon_id: UUID, appointment_id: UUID) -> dict:
        """Mark the visit done and award loyalty points on its price."""
        appointment = await self._appointment(salon_id, appointment_id)
        appointment.status = transition_appointment(
            appointment.status, AppointmentStatus.COMPLETED
        ).value
        await self.session.flush()

        if appointment.customer_id is not None:
            await self.loyalty.award_points(
                salon_id,
                appointment.customer_id,
                from_smallest_unit(appointment.total_price_minor),
                reference_type="appointment",
                reference_id=str(appointment.id),
                description="Termin",
            )
        return appointment.to_dict()

    async def mark_no_show(self, salon_id: UUID, appointment_id: UUID) -> dict:
        appointment = await self._appointment(salon_id, appointment_id)
        appointment.status = transition_appointment(
            appointment.status, AppointmentStatus.NO_SHOW
        ).value
        rules = await self._booking_rules(salon_id)
        fee = calculate_no_show_fee(from_smallest_unit(appointment.total_price_minor), rules)
        if fee is not None:
            appointment.no_show_fee_minor = to_smallest_unit(fee)
        await self.session.flush()
        logger.info(
            "Appointment marked as no-show",
            extra={"appointment_id": str(appointment.id), "fee": str(fee) if fee else None},
        )
        return appointment.to_dict()

    async def list_between(self, salon_id: UUID, start: datetime, end: datetime) -> list[dict]:
        return [a.to_dict() for a in await self.appointments.between(salon_id, start, end)]
