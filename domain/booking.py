"""Booking rule engine.

Decides whether an appointment may be created or cancelled, and drives the
appointment status machine. Everything here is pure: callers pass ``now``
and the salon's ``BookingRules``; persistence and e-mail happen elsewhere
and only after an allowed result.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Protocol, Sequence

from core.errors import ErrorCode, InvalidTransitionError
from core.messages import get_error_message
from domain.money import round_money, to_decimal
from domain.rules_engine import RuleResult, evaluate_rules


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

class AppointmentStatus(str, Enum):
    RESERVED = "reserved"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class CancellationActor(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


@dataclass(frozen=True)
class BookingRules:
    """Per-salon booking configuration.

    Lead time and horizon have no built-in default; only the 24 hour
    cancellation cutoff does.
    """

    min_lead_time_minutes: int
    max_horizon_days: int
    cancellation_cutoff_hours: int = 24
    slot_granularity_minutes: int = 15
    buffer_between_bookings_minutes: int = 0
    no_show_fee_percent: Decimal | None = None

    def __post_init__(self):
        if self.cancellation_cutoff_hours < 0:
            raise ValueError("cancellation_cutoff_hours must be non-negative")
        if self.slot_granularity_minutes <= 0:
            raise ValueError("slot_granularity_minutes must be positive")


class AppointmentLike(Protocol):
    status: Any
    starts_at: datetime


@dataclass(frozen=True)
class BookedService:
    id: str
    name: str
    duration_minutes: int
    price: Decimal
    buffer_after_minutes: int = 0


@dataclass(frozen=True)
class OpeningHours:
    day_of_week: int  # 0 = Monday, as date.weekday()
    open_minutes: int  # minutes from midnight
    close_minutes: int


@dataclass(frozen=True)
class StaffWorkingHours:
    staff_id: str
    day_of_week: int
    start_minutes: int
    end_minutes: int


@dataclass(frozen=True)
class BookedInterval:
    """An existing appointment as seen by the conflict check."""

    staff_id: str
    starts_at: datetime
    ends_at: datetime
    status: AppointmentStatus = AppointmentStatus.CONFIRMED


@dataclass(frozen=True)
class TimeSlot:
    staff_id: str
    starts_at: datetime
    ends_at: datetime
    available: bool


def as_utc(value: datetime) -> datetime:
    """Normalize to UTC; naive datetimes (e.g. from SQLite) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Status machine
# ---------------------------------------------------------------------------

_APPOINTMENT_TRANSITIONS: dict[AppointmentStatus, list[AppointmentStatus]] = {
    AppointmentStatus.RESERVED: [AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED],
    AppointmentStatus.CONFIRMED: [
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    ],
    AppointmentStatus.COMPLETED: [],  # terminal
    AppointmentStatus.CANCELLED: [],  # terminal
    AppointmentStatus.NO_SHOW: [],    # terminal
}

CANCELLABLE_STATUSES = frozenset({AppointmentStatus.RESERVED, AppointmentStatus.CONFIRMED})
ACTIVE_STATUSES = CANCELLABLE_STATUSES


def allowed_appointment_transitions(current: AppointmentStatus | str) -> list[AppointmentStatus]:
    return list(_APPOINTMENT_TRANSITIONS[AppointmentStatus(current)])


def can_transition_appointment(current: AppointmentStatus | str, target: AppointmentStatus | str) -> bool:
    return AppointmentStatus(target) in _APPOINTMENT_TRANSITIONS[AppointmentStatus(current)]


def transition_appointment(
    current: AppointmentStatus | str,
    target: AppointmentStatus | str,
) -> AppointmentStatus:
    """Return ``target`` if the move is legal.

    Raises InvalidTransitionError otherwise; illegal moves are never no-ops.
    """
    current = AppointmentStatus(current)
    target = AppointmentStatus(target)
    if not can_transition_appointment(current, target):
        raise InvalidTransitionError(
            ErrorCode.BOOKING_INVALID_TRANSITION,
            current.value,
            target.value,
            [s.value for s in _APPOINTMENT_TRANSITIONS[current]],
        )
    return target


def is_terminal(status: AppointmentStatus | str) -> bool:
    return not _APPOINTMENT_TRANSITIONS[AppointmentStatus(status)]


# ---------------------------------------------------------------------------
# Create / cancel rules
# ---------------------------------------------------------------------------

def can_create(requested_start: datetime, rules: BookingRules, now: datetime) -> RuleResult:
    """Lead time and horizon check for a new appointment."""
    requested_start = as_utc(requested_start)
    now = as_utc(now)

    earliest = now + timedelta(minutes=rules.min_lead_time_minutes)
    if requested_start < earliest:
        hours = rules.min_lead_time_minutes / 60
        return RuleResult.fail(
            "booking_lead_time",
            ErrorCode.BOOKING_LEAD_TIME_VIOLATED,
            get_error_message("BOOKING_LEAD_TIME_VIOLATED", hours=f"{hours:g}"),
            earliest=earliest.isoformat(),
            min_lead_time_minutes=rules.min_lead_time_minutes,
        )

    latest = now + timedelta(days=rules.max_horizon_days)
    if requested_start > latest:
        return RuleResult.fail(
            "booking_horizon",
            ErrorCode.BOOKING_HORIZON_EXCEEDED,
            get_error_message("BOOKING_HORIZON_EXCEEDED", days=rules.max_horizon_days),
            latest=latest.isoformat(),
            max_horizon_days=rules.max_horizon_days,
        )

    return RuleResult.ok("booking_create", "Booking allowed")


def can_cancel(
    appointment: AppointmentLike,
    rules: BookingRules,
    now: datetime,
    actor: CancellationActor = CancellationActor.CUSTOMER,
) -> RuleResult:
    """Cancellation check.

    Customers may cancel a reserved or confirmed appointment while
    ``now <= starts_at - cutoff``. Admins skip the cutoff but not the status
    check.
    """
    status = AppointmentStatus(appointment.status)

    if status == AppointmentStatus.CANCELLED:
        return RuleResult.fail(
            "booking_cancel",
            ErrorCode.BOOKING_ALREADY_CANCELLED,
            get_error_message("BOOKING_ALREADY_CANCELLED"),
            status=status.value,
        )

    if status not in CANCELLABLE_STATUSES:
        return RuleResult.fail(
            "booking_cancel",
            ErrorCode.BOOKING_INVALID_TRANSITION,
            "Termin kann nicht storniert werden.",
            status=status.value,
        )

    cutoff = as_utc(appointment.starts_at) - timedelta(hours=rules.cancellation_cutoff_hours)
    if CancellationActor(actor) == CancellationActor.CUSTOMER and as_utc(now) > cutoff:
        return RuleResult.fail(
            "booking_cancel",
            ErrorCode.BOOKING_CANCELLATION_TOO_LATE,
            get_error_message(
                "BOOKING_CANCELLATION_TOO_LATE", hours=rules.cancellation_cutoff_hours
            ),
            cutoff=cutoff.isoformat(),
            cancellation_cutoff_hours=rules.cancellation_cutoff_hours,
        )

    return RuleResult.ok("booking_cancel", "Cancellation allowed")


# ---------------------------------------------------------------------------
# Conflicts and slots
# ---------------------------------------------------------------------------

def times_overlap(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    """Half-open interval overlap; touching intervals do not overlap."""
    return as_utc(start1) < as_utc(end2) and as_utc(end1) > as_utc(start2)


def has_slot_conflict(
    slot_start: datetime,
    slot_end: datetime,
    existing: Iterable[BookedInterval],
) -> bool:
    return any(
        AppointmentStatus(apt.status) != AppointmentStatus.CANCELLED
        and times_overlap(slot_start, slot_end, apt.starts_at, apt.ends_at)
        for apt in existing
    )


def check_slot_free(
    proposed_start: datetime,
    duration_minutes: int,
    existing: Iterable[BookedInterval],
    rules: BookingRules,
) -> RuleResult:
    """Conflict check with the between-bookings buffer on both sides.

    The proposal and the existing appointments are extended by the buffer,
    matching the span covered by slot claims.
    """
    buffer = timedelta(minutes=rules.buffer_between_bookings_minutes)
    end = as_utc(proposed_start) + timedelta(minutes=duration_minutes) + buffer
    padded = [replace(apt, ends_at=as_utc(apt.ends_at) + buffer) for apt in existing]
    if has_slot_conflict(proposed_start, end, padded):
        return RuleResult.fail(
            "booking_conflict",
            ErrorCode.BOOKING_SLOT_ALREADY_TAKEN,
            get_error_message("BOOKING_SLOT_ALREADY_TAKEN"),
        )
    return RuleResult.ok("booking_conflict", "Slot free")


def validate_booking(
    proposed_start: datetime,
    duration_minutes: int,
    existing: Iterable[BookedInterval],
    rules: BookingRules,
    now: datetime,
) -> RuleResult:
    """Create rules plus the conflict check; the first failure wins."""
    outcome = evaluate_rules(
        can_create(proposed_start, rules, now),
        check_slot_free(proposed_start, duration_minutes, existing, rules),
    )
    if not outcome.all_passed:
        return outcome.first_failure
    return RuleResult.ok("booking_validate", "Slot available")


def generate_time_slots(
    day: date,
    staff_id: str,
    duration_minutes: int,
    opening_hours: OpeningHours | None,
    staff_hours: StaffWorkingHours | None,
    existing: Sequence[BookedInterval],
    rules: BookingRules,
    now: datetime,
) -> list[TimeSlot]:
    """Candidate slots for one staff member on ``day`` (UTC wall clock).

    The working window is the intersection of salon opening hours and the
    staff member's hours; candidates step by the slot granularity.
    """
    weekday = day.weekday()
    if opening_hours is None or opening_hours.day_of_week != weekday:
        return []
    if staff_hours is None or staff_hours.day_of_week != weekday:
        return []

    window_start = max(opening_hours.open_minutes, staff_hours.start_minutes)
    window_end = min(opening_hours.close_minutes, staff_hours.end_minutes)
    day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    own = [apt for apt in existing if apt.staff_id == staff_id]

    slots = []
    minute = window_start
    while minute + duration_minutes <= window_end:
        start = day_start + timedelta(minutes=minute)
        end = start + timedelta(minutes=duration_minutes)
        check = validate_booking(start, duration_minutes, own, rules, now)
        slots.append(TimeSlot(staff_id=staff_id, starts_at=start, ends_at=end, available=check.passed))
        minute += rules.slot_granularity_minutes
    return slots


def slot_buckets(starts_at: datetime, ends_at: datetime, granularity_minutes: int) -> list[datetime]:
    """Granularity-aligned bucket starts covered by ``[starts_at, ends_at)``.

    Two intervals for the same staff member overlap only if they share at
    least one bucket, so a unique (staff, bucket) row acts as the slot lock.
    """
    starts_at = as_utc(starts_at)
    ends_at = as_utc(ends_at)
    if ends_at <= starts_at:
        raise ValueError("starts_at must be before ends_at")

    step = timedelta(minutes=granularity_minutes)
    epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
    bucket = epoch + ((starts_at - epoch) // step) * step
    buckets = []
    while bucket < ends_at:
        buckets.append(bucket)
        bucket += step
    return buckets


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def calculate_total_duration(services: Iterable[BookedService]) -> int:
    """Minutes blocked by the services, including per-service buffers."""
    return sum(s.duration_minutes + s.buffer_after_minutes for s in services)


def calculate_total_price(services: Iterable[BookedService]) -> Decimal:
    return sum((to_decimal(s.price) for s in services), Decimal("0"))


def minutes_until(starts_at: datetime, now: datetime) -> int:
    return int((as_utc(starts_at) - as_utc(now)).total_seconds() // 60)


def calculate_no_show_fee(total_price: Decimal, rules: BookingRules) -> Decimal | None:
    if not rules.no_show_fee_percent or not total_price:
        return None
    return round_money(to_decimal(total_price) * to_decimal(rules.no_show_fee_percent) / 100)
