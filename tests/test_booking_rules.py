"""Test booking rules: create/cancel checks, status machine, conflicts and slots."""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from core.errors import ErrorCode, InvalidTransitionError
from domain.booking import (
    AppointmentStatus,
    BookedInterval,
    BookedService,
    BookingRules,
    CancellationActor,
    OpeningHours,
    StaffWorkingHours,
    allowed_appointment_transitions,
    as_utc,
    calculate_no_show_fee,
    calculate_total_duration,
    calculate_total_price,
    can_cancel,
    can_create,
    check_slot_free,
    generate_time_slots,
    is_terminal,
    minutes_until,
    slot_buckets,
    times_overlap,
    transition_appointment,
    validate_booking,
)

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
RULES = BookingRules(min_lead_time_minutes=60, max_horizon_days=30)


def _appointment(starts_at, status=AppointmentStatus.CONFIRMED, minutes=45, staff_id="s1"):
    return BookedInterval(staff_id, starts_at, starts_at + timedelta(minutes=minutes), status)


def _at(hour, minute=0, day=3):
    return datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc)


# -- cancellation --

def test_cancel_allowed_before_cutoff():
    result = can_cancel(_appointment(NOW + timedelta(hours=30)), RULES, NOW)
    assert result.passed


def test_cancel_too_late_inside_cutoff():
    result = can_cancel(_appointment(NOW + timedelta(hours=10)), RULES, NOW)
    assert not result.passed
    assert result.error_code == ErrorCode.BOOKING_CANCELLATION_TOO_LATE
    assert "24 Stunden" in result.message


def test_cancel_exactly_at_cutoff_is_allowed():
    assert can_cancel(_appointment(NOW + timedelta(hours=24)), RULES, NOW).passed


def test_admin_skips_cutoff_but_not_status():
    soon = _appointment(NOW + timedelta(hours=2))
    assert can_cancel(soon, RULES, NOW, CancellationActor.ADMIN).passed

    cancelled = _appointment(NOW + timedelta(hours=2), AppointmentStatus.CANCELLED)
    result = can_cancel(cancelled, RULES, NOW, CancellationActor.ADMIN)
    assert result.error_code == ErrorCode.BOOKING_ALREADY_CANCELLED


def test_cancel_completed_appointment_fails():
    result = can_cancel(_appointment(NOW + timedelta(days=3), AppointmentStatus.COMPLETED), RULES, NOW)
    assert result.error_code == ErrorCode.BOOKING_INVALID_TRANSITION


def test_cutoff_compares_in_utc():
    zurich = timezone(timedelta(hours=1))
    starts_at = (NOW + timedelta(hours=25)).astimezone(zurich)
    assert can_cancel(_appointment(starts_at), RULES, NOW).passed


# -- creation --

def test_create_lead_time_violation():
    result = can_create(NOW + timedelta(minutes=30), RULES, NOW)
    assert result.error_code == ErrorCode.BOOKING_LEAD_TIME_VIOLATED
    assert "1 Stunden" in result.message


def test_create_horizon_exceeded():
    assert can_create(NOW + timedelta(days=30), RULES, NOW).passed
    result = can_create(NOW + timedelta(days=30, minutes=1), RULES, NOW)
    assert result.error_code == ErrorCode.BOOKING_HORIZON_EXCEEDED
    assert result.details["max_horizon_days"] == 30


def test_naive_datetimes_are_utc():
    assert as_utc(datetime(2026, 3, 2, 8, 0)) == NOW
    assert can_create(datetime(2026, 3, 2, 9, 0), RULES, NOW).passed


def test_rules_reject_negative_cutoff():
    with pytest.raises(ValueError, match="non-negative"):
        BookingRules(min_lead_time_minutes=0, max_horizon_days=1, cancellation_cutoff_hours=-1)


# -- status machine --

def test_appointment_transition_closure():
    for current in AppointmentStatus:
        allowed = allowed_appointment_transitions(current)
        for target in AppointmentStatus:
            if target in allowed:
                assert transition_appointment(current, target) == target
            else:
                with pytest.raises(InvalidTransitionError):
                    transition_appointment(current, target)


def test_terminal_appointment_states():
    assert is_terminal("completed")
    assert is_terminal(AppointmentStatus.NO_SHOW)
    assert not is_terminal("reserved")


def test_invalid_transition_carries_allowed_targets():
    with pytest.raises(InvalidTransitionError) as exc_info:
        transition_appointment("reserved", "completed")
    assert exc_info.value.code == ErrorCode.BOOKING_INVALID_TRANSITION
    assert exc_info.value.allowed == ["confirmed", "cancelled"]
    assert exc_info.value.http_status == 409


# -- conflicts --

def test_touching_intervals_do_not_overlap():
    assert not times_overlap(_at(10), _at(10, 45), _at(10, 45), _at(11, 30))
    assert times_overlap(_at(10), _at(10, 45), _at(10, 30), _at(11))


def test_validate_booking_detects_conflict():
    existing = [_appointment(_at(10))]
    result = validate_booking(_at(10, 30), 30, existing, RULES, NOW)
    assert result.error_code == ErrorCode.BOOKING_SLOT_ALREADY_TAKEN
    assert validate_booking(_at(10, 45), 30, existing, RULES, NOW).passed


def test_validate_booking_pads_with_buffer():
    rules = BookingRules(min_lead_time_minutes=60, max_horizon_days=30, buffer_between_bookings_minutes=15)
    existing = [_appointment(_at(10))]
    assert not validate_booking(_at(10, 45), 30, existing, rules, NOW).passed
    assert validate_booking(_at(11), 30, existing, rules, NOW).passed


def test_lead_time_is_reported_before_conflict():
    existing = [_appointment(NOW + timedelta(minutes=30))]
    result = validate_booking(NOW + timedelta(minutes=30), 30, existing, RULES, NOW)
    assert result.error_code == ErrorCode.BOOKING_LEAD_TIME_VIOLATED

    assert check_slot_free(NOW + timedelta(minutes=30), 30, existing, RULES).error_code == (
        ErrorCode.BOOKING_SLOT_ALREADY_TAKEN
    )


def test_cancelled_appointments_do_not_block():
    existing = [_appointment(_at(10), AppointmentStatus.CANCELLED)]
    assert validate_booking(_at(10), 45, existing, RULES, NOW).passed


# -- slots --

def test_generate_time_slots_uses_hours_intersection():
    day = date(2026, 3, 3)
    opening = OpeningHours(day.weekday(), 540, 660)
    staff = StaffWorkingHours("s1", day.weekday(), 600, 720)
    existing = [
        _appointment(_at(10), minutes=15),
        _appointment(_at(10, 15), minutes=60, staff_id="s2"),
    ]

    slots = generate_time_slots(day, "s1", 30, opening, staff, existing, RULES, NOW)

    assert [s.starts_at for s in slots] == [_at(10), _at(10, 15), _at(10, 30)]
    assert [s.available for s in slots] == [False, True, True]
    assert all(s.ends_at - s.starts_at == timedelta(minutes=30) for s in slots)


def test_no_slots_when_closed():
    day = date(2026, 3, 3)
    staff = StaffWorkingHours("s1", day.weekday(), 600, 720)
    assert generate_time_slots(day, "s1", 30, None, staff, [], RULES, NOW) == []
    wrong_day = OpeningHours((day.weekday() + 1) % 7, 540, 660)
    assert generate_time_slots(day, "s1", 30, wrong_day, staff, [], RULES, NOW) == []


def test_slots_inside_lead_time_are_unavailable():
    day = date(2026, 3, 2)
    opening = OpeningHours(day.weekday(), 480, 600)
    staff = StaffWorkingHours("s1", day.weekday(), 480, 600)
    slots = generate_time_slots(day, "s1", 30, opening, staff, [], RULES, NOW)
    available = {s.starts_at.time().isoformat(timespec="minutes"): s.available for s in slots}
    assert available["08:45"] is False
    assert available["09:00"] is True


def test_slot_buckets():
    assert slot_buckets(_at(10, 5), _at(10, 35), 15) == [_at(10), _at(10, 15), _at(10, 30)]
    assert slot_buckets(_at(10), _at(10, 30), 15) == [_at(10), _at(10, 15)]
    first = set(slot_buckets(_at(10), _at(10, 45), 15))
    assert first.isdisjoint(slot_buckets(_at(10, 45), _at(11, 30), 15))
    assert first & set(slot_buckets(_at(10, 30), _at(11), 15))


def test_slot_buckets_reject_empty_interval():
    with pytest.raises(ValueError):
        slot_buckets(_at(10), _at(10), 15)


# -- helpers --

def test_service_totals():
    services = [
        BookedService("1", "Haarschnitt", 45, Decimal("65.00")),
        BookedService("2", "Färben", 90, Decimal("120.00"), buffer_after_minutes=15),
    ]
    assert calculate_total_duration(services) == 150
    assert calculate_total_price(services) == Decimal("185.00")


def test_no_show_fee():
    rules = BookingRules(min_lead_time_minutes=0, max_horizon_days=30, no_show_fee_percent=Decimal("50"))
    assert calculate_no_show_fee(Decimal("65.00"), rules) == Decimal("32.50")
    assert calculate_no_show_fee(Decimal("65.00"), RULES) is None


def test_minutes_until():
    assert minutes_until(NOW + timedelta(hours=2), NOW) == 120
