"""Test error taxonomy, messages and CSV export."""
from datetime import date
from decimal import Decimal

from core.csv_export import BOM, array_to_csv, export_appointments_rows, export_orders_rows
from core.errors import (
    BookingError,
    DomainError,
    ErrorCode,
    ForbiddenError,
    InsufficientStockError,
    ValidationError,
    error_from_result,
)
from core.messages import get_error_message
from domain.rules_engine import RuleResult, evaluate_rules


def test_message_placeholders():
    assert get_error_message("BOOKING_HORIZON_EXCEEDED", days=30) == (
        "Termine können maximal 30 Tage im Voraus gebucht werden."
    )
    assert "{hours}" in get_error_message("BOOKING_LEAD_TIME_VIOLATED")


def test_unknown_code_falls_back_to_internal_error():
    assert get_error_message("NOPE") == get_error_message("INTERNAL_ERROR")


def test_domain_error_body():
    error = BookingError(ErrorCode.BOOKING_SLOT_ALREADY_TAKEN, http_status=409)
    assert error.http_status == 409
    assert error.to_dict() == {
        "code": "BOOKING_SLOT_ALREADY_TAKEN",
        "message": get_error_message("BOOKING_SLOT_ALREADY_TAKEN"),
    }


def test_validation_error_carries_fields():
    error = ValidationError({"starts_at": "Pflichtfeld."})
    assert error.to_dict()["field_errors"] == {"starts_at": "Pflichtfeld."}
    assert ForbiddenError().http_status == 403


def test_insufficient_stock_is_conflict():
    error = InsufficientStockError([{"product_id": "p1"}])
    assert error.http_status == 409
    assert error.details["shortages"] == [{"product_id": "p1"}]


def test_error_from_result():
    result = RuleResult.fail("r", ErrorCode.VOUCHER_EXPIRED, "abgelaufen", code="X")
    error = error_from_result(result)
    assert isinstance(error, DomainError)
    assert error.code == ErrorCode.VOUCHER_EXPIRED
    assert error.message == "abgelaufen"
    assert error.details == {"code": "X"}


def test_evaluate_rules_reports_first_failure():
    failed = RuleResult.fail("b", ErrorCode.NOT_FOUND, "fehlt")
    outcome = evaluate_rules(RuleResult.ok("a"), failed)
    assert not outcome.all_passed
    assert outcome.first_failure is failed


# -- CSV --

def test_csv_formatting():
    rows = [
        {"name": "Anna; Muster", "paid": True, "amount": Decimal("12.5"), "day": date(2026, 3, 2)},
        {"name": 'Sagt "Hallo"', "paid": False, "amount": None, "day": None},
    ]
    content = array_to_csv(rows, ["name", "paid", "amount", "day"])
    lines = content.split("\n")

    assert content.startswith(BOM)
    assert lines[0] == BOM + "name;paid;amount;day"
    assert lines[1] == '"Anna; Muster";Ja;12,50;2026-03-02'
    assert lines[2] == '"Sagt ""Hallo""";Nein;;'


def test_csv_without_bom():
    assert array_to_csv([{"a": 1}], ["a"], ["A"], include_bom=False) == "A\n1"


def test_order_export_headers():
    order = {
        "order_number": "SW-1-ABCD",
        "customer_name": "Anna",
        "customer_email": "anna@example.ch",
        "status": "paid",
        "payment_status": "captured",
        "payment_method": "card",
        "subtotal": "49.80",
        "shipping": "8.90",
        "total": "58.70",
        "created_at": "2026-03-02T08:00:00+00:00",
    }
    lines = export_orders_rows([order]).split("\n")
    assert lines[0].lstrip(BOM).startswith("Bestellnummer;Kunde;E-Mail")
    assert lines[1] == (
        "SW-1-ABCD;Anna;anna@example.ch;paid;captured;card;49,80;8,90;58,70;2026-03-02T08:00:00+00:00"
    )


def test_appointment_export_splits_date_and_time():
    appointment = {
        "id": "a1",
        "customer_name": "Anna",
        "staff_name": "Lea",
        "service_names": ["Haarschnitt", "Färben"],
        "starts_at": "2026-03-03T10:00:00+00:00",
        "duration_minutes": 135,
        "status": "confirmed",
        "total_price": "185.00",
    }
    lines = export_appointments_rows([appointment]).split("\n")
    assert lines[1] == "a1;Anna;Lea;Haarschnitt, Färben;2026-03-03;10:00;135;confirmed;185,00"
