"""CSV export for admin reporting.

Output is tuned for Swiss accounting software (Bexio, Abacus): semicolon
delimiter, UTF-8 BOM so Excel detects the encoding, ``Ja``/``Nein`` for
booleans and a decimal comma for amounts.
"""

import csv
import io
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence

BOM = "\ufeff"


def format_csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Ja" if value else "Nein"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return f"{value:.2f}".replace(".", ",")
    if isinstance(value, float):
        return str(value).replace(".", ",")
    return str(value)


def array_to_csv(
    rows: Iterable[Mapping[str, Any]],
    columns: Sequence[str],
    headers: Sequence[str] | None = None,
    delimiter: str = ";",
    include_bom: bool = True,
) -> str:
    """Render ``rows`` as CSV, one line per row, ``columns`` in order.

    Values are quoted only when they contain the delimiter, a quote or a
    line break.
    """
    buffer = io.StringIO()
    writer = csv.writer(
        buffer,
        delimiter=delimiter,
        quotechar='"',
        quoting=csv.QUOTE_MINIMAL,
        lineterminator="\n",
    )
    writer.writerow([format_csv_value(h) for h in (headers or columns)])
    for row in rows:
        writer.writerow([format_csv_value(row.get(col)) for col in columns])

    content = buffer.getvalue().rstrip("\n")
    return BOM + content if include_bom else content


# ---------------------------------------------------------------------------
# Column presets
# ---------------------------------------------------------------------------

ORDER_COLUMNS = (
    "bestellnummer", "kunde", "email", "status", "zahlungsstatus",
    "zahlungsart", "zwischensumme", "versand", "gesamt", "datum",
)
ORDER_HEADERS = (
    "Bestellnummer", "Kunde", "E-Mail", "Status", "Zahlungsstatus",
    "Zahlungsart", "Zwischensumme (CHF)", "Versand (CHF)", "Gesamt (CHF)", "Datum",
)

APPOINTMENT_COLUMNS = (
    "id", "kunde", "mitarbeiter", "dienstleistungen", "datum",
    "uhrzeit", "dauer", "status", "preis",
)
APPOINTMENT_HEADERS = (
    "ID", "Kunde", "Mitarbeiter", "Dienstleistungen", "Datum",
    "Uhrzeit", "Dauer (Min.)", "Status", "Preis (CHF)",
)


def export_orders_rows(orders: Iterable[Mapping[str, Any]]) -> str:
    """Orders as produced by ``Order.to_dict()``."""
    rows = [
        {
            "bestellnummer": o["order_number"],
            "kunde": o.get("customer_name"),
            "email": o.get("customer_email"),
            "status": o["status"],
            "zahlungsstatus": o["payment_status"],
            "zahlungsart": o["payment_method"],
            "zwischensumme": Decimal(o["subtotal"]),
            "versand": Decimal(o["shipping"]),
            "gesamt": Decimal(o["total"]),
            "datum": o.get("created_at"),
        }
        for o in orders
    ]
    return array_to_csv(rows, ORDER_COLUMNS, ORDER_HEADERS)


def export_appointments_rows(appointments: Iterable[Mapping[str, Any]]) -> str:
    """Appointments as produced by ``Appointment.to_dict()``."""
    rows = []
    for a in appointments:
        starts_at = datetime.fromisoformat(a["starts_at"])
        rows.append({
            "id": a["id"],
            "kunde": a.get("customer_name"),
            "mitarbeiter": a.get("staff_name"),
            "dienstleistungen": ", ".join(a.get("service_names") or []),
            "datum": starts_at.date(),
            "uhrzeit": starts_at.strftime("%H:%M"),
            "dauer": a["duration_minutes"],
            "status": a["status"],
            "preis": Decimal(a["total_price"]),
        })
    return array_to_csv(rows, APPOINTMENT_COLUMNS, APPOINTMENT_HEADERS)
