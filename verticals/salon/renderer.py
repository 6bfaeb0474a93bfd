"""E-mail renderers for the salon vertical.

Registers one renderer per notification template with the template engine.
Contexts are the ``to_dict()`` payloads of the models, so amounts arrive as
decimal strings and timestamps as ISO strings.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from core.engine.template_engine import (
    RenderedEmail,
    fmt_datetime,
    fmt_money,
    paragraphs_to_html,
    register_renderer,
)


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _money(value: str | None, currency: str = "CHF") -> str:
    return fmt_money(Decimal(value) if value is not None else None, currency.upper())


def _email(subject: str, lines: list[str]) -> RenderedEmail:
    return RenderedEmail(subject=subject, html=paragraphs_to_html(lines), text="\n".join(lines))


def render_booking_confirmation(context: Dict[str, Any]) -> RenderedEmail:
    starts_at = fmt_datetime(_parse(context.get("starts_at")))
    services = ", ".join(context.get("service_names") or [])
    lines = [
        f"Hallo {context.get('customer_name', '')}",
        f"Dein Termin am {starts_at} ist bestätigt.",
        f"Leistungen: {services}" if services else "",
        f"Bei: {context['staff_name']}" if context.get("staff_name") else "",
        f"Preis: {_money(context.get('total_price'))}",
        "Wir freuen uns auf deinen Besuch!",
    ]
    return _email(f"Terminbestätigung – {starts_at}", lines)


def render_booking_cancellation(context: Dict[str, Any]) -> RenderedEmail:
    starts_at = fmt_datetime(_parse(context.get("starts_at")))
    lines = [
        f"Hallo {context.get('customer_name', '')}",
        f"Dein Termin am {starts_at} wurde storniert.",
        f"Grund: {context['cancellation_reason']}" if context.get("cancellation_reason") else "",
        "Du kannst jederzeit einen neuen Termin buchen.",
    ]
    return _email(f"Terminstornierung – {starts_at}", lines)


def render_order_confirmation(context: Dict[str, Any]) -> RenderedEmail:
    currency = context.get("currency", "chf")
    lines = [
        f"Hallo {context.get('customer_name', '')}",
        f"Vielen Dank für deine Bestellung {context.get('order_number', '')}.",
    ]
    for item in context.get("items") or []:
        lines.append(
            f"{item['quantity']}x {item['product_name']} – {_money(item['total'], currency)}"
        )
    lines.append(f"Zwischensumme: {_money(context.get('subtotal'), currency)}")
    if context.get("discount") and Decimal(context["discount"]) > 0:
        lines.append(f"Rabatt: -{_money(context['discount'], currency)}")
    lines.append(f"Versand: {_money(context.get('shipping'), currency)}")
    lines.append(f"Total: {_money(context.get('total'), currency)}")
    if context.get("payment_method") == "invoice":
        lines.append("Die Rechnung erhältst du mit der Lieferung.")
    return _email(f"Bestellbestätigung {context.get('order_number', '')}", lines)


# Auto-register on import
register_renderer("booking_confirmation", render_booking_confirmation)
register_renderer("booking_cancellation", render_booking_cancellation)
register_renderer("order_confirmation", render_order_confirmation)
