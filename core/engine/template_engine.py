"""Template Engine: formats notification payloads into e-mail content.

Each vertical registers renderer functions per template name; the engine
dispatches on the name. A generic fallback handles any unregistered
template so a missing renderer never blocks a notification.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from html import escape
from typing import Any, Callable, Dict


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def fmt_money(value: Decimal | float | int | None, currency: str = "CHF") -> str:
    """Format a number as currency, e.g. ``CHF 1'250.50``."""
    if value is None:
        return "–"
    formatted = f"{Decimal(str(value)):,.2f}".replace(",", "'")
    return f"{currency} {formatted}"


def fmt_datetime(value: datetime | None) -> str:
    """Swiss date/time format: ``24.12.2025, 14:30``."""
    if value is None:
        return "–"
    return value.strftime("%d.%m.%Y, %H:%M")


def fmt_date(value: datetime | None) -> str:
    if value is None:
        return "–"
    return value.strftime("%d.%m.%Y")


# ---------------------------------------------------------------------------
# Rendered output
# ---------------------------------------------------------------------------

@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str


def paragraphs_to_html(lines: list[str]) -> str:
    return "".join(f"<p>{escape(line)}</p>" for line in lines if line)


# ---------------------------------------------------------------------------
# Generic fallback renderer
# ---------------------------------------------------------------------------

def render_generic(template: str, context: Dict[str, Any]) -> RenderedEmail:
    """Generic fallback: one ``key: value`` line per public context entry."""
    lines = [
        f"{key}: {value}"
        for key, value in context.items()
        if not key.startswith("_") and not isinstance(value, (list, dict))
    ]
    subject = context.get("_subject") or template.replace("_", " ").capitalize()
    return RenderedEmail(subject=subject, html=paragraphs_to_html(lines), text="\n".join(lines))


# ---------------------------------------------------------------------------
# Renderer type and registry
# ---------------------------------------------------------------------------

EmailRenderer = Callable[[Dict[str, Any]], RenderedEmail]

_RENDERERS: Dict[str, EmailRenderer] = {}


def register_renderer(template: str, renderer: EmailRenderer) -> None:
    """Register a renderer for ``template``.

    Example::

        def render_booking_confirmation(context):
            return RenderedEmail(subject=..., html=..., text=...)

        register_renderer("booking_confirmation", render_booking_confirmation)
    """
    _RENDERERS[template] = renderer


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class TemplateEngine:
    """Formats notification payloads into subject, HTML and plain text.

    Usage::

        email = TemplateEngine.render("order_confirmation", {"order_number": ...})
    """

    @staticmethod
    def render(template: str, context: Dict[str, Any]) -> RenderedEmail:
        renderer = _RENDERERS.get(template)
        if renderer is None:
            return render_generic(template, context)
        return renderer(context)

    @staticmethod
    def list_templates() -> list[str]:
        """Return template names with registered renderers."""
        return list(_RENDERERS.keys())
