"""User-facing error messages (German).

Keyed by ``ErrorCode`` value. Placeholders in braces are filled by
``get_error_message``.
"""

ERROR_MESSAGES: dict[str, str] = {
    # Booking
    "BOOKING_SLOT_ALREADY_TAKEN": (
        "Dieser Termin wurde soeben vergeben. Bitte wähle einen anderen Zeitpunkt."
    ),
    "BOOKING_SLOT_EXPIRED": "Deine Reservierung ist abgelaufen. Bitte wähle einen neuen Termin.",
    "BOOKING_LEAD_TIME_VIOLATED": "Termine müssen mindestens {hours} Stunden im Voraus gebucht werden.",
    "BOOKING_HORIZON_EXCEEDED": "Termine können maximal {days} Tage im Voraus gebucht werden.",
    "BOOKING_STAFF_NOT_AVAILABLE": "Der gewählte Mitarbeiter ist zu dieser Zeit nicht verfügbar.",
    "BOOKING_CANCELLATION_TOO_LATE": (
        "Termine können nur bis {hours} Stunden vorher storniert werden."
    ),
    "BOOKING_ALREADY_CANCELLED": "Dieser Termin wurde bereits storniert.",
    "BOOKING_NOT_FOUND": "Der Termin wurde nicht gefunden.",
    "BOOKING_INVALID_TRANSITION": "Dieser Termin kann nicht mehr geändert werden.",
    # Payment
    "PAYMENT_DECLINED": (
        "Deine Karte wurde abgelehnt. Bitte versuche es mit einer anderen Zahlungsmethode."
    ),
    "PAYMENT_INSUFFICIENT_FUNDS": "Das Guthaben auf deiner Karte reicht nicht aus.",
    "PAYMENT_INVALID_CARD": "Die Kartendaten sind ungültig. Bitte überprüfe deine Eingaben.",
    "PAYMENT_EXPIRED_CARD": "Deine Karte ist abgelaufen.",
    "PAYMENT_PROCESSING_ERROR": (
        "Bei der Zahlung ist ein Fehler aufgetreten. Bitte versuche es später erneut."
    ),
    "PAYMENT_WEBHOOK_INVALID": "Ungültige Webhook-Signatur.",
    # Order
    "ORDER_NOT_FOUND": "Die Bestellung wurde nicht gefunden.",
    "ORDER_ALREADY_SHIPPED": "Diese Bestellung wurde bereits versendet.",
    "ORDER_ALREADY_CANCELLED": "Diese Bestellung wurde bereits storniert.",
    "ORDER_ITEM_OUT_OF_STOCK": "Ein Produkt in deinem Warenkorb ist leider nicht mehr verfügbar.",
    "ORDER_INVALID_TRANSITION": "Ungültiger Statuswechsel der Bestellung.",
    "ORDER_NOT_PAID": "Bestellung wurde nicht bezahlt.",
    # Voucher
    "VOUCHER_NOT_FOUND": "Dieser Gutscheincode existiert nicht.",
    "VOUCHER_EXPIRED": "Dieser Gutschein ist leider abgelaufen.",
    "VOUCHER_ALREADY_USED": "Dieser Gutschein wurde bereits vollständig eingelöst.",
    "VOUCHER_INSUFFICIENT_BALANCE": "Das Guthaben auf diesem Gutschein reicht nicht aus.",
    "VOUCHER_NOT_APPLICABLE": "Dieser Gutschein kann für diesen Einkauf nicht verwendet werden.",
    # Loyalty
    "LOYALTY_INSUFFICIENT_POINTS": "Nicht genügend Punkte. Verfügbar: {available}, Benötigt: {required}",
    # Generic
    "VALIDATION_ERROR": "Bitte überprüfe deine Eingaben.",
    "FORBIDDEN": "Du hast keine Berechtigung für diese Aktion.",
    "NOT_FOUND": "Der Eintrag wurde nicht gefunden.",
    "INTERNAL_ERROR": "Ein unerwarteter Fehler ist aufgetreten. Bitte versuche es später erneut.",
}


def get_error_message(code: str, **replacements: object) -> str:
    """Return the message for ``code``, falling back to the internal error text.

    Placeholders missing from ``replacements`` are left in place::

        get_error_message("BOOKING_HORIZON_EXCEEDED", days=30)
    """
    message = ERROR_MESSAGES.get(code, ERROR_MESSAGES["INTERNAL_ERROR"])
    for key, value in replacements.items():
        message = message.replace(f"{{{key}}}", str(value))
    return message
