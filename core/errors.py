"""Domain error taxonomy.

Every failure that reaches a caller carries a stable ``ErrorCode`` and a
user-facing message. Rule functions report failures through ``RuleResult``;
services raise the ``DomainError`` subclasses below; the API layer turns
them into JSON bodies using ``http_status``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from core.messages import get_error_message


class ErrorCode(str, Enum):
    """Stable error codes shared by rules, services and the API."""

    # Booking
    BOOKING_SLOT_ALREADY_TAKEN = "BOOKING_SLOT_ALREADY_TAKEN"
    BOOKING_SLOT_EXPIRED = "BOOKING_SLOT_EXPIRED"
    BOOKING_LEAD_TIME_VIOLATED = "BOOKING_LEAD_TIME_VIOLATED"
    BOOKING_HORIZON_EXCEEDED = "BOOKING_HORIZON_EXCEEDED"
    BOOKING_STAFF_NOT_AVAILABLE = "BOOKING_STAFF_NOT_AVAILABLE"
    BOOKING_CANCELLATION_TOO_LATE = "BOOKING_CANCELLATION_TOO_LATE"
    BOOKING_ALREADY_CANCELLED = "BOOKING_ALREADY_CANCELLED"
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
    BOOKING_INVALID_TRANSITION = "BOOKING_INVALID_TRANSITION"

    # Payment
    PAYMENT_DECLINED = "PAYMENT_DECLINED"
    PAYMENT_INSUFFICIENT_FUNDS = "PAYMENT_INSUFFICIENT_FUNDS"
    PAYMENT_INVALID_CARD = "PAYMENT_INVALID_CARD"
    PAYMENT_EXPIRED_CARD = "PAYMENT_EXPIRED_CARD"
    PAYMENT_PROCESSING_ERROR = "PAYMENT_PROCESSING_ERROR"
    PAYMENT_WEBHOOK_INVALID = "PAYMENT_WEBHOOK_INVALID"

    # Order
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    ORDER_ALREADY_SHIPPED = "ORDER_ALREADY_SHIPPED"
    ORDER_ALREADY_CANCELLED = "ORDER_ALREADY_CANCELLED"
    ORDER_ITEM_OUT_OF_STOCK = "ORDER_ITEM_OUT_OF_STOCK"
    ORDER_INVALID_TRANSITION = "ORDER_INVALID_TRANSITION"
    ORDER_NOT_PAID = "ORDER_NOT_PAID"

    # Voucher
    VOUCHER_NOT_FOUND = "VOUCHER_NOT_FOUND"
    VOUCHER_EXPIRED = "VOUCHER_EXPIRED"
    VOUCHER_ALREADY_USED = "VOUCHER_ALREADY_USED"
    VOUCHER_INSUFFICIENT_BALANCE = "VOUCHER_INSUFFICIENT_BALANCE"
    VOUCHER_NOT_APPLICABLE = "VOUCHER_NOT_APPLICABLE"

    # Loyalty
    LOYALTY_INSUFFICIENT_POINTS = "LOYALTY_INSUFFICIENT_POINTS"

    # Generic
    VALIDATION_ERROR = "VALIDATION_ERROR"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class DomainError(Exception):
    """Base class for all errors surfaced to callers."""

    http_status: int = 400

    def __init__(
        self,
        code: ErrorCode,
        message: str | None = None,
        *,
        http_status: int | None = None,
        field_errors: dict[str, str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.code = ErrorCode(code)
        self.message = message or get_error_message(self.code.value)
        if http_status is not None:
            self.http_status = http_status
        self.field_errors = field_errors
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.field_errors:
            body["field_errors"] = self.field_errors
        return body


class BookingError(DomainError):
    pass


class PaymentError(DomainError):
    pass


class OrderError(DomainError):
    pass


class VoucherError(DomainError):
    pass


class NotFoundError(DomainError):
    http_status = 404


class ForbiddenError(DomainError):
    http_status = 403

    def __init__(self, message: str | None = None):
        super().__init__(ErrorCode.FORBIDDEN, message)


class InternalError(DomainError):
    http_status = 500

    def __init__(self):
        super().__init__(ErrorCode.INTERNAL_ERROR)


class ValidationError(DomainError):
    """Input validation failure with a field -> message map."""

    def __init__(self, field_errors: dict[str, str], message: str | None = None):
        super().__init__(ErrorCode.VALIDATION_ERROR, message, field_errors=field_errors)


class InvalidTransitionError(DomainError):
    """Raised by the appointment and order state machines."""

    http_status = 409

    def __init__(self, code: ErrorCode, from_state: str, to_state: str, allowed: list[str]):
        self.from_state = from_state
        self.to_state = to_state
        self.allowed = allowed
        super().__init__(
            code,
            f"Cannot transition from {from_state} to {to_state}. Allowed: {allowed}",
            details={"from": from_state, "to": to_state, "allowed": allowed},
        )


class InsufficientStockError(OrderError):
    http_status = 409

    def __init__(self, shortages: list[dict[str, Any]]):
        self.shortages = shortages
        super().__init__(ErrorCode.ORDER_ITEM_OUT_OF_STOCK, details={"shortages": shortages})


class UnknownPaymentStatusError(PaymentError):
    """A payment processor status with no internal mapping."""

    http_status = 502

    def __init__(self, status: str):
        self.status = status
        super().__init__(
            ErrorCode.PAYMENT_PROCESSING_ERROR,
            f"Unrecognized payment processor status: {status!r}",
        )


def error_from_result(
    result: Any,
    error_cls: type[DomainError] = DomainError,
    *,
    http_status: int | None = None,
) -> DomainError:
    """Build a DomainError from a failed RuleResult."""
    return error_cls(
        result.error_code, result.message, http_status=http_status, details=result.details
    )
