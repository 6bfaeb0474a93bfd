"""Order status machine and payment-status bookkeeping.

Order states are enums with an explicit transition table. Payment status is
never set freely: it follows from processor events (``map_processor_status``)
and from cumulative refunds (``apply_refund``).
"""

import secrets
import time
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Iterable

from core.errors import ErrorCode, InvalidTransitionError, UnknownPaymentStatusError
from domain.domain_config import ShippingMethod, ShopConfig
from domain.money import round_money, to_decimal
from domain.rules_engine import RuleResult


# ---------------------------------------------------------------------------
# State definitions
# ---------------------------------------------------------------------------

class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PaymentMethod(str, Enum):
    CARD = "card"
    INVOICE = "invoice"


# ---------------------------------------------------------------------------
# Transition rules
# ---------------------------------------------------------------------------

# Allowed transitions: {current_state: [allowed_next_states]}
ORDER_TRANSITIONS: dict[OrderStatus, list[OrderStatus]] = {
    OrderStatus.PENDING: [OrderStatus.PAID, OrderStatus.CANCELLED],
    # Invoice orders enter CONFIRMED at checkout and are settled later.
    OrderStatus.CONFIRMED: [
        OrderStatus.PAID,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    ],
    OrderStatus.PAID: [
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    ],
    OrderStatus.PROCESSING: [OrderStatus.SHIPPED, OrderStatus.CANCELLED],
    OrderStatus.SHIPPED: [OrderStatus.DELIVERED, OrderStatus.CANCELLED],
    OrderStatus.DELIVERED: [OrderStatus.COMPLETED, OrderStatus.REFUNDED],
    OrderStatus.COMPLETED: [OrderStatus.REFUNDED],
    OrderStatus.CANCELLED: [],  # terminal
    OrderStatus.REFUNDED: [],   # terminal
}

# Payment processor (Stripe PaymentIntent) status -> internal payment status
_PROCESSOR_STATUS_MAP: dict[str, PaymentStatus] = {
    "requires_payment_method": PaymentStatus.PENDING,
    "requires_capture": PaymentStatus.AUTHORIZED,
    "succeeded": PaymentStatus.CAPTURED,
    "canceled": PaymentStatus.CANCELLED,
}

REFUNDABLE_PAYMENT_STATUSES = frozenset({PaymentStatus.CAPTURED, PaymentStatus.PARTIALLY_REFUNDED})


# ---------------------------------------------------------------------------
# Order snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OrderLine:
    product_id: str
    quantity: int
    unit_price: Decimal
    product_name: str = ""

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValueError("quantity must be a positive integer")

    @property
    def line_total(self) -> Decimal:
        return to_decimal(self.unit_price) * self.quantity


@dataclass(frozen=True)
class OrderState:
    """The slice of an order the state machine reasons about."""

    status: OrderStatus
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: PaymentMethod = PaymentMethod.CARD
    subtotal: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    shipping: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    refunded_amount: Decimal = Decimal("0")

    @property
    def refundable_amount(self) -> Decimal:
        return max(Decimal("0"), self.total - self.refunded_amount)

    @property
    def is_terminal(self) -> bool:
        return not ORDER_TRANSITIONS[self.status]


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount: Decimal
    shipping: Decimal
    total: Decimal


@dataclass(frozen=True)
class RefundOutcome:
    order: OrderState
    applied_amount: Decimal
    is_full_refund: bool

    @property
    def is_noop(self) -> bool:
        return self.applied_amount == 0


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

def allowed_transitions(current: OrderStatus | str) -> list[OrderStatus]:
    return list(ORDER_TRANSITIONS[OrderStatus(current)])


def can_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]


def apply_transition(order: OrderState, target: OrderStatus | str) -> OrderState:
    """Return ``order`` moved to ``target``.

    Raises InvalidTransitionError if ``target`` is not reachable from the
    current status.
    """
    target = OrderStatus(target)
    if not can_transition(order.status, target):
        raise InvalidTransitionError(
            ErrorCode.ORDER_INVALID_TRANSITION,
            order.status.value,
            target.value,
            [s.value for s in ORDER_TRANSITIONS[order.status]],
        )
    return replace(order, status=target)


def confirm_invoice_order(order: OrderState) -> OrderState:
    """Invoice checkout: a fresh pending order is confirmed without a payment intent."""
    if order.payment_method != PaymentMethod.INVOICE or order.status != OrderStatus.PENDING:
        raise InvalidTransitionError(
            ErrorCode.ORDER_INVALID_TRANSITION,
            order.status.value,
            OrderStatus.CONFIRMED.value,
            [s.value for s in ORDER_TRANSITIONS[order.status]],
        )
    return replace(order, status=OrderStatus.CONFIRMED)


def mark_paid(order: OrderState) -> OrderState:
    """Captured payment: pending/confirmed -> paid, payment status captured."""
    return replace(apply_transition(order, OrderStatus.PAID), payment_status=PaymentStatus.CAPTURED)


def map_processor_status(status: str) -> PaymentStatus:
    """Map a payment-intent status to PaymentStatus; unknown statuses raise."""
    try:
        return _PROCESSOR_STATUS_MAP[status]
    except KeyError:
        raise UnknownPaymentStatusError(status) from None


def can_cancel_order(order: OrderState) -> RuleResult:
    """Whether the order can still be cancelled.

    Passing results carry ``refund_required``: captured money must be refunded
    as part of the cancellation.
    """
    if order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
        return RuleResult.fail(
            "order_cancel",
            ErrorCode.ORDER_ALREADY_CANCELLED,
            "Bestellung wurde bereits storniert.",
            status=order.status.value,
        )
    if not can_transition(order.status, OrderStatus.CANCELLED):
        code = (
            ErrorCode.ORDER_ALREADY_SHIPPED
            if order.status in (OrderStatus.DELIVERED, OrderStatus.COMPLETED)
            else ErrorCode.ORDER_INVALID_TRANSITION
        )
        return RuleResult.fail(
            "order_cancel", code, "Bestellung kann nicht mehr storniert werden.",
            status=order.status.value,
        )
    return RuleResult.ok(
        "order_cancel",
        refund_required=order.payment_status in REFUNDABLE_PAYMENT_STATUSES,
    )


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------

def apply_refund(order: OrderState, amount: Decimal | int | float | str) -> RefundOutcome:
    """Apply a refund of ``amount``.

    The amount is clamped to ``[0, total - refunded_amount]``, so replays and
    over-refunds never push ``refunded_amount`` past ``total``. Once the
    cumulative refund covers the total the payment is ``refunded`` and the
    order moves to REFUNDED (or CANCELLED where REFUNDED is not reachable);
    otherwise the payment is ``partially_refunded`` and the status is kept.
    """
    requested = round_money(amount)
    applied = min(max(requested, Decimal("0")), order.refundable_amount)
    if applied == 0:
        return RefundOutcome(order=order, applied_amount=Decimal("0"), is_full_refund=False)

    refunded = order.refunded_amount + applied
    if refunded >= order.total:
        status = order.status
        if can_transition(status, OrderStatus.REFUNDED):
            status = OrderStatus.REFUNDED
        elif can_transition(status, OrderStatus.CANCELLED):
            status = OrderStatus.CANCELLED
        updated = replace(
            order,
            status=status,
            payment_status=PaymentStatus.REFUNDED,
            refunded_amount=refunded,
        )
        return RefundOutcome(order=updated, applied_amount=applied, is_full_refund=True)

    updated = replace(
        order,
        payment_status=PaymentStatus.PARTIALLY_REFUNDED,
        refunded_amount=refunded,
    )
    return RefundOutcome(order=updated, applied_amount=applied, is_full_refund=False)


# ---------------------------------------------------------------------------
# Checkout totals
# ---------------------------------------------------------------------------

def calculate_order_totals(
    lines: Iterable[OrderLine],
    shipping_method: ShippingMethod,
    discount: Decimal | int | float = Decimal("0"),
    shop: ShopConfig | None = None,
) -> OrderTotals:
    """Subtotal, shipping and total; shipping is free at or above the threshold."""
    shop = shop or ShopConfig()
    subtotal = round_money(sum((line.line_total for line in lines), Decimal("0")))
    discount = round_money(max(to_decimal(discount), Decimal("0")))
    shipping = (
        Decimal("0.00")
        if subtotal >= shop.free_shipping_threshold
        else round_money(shipping_method.price)
    )
    total = max(Decimal("0.00"), subtotal - discount + shipping)
    return OrderTotals(subtotal=subtotal, discount=discount, shipping=shipping, total=total)


def _base36(number: int) -> str:
    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out or "0"


def generate_order_number() -> str:
    """Human-facing order number, e.g. ``SW-LX3K9Q2A-7F3B``."""
    timestamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice("0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ") for _ in range(4))
    return f"SW-{timestamp}-{suffix}"
