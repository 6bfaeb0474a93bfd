"""Order service: checkout, admin status changes, cancellation and refunds.

All status and payment-status changes go through the pure state machine in
``domain.order_states``; this module only loads rows, calls the payment
gateway and persists the resulting ``OrderState``.

Stock policy:
- card orders are checked (with row locks) at checkout and deducted when
  the payment succeeds
- invoice and zero-total orders are deducted at checkout
- only a full refund or a cancellation puts stock back
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import (
    ErrorCode,
    NotFoundError,
    OrderError,
    ValidationError,
    VoucherError,
    error_from_result,
)
from core.models.base import utcnow
from core.resilience.idempotency import generate_idempotency_key
from domain.domain_config import SalonConfig
from domain.loyalty import points_required, redeemable_discount
from domain.money import from_smallest_unit, to_smallest_unit
from domain.order_states import (
    OrderLine,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundOutcome,
    apply_refund,
    apply_transition,
    calculate_order_totals,
    can_cancel_order,
    confirm_invoice_order,
    generate_order_number,
    mark_paid,
)
from domain.stock_ledger import StockRequest
from domain.vouchers import new_voucher_balance, normalize_code, redemption_amount, validate_voucher
from verticals.salon.models.db_models import Order, OrderItem
from verticals.salon.models.schemas import OrderCreate
from verticals.salon.notifications import EmailNotifier
from verticals.salon.payments import PaymentGateway
from verticals.salon.repository import OrderRepository, VoucherRepository
from verticals.salon.services.loyalty_service import LoyaltyService
from verticals.salon.services.stock import InventoryService

logger = logging.getLogger(__name__)

# Payment statuses where an open payment intent can still be cancelled
_OPEN_PAYMENT = (PaymentStatus.PENDING, PaymentStatus.AUTHORIZED, PaymentStatus.FAILED)


class OrderService:
    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway,
        notifier: EmailNotifier | None = None,
        config: SalonConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.gateway = gateway
        self.notifier = notifier
        self.config = config or SalonConfig.default()
        self.clock = clock
        self.orders = OrderRepository(session)
        self.vouchers = VoucherRepository(session)
        self.inventory = InventoryService(session)
        self.loyalty = LoyaltyService(session, self.config.loyalty)

    async def _order(self, salon_id: UUID, order_id: UUID) -> Order:
        order = await self.orders.get_instance(order_id, salon_id, for_update=True)
        if order is None:
            raise OrderError(ErrorCode.ORDER_NOT_FOUND, http_status=404)
        return order

    async def get_order(self, salon_id: UUID, order_id: UUID) -> dict:
        order = await self.orders.get(order_id, salon_id)
        if order is None:
            raise OrderError(ErrorCode.ORDER_NOT_FOUND, http_status=404)
        return order

    # -- Checkout --

    async def place_order(
        self,
        salon_id: UUID,
        data: OrderCreate,
        *,
        customer_id: UUID | None = None,
    ) -> dict:
        """Create an order from the cart.

        Returns ``{"order": ..., "client_secret": ...}``; the client secret
        is only set for card orders that still need a payment.
        """
        now = self.clock()
        shop = self.config.shop
        shipping_method = shop.shipping_method(data.shipping_method.value)
        if shipping_method is None:
            raise ValidationError({"shipping_method": "Unbekannte Versandart."})
        if data.points_to_redeem and customer_id is None:
            raise ValidationError({"points_to_redeem": "Punkte können nur mit Kundenkonto eingelöst werden."})

        requests = [StockRequest(str(i.product_id), i.quantity) for i in data.items]
        products = await self.inventory.check_availability(salon_id, requests)
        lines = [
            OrderLine(
                product_id=str(item.product_id),
                quantity=item.quantity,
                unit_price=from_smallest_unit(products[item.product_id].price_minor, shop.currency),
                product_name=products[item.product_id].name,
            )
            for item in data.items
        ]
        remaining = calculate_order_totals(lines, shipping_method, Decimal("0"), shop).total
        order_id = uuid.uuid4()
        discount = Decimal("0")

        voucher_code = None
        if data.voucher_code:
            voucher_code = normalize_code(data.voucher_code)
            record = await self.vouchers.get_by_code(salon_id, voucher_code, for_update=True)
            voucher = record.to_domain() if record else None
            result = validate_voucher(voucher, str(salon_id), now)
            if not result.passed:
                status = 404 if result.error_code == ErrorCode.VOUCHER_NOT_FOUND else None
                raise error_from_result(result, VoucherError, http_status=status)
            applied = redemption_amount(voucher, remaining)
            record.remaining_value_minor = to_smallest_unit(
                new_voucher_balance(voucher.remaining_value, applied)
            )
            discount += applied
            remaining -= applied

        points_used = 0
        if data.points_to_redeem:
            per_unit = self.config.loyalty.points_per_redemption_unit
            value = redeemable_discount(data.points_to_redeem, remaining, per_unit)
            # never burn more points than the discount needs
            points_used = min(points_required(value, per_unit), data.points_to_redeem)
            if points_used:
                discount += await self.loyalty.redeem_points(
                    salon_id,
                    customer_id,
                    points_used,
                    reference_type="order",
                    reference_id=str(order_id),
                )

        totals = calculate_order_totals(lines, shipping_method, discount, shop)
        currency = shop.currency
        order = Order(
            id=order_id,
            salon_id=salon_id,
            order_number=generate_order_number(),
            customer_id=customer_id,
            customer_name=data.customer_name,
            customer_email=data.customer_email,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_method=data.payment_method.value,
            shipping_method=shipping_method.id,
            currency=currency,
            subtotal_minor=to_smallest_unit(totals.subtotal, currency),
            discount_minor=to_smallest_unit(totals.discount, currency),
            shipping_minor=to_smallest_unit(totals.shipping, currency),
            total_minor=to_smallest_unit(totals.total, currency),
            refunded_minor=0,
            voucher_code=voucher_code,
            points_redeemed=points_used,
            stock_deducted=False,
        )
        order.items = [
            OrderItem(
                product_id=UUID(line.product_id),
                product_name=line.product_name,
                quantity=line.quantity,
                unit_price_minor=to_smallest_unit(line.unit_price, currency),
                total_minor=to_smallest_unit(line.line_total, currency),
            )
            for line in lines
        ]
        self.session.add(order)
        await self.session.flush()

        client_secret = None
        if data.payment_method == PaymentMethod.INVOICE:
            order.apply_state(confirm_invoice_order(order.to_state()))
            await self.inventory.deduct_for_order(order)
        elif order.total_minor == 0:
            order.apply_state(mark_paid(order.to_state()))
            order.paid_at = now
            await self.inventory.deduct_for_order(order)
        else:
            intent = await self.gateway.create_payment_intent(
                order.total_minor,
                currency,
                metadata={
                    "order_id": str(order.id),
                    "order_number": order.order_number,
                    "salon_id": str(salon_id),
                },
                idempotency_key=generate_idempotency_key("payment_intent", order_id=str(order.id)),
            )
            order.payment_intent_id = intent.id
            client_secret = intent.client_secret
        await self.session.flush()

        logger.info(
            "Order placed",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "payment_method": order.payment_method,
                "total_minor": order.total_minor,
            },
        )
        payload = order.to_dict()
        if self.notifier and order.status != OrderStatus.PENDING.value:
            await self.notifier.order_confirmation(payload)
        return {"order": payload, "client_secret": client_secret}

    # -- Admin status changes --

    async def update_status(self, salon_id: UUID, order_id: UUID, target: OrderStatus) -> dict:
        """Move an order along the status table.

        Cancellation and refunds have their own operations; ``paid`` is only
        set by hand for invoice orders (card payments arrive by webhook).
        """
        target = OrderStatus(target)
        if target == OrderStatus.CANCELLED:
            return await self.cancel_order(salon_id, order_id)
        if target == OrderStatus.REFUNDED:
            raise ValidationError({"status": "Erstattungen laufen über die Erstattungsfunktion."})

        order = await self._order(salon_id, order_id)
        state = order.to_state()
        if target == OrderStatus.PAID:
            if state.payment_method != PaymentMethod.INVOICE:
                raise ValidationError({"status": "Kartenzahlungen werden über den Zahlungsanbieter bestätigt."})
            order.apply_state(mark_paid(state))
            order.paid_at = self.clock()
            await self._award_points(order)
        else:
            order.apply_state(apply_transition(state, target))
            if target == OrderStatus.SHIPPED:
                order.shipped_at = self.clock()
        await self.session.flush()
        logger.info(
            "Order status changed",
            extra={"order_id": str(order.id), "from": state.status.value, "to": target.value},
        )
        return order.to_dict()

    async def mark_shipped(
        self, salon_id: UUID, order_id: UUID, tracking_number: str | None = None
    ) -> dict:
        order = await self._order(salon_id, order_id)
        order.apply_state(apply_transition(order.to_state(), OrderStatus.SHIPPED))
        order.shipped_at = self.clock()
        order.tracking_number = tracking_number
        await self.session.flush()
        logger.info("Order shipped", extra={"order_id": str(order.id)})
        return order.to_dict()

    # -- Cancellation --

    async def cancel_order(
        self,
        salon_id: UUID,
        order_id: UUID,
        *,
        customer_id: UUID | None = None,
        reason: str | None = None,
    ) -> dict:
        """Cancel an order that has not been delivered.

        With ``customer_id`` the order must belong to that customer. Captured
        money is refunded in full first, which leaves a paid order ``refunded``
        and a processing or shipped one ``cancelled``. Stock that was deducted
        goes back; redeemed points are restored. Voucher balances are not
        restored.
        """
        order = await self._order(salon_id, order_id)
        if customer_id is not None and order.customer_id != customer_id:
            raise NotFoundError(ErrorCode.ORDER_NOT_FOUND)

        state = order.to_state()
        result = can_cancel_order(state)
        if not result.passed:
            raise error_from_result(result, OrderError, http_status=409)

        if result.details["refund_required"]:
            await self._refund(order, state.refundable_amount, reason or "order_cancelled")
        else:
            if order.payment_intent_id and state.payment_status in _OPEN_PAYMENT:
                await self.gateway.cancel_payment_intent(order.payment_intent_id)
            cancelled = apply_transition(state, OrderStatus.CANCELLED)
            if cancelled.payment_status in _OPEN_PAYMENT:
                cancelled = replace(cancelled, payment_status=PaymentStatus.CANCELLED)
            order.apply_state(cancelled)

        await self._release(order)
        order.cancelled_at = self.clock()
        await self.session.flush()
        logger.info(
            "Order cancelled",
            extra={"order_id": str(order.id), "status": order.status, "reason": reason},
        )
        return order.to_dict()

    async def _release(self, order: Order) -> None:
        """Put back stock and points held by an order that will not be fulfilled."""
        await self.inventory.restock_for_order(order)
        if order.points_redeemed and order.customer_id is not None:
            await self.loyalty.restore_points(
                order.salon_id,
                order.customer_id,
                order.points_redeemed,
                reference_type="order",
                reference_id=str(order.id),
            )

    async def _award_points(self, order: Order) -> None:
        if order.customer_id is None:
            return
        await self.loyalty.award_points(
            order.salon_id,
            order.customer_id,
            from_smallest_unit(order.total_minor, order.currency),
            reference_type="order",
            reference_id=str(order.id),
            description=f"Bestellung {order.order_number}",
        )

    # -- Refunds --

    async def refund_order(
        self,
        salon_id: UUID,
        order_id: UUID,
        amount: Decimal | None = None,
        reason: str | None = None,
    ) -> dict:
        """Refund ``amount`` (default: everything still refundable).

        The amount is clamped to what is left, so repeating a refund never
        refunds twice: a clamped amount of zero returns without calling the
        payment processor.
        """
        order = await self._order(salon_id, order_id)
        state = order.to_state()
        if state.payment_status not in (
            PaymentStatus.CAPTURED,
            PaymentStatus.PARTIALLY_REFUNDED,
            PaymentStatus.REFUNDED,
        ):
            raise OrderError(ErrorCode.ORDER_NOT_PAID, http_status=409)

        outcome, refund_id = await self._refund(
            order, amount if amount is not None else state.refundable_amount, reason
        )
        if outcome.is_noop:
            logger.info("Refund skipped, nothing left to refund", extra={"order_id": str(order.id)})
            return {"order": order.to_dict(), "refunded": "0.00", "refund_id": None}
        if outcome.is_full_refund and order.status == OrderStatus.CANCELLED.value:
            order.cancelled_at = self.clock()
        await self.session.flush()
        return {"order": order.to_dict(), "refunded": f"{outcome.applied_amount:.2f}", "refund_id": refund_id}

    async def _refund(
        self, order: Order, amount: Decimal, reason: str | None
    ) -> tuple[RefundOutcome, str | None]:
        """Refund through the processor and apply the outcome; restocks on a full refund."""
        outcome = apply_refund(order.to_state(), amount)
        if outcome.is_noop:
            return outcome, None

        refund_id = None
        applied_minor = to_smallest_unit(outcome.applied_amount, order.currency)
        if order.payment_intent_id:
            refund = await self.gateway.create_refund(
                order.payment_intent_id,
                applied_minor,
                idempotency_key=generate_idempotency_key(
                    "refund",
                    order_id=str(order.id),
                    refunded_before=order.refunded_minor,
                    amount=applied_minor,
                ),
            )
            refund_id = refund.id

        order.apply_state(outcome.order)
        if outcome.is_full_refund:
            await self.inventory.restock_for_order(order)
        await self.session.flush()
        logger.info(
            "Order refunded",
            extra={
                "order_id": str(order.id),
                "amount": str(outcome.applied_amount),
                "full": outcome.is_full_refund,
                "reason": reason,
            },
        )
        return outcome, refund_id

    # -- Listing / export --

    async def list_orders(
        self, salon_id: UUID, page: int = 1, limit: int = 50, status: OrderStatus | None = None
    ) -> tuple[list[dict], int]:
        filters = {"status": status.value} if status else None
        return await self.orders.list(salon_id, page=page, limit=limit, filters=filters)

    async def export_rows(
        self, salon_id: UUID, start: datetime | None = None, end: datetime | None = None
    ) -> list[dict]:
        return [o.to_dict() for o in await self.orders.for_export(salon_id, start, end)]
