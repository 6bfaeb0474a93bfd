"""Payment webhook processing.

Each event is claimed in the idempotency store before its effects run, in
the same transaction, so a redelivered event id is answered with
``already_processed`` and touches nothing. Effects run inside a SAVEPOINT:
an event that no longer fits the order (e.g. a payment for an order that
was cancelled meanwhile) is rolled back, recorded as ``ignored`` and
logged for manual review.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ErrorCode, InvalidTransitionError, PaymentError
from core.models.base import utcnow
from core.resilience.idempotency import IdempotencyStatus, IdempotencyStore
from domain.domain_config import SalonConfig
from domain.money import from_smallest_unit
from domain.order_states import (
    OrderStatus,
    PaymentStatus,
    apply_refund,
    apply_transition,
    map_processor_status,
    mark_paid,
)
from verticals.salon.models.db_models import Order
from verticals.salon.notifications import EmailNotifier
from verticals.salon.repository import OrderRepository
from verticals.salon.services.loyalty_service import LoyaltyService
from verticals.salon.services.stock import InventoryService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookResult:
    status: IdempotencyStatus
    action: str | None = None

    def to_dict(self) -> dict:
        return {"received": True, "status": self.status.value, "action": self.action}


Handler = Callable[[dict[str, Any]], Awaitable[str | None]]


class WebhookService:
    """Applies Stripe events to orders, stock and loyalty accounts.

    Handlers return the action taken, or None when the event does not
    concern any known order.
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: EmailNotifier | None = None,
        config: SalonConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.notifier = notifier
        self.config = config or SalonConfig.default()
        self.clock = clock
        self.store = IdempotencyStore(session)
        self.orders = OrderRepository(session)
        self.inventory = InventoryService(session)
        self.loyalty = LoyaltyService(session, self.config.loyalty)
        self._handlers: dict[str, Handler] = {
            "payment_intent.succeeded": self._payment_succeeded,
            "payment_intent.amount_capturable_updated": self._payment_authorized,
            "payment_intent.payment_failed": self._payment_failed,
            "payment_intent.canceled": self._payment_canceled,
            "charge.refunded": self._charge_refunded,
            "charge.dispute.created": self._dispute,
            "charge.dispute.closed": self._dispute,
        }

    async def process_event(self, event: dict[str, Any]) -> WebhookResult:
        event_id = event.get("id")
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        if not event_id or not event_type:
            raise PaymentError(ErrorCode.PAYMENT_WEBHOOK_INVALID)

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug("Unhandled webhook event type", extra={"event_type": event_type})
            return WebhookResult(IdempotencyStatus.IGNORED)

        claimed = await self.store.claim(
            event_id, event_type, payload={"object_id": obj.get("id")}
        )
        if not claimed:
            return WebhookResult(IdempotencyStatus.ALREADY_PROCESSED)

        try:
            async with self.session.begin_nested():
                action = await handler(obj)
        except InvalidTransitionError as exc:
            logger.error(
                "Webhook event conflicts with order state, manual review needed",
                extra={"event_id": event_id, "event_type": event_type, **exc.details},
            )
            await self.store.mark(event_id, IdempotencyStatus.IGNORED)
            return WebhookResult(IdempotencyStatus.IGNORED, "manual_review")

        if action is None:
            await self.store.mark(event_id, IdempotencyStatus.IGNORED)
            return WebhookResult(IdempotencyStatus.IGNORED)

        logger.info(
            "Webhook event processed",
            extra={"event_id": event_id, "event_type": event_type, "action": action},
        )
        return WebhookResult(IdempotencyStatus.PROCESSED, action)

    async def _order_for_intent(self, payment_intent_id: str | None) -> Order | None:
        if not payment_intent_id:
            return None
        order = await self.orders.get_by_payment_intent(payment_intent_id)
        if order is None:
            logger.warning(
                "No order for payment intent", extra={"payment_intent_id": payment_intent_id}
            )
        return order

    # -- payment_intent.* --

    async def _payment_succeeded(self, intent: dict[str, Any]) -> str | None:
        order = await self._order_for_intent(intent.get("id"))
        if order is None:
            return None
        if map_processor_status(intent.get("status", "succeeded")) != PaymentStatus.CAPTURED:
            return None

        received = intent.get("amount_received", intent.get("amount"))
        if received is not None and int(received) != order.total_minor:
            logger.error(
                "Payment amount differs from order total",
                extra={"order_id": str(order.id), "received": received, "total": order.total_minor},
            )

        order.apply_state(mark_paid(order.to_state()))
        order.paid_at = self.clock()
        await self.inventory.deduct_for_order(order)
        if order.customer_id is not None:
            await self.loyalty.award_points(
                order.salon_id,
                order.customer_id,
                from_smallest_unit(order.total_minor, order.currency),
                reference_type="order",
                reference_id=str(order.id),
                description=f"Bestellung {order.order_number}",
            )
        await self.session.flush()
        if self.notifier:
            await self.notifier.order_confirmation(order.to_dict())
        return "order_paid"

    async def _payment_authorized(self, intent: dict[str, Any]) -> str | None:
        order = await self._order_for_intent(intent.get("id"))
        if order is None:
            return None
        status = map_processor_status(intent.get("status", "requires_capture"))
        if order.payment_status == PaymentStatus.PENDING.value:
            order.apply_state(replace(order.to_state(), payment_status=status))
            await self.session.flush()
        return "payment_authorized"

    async def _payment_failed(self, intent: dict[str, Any]) -> str | None:
        order = await self._order_for_intent(intent.get("id"))
        if order is None:
            return None
        error = intent.get("last_payment_error") or {}
        logger.warning(
            "Payment failed",
            extra={"order_id": str(order.id), "decline_code": error.get("decline_code") or error.get("code")},
        )
        # the order stays pending so the customer can retry with another card
        if order.status == OrderStatus.PENDING.value:
            order.apply_state(replace(order.to_state(), payment_status=PaymentStatus.FAILED))
            await self.session.flush()
        return "payment_failed"

    async def _payment_canceled(self, intent: dict[str, Any]) -> str | None:
        order = await self._order_for_intent(intent.get("id"))
        if order is None:
            return None
        payment_status = map_processor_status(intent.get("status", "canceled"))
        if order.status == OrderStatus.CANCELLED.value:
            return None
        cancelled = apply_transition(order.to_state(), OrderStatus.CANCELLED)
        order.apply_state(replace(cancelled, payment_status=payment_status))
        order.cancelled_at = self.clock()
        await self.inventory.restock_for_order(order)
        if order.points_redeemed and order.customer_id is not None:
            await self.loyalty.restore_points(
                order.salon_id,
                order.customer_id,
                order.points_redeemed,
                reference_type="order",
                reference_id=str(order.id),
            )
        await self.session.flush()
        return "order_cancelled"

    # -- charge.* --

    async def _charge_refunded(self, charge: dict[str, Any]) -> str | None:
        order = await self._order_for_intent(charge.get("payment_intent"))
        if order is None:
            return None
        # amount_refunded is cumulative; apply only what is not recorded yet
        delta_minor = int(charge.get("amount_refunded", 0)) - order.refunded_minor
        if delta_minor <= 0:
            return "refund_already_recorded"
        outcome = apply_refund(order.to_state(), from_smallest_unit(delta_minor, order.currency))
        order.apply_state(outcome.order)
        if outcome.is_full_refund:
            await self.inventory.restock_for_order(order)
        await self.session.flush()
        return "order_refunded" if outcome.is_full_refund else "order_partially_refunded"

    async def _dispute(self, dispute: dict[str, Any]) -> str | None:
        logger.warning(
            "Payment dispute update",
            extra={
                "dispute_id": dispute.get("id"),
                "charge_id": dispute.get("charge"),
                "status": dispute.get("status"),
                "amount": dispute.get("amount"),
            },
        )
        return "dispute_logged"
