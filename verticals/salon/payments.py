"""Card payment gateway backed by Stripe.

The Stripe SDK is synchronous, so every call runs in a worker thread.
Amounts cross this boundary as integer minor units. SDK errors are mapped
to ``PaymentError`` codes here; callers never see Stripe exceptions.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import stripe

from core.errors import ErrorCode, PaymentError
from core.settings import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET

logger = logging.getLogger(__name__)

# Stripe card error code / decline code -> internal error code
_CARD_ERROR_CODES: dict[str, ErrorCode] = {
    "card_declined": ErrorCode.PAYMENT_DECLINED,
    "insufficient_funds": ErrorCode.PAYMENT_INSUFFICIENT_FUNDS,
    "expired_card": ErrorCode.PAYMENT_EXPIRED_CARD,
    "incorrect_number": ErrorCode.PAYMENT_INVALID_CARD,
    "invalid_number": ErrorCode.PAYMENT_INVALID_CARD,
    "incorrect_cvc": ErrorCode.PAYMENT_INVALID_CARD,
    "invalid_expiry_month": ErrorCode.PAYMENT_INVALID_CARD,
    "invalid_expiry_year": ErrorCode.PAYMENT_INVALID_CARD,
}


@dataclass(frozen=True)
class PaymentIntentResult:
    id: str
    status: str
    amount_minor: int
    client_secret: str | None = None


@dataclass(frozen=True)
class RefundResult:
    id: str
    status: str
    amount_minor: int


class PaymentGateway(Protocol):
    """What the order and webhook services need from a card processor."""

    async def create_payment_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> PaymentIntentResult: ...

    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentResult: ...

    async def cancel_payment_intent(self, payment_intent_id: str) -> PaymentIntentResult: ...

    async def create_refund(
        self,
        payment_intent_id: str,
        amount_minor: int,
        idempotency_key: str | None = None,
    ) -> RefundResult: ...

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]: ...


def map_stripe_error(exc: stripe.StripeError) -> PaymentError:
    """Translate a Stripe SDK error into a PaymentError."""
    if isinstance(exc, stripe.CardError):
        # decline_code is more specific than code ("insufficient_funds" vs "card_declined")
        error = getattr(exc, "error", None)
        code = (
            _CARD_ERROR_CODES.get(getattr(error, "decline_code", None) or "")
            or _CARD_ERROR_CODES.get(exc.code or "")
            or ErrorCode.PAYMENT_DECLINED
        )
        return PaymentError(code, http_status=402)
    return PaymentError(ErrorCode.PAYMENT_PROCESSING_ERROR, http_status=502)


def _intent(obj: Any) -> PaymentIntentResult:
    return PaymentIntentResult(
        id=obj["id"],
        status=obj["status"],
        amount_minor=int(obj["amount"]),
        client_secret=obj.get("client_secret"),
    )


class StripeGateway:
    """PaymentGateway implementation using the ``stripe`` SDK.

    Usage::

        gateway = StripeGateway(STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET)
        intent = await gateway.create_payment_intent(4990, "chf", {"order_id": ...})
    """

    def __init__(self, secret_key: str, webhook_secret: str):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    async def _call(self, operation: str, func, *args, **kwargs):
        if not self.secret_key:
            logger.error("Stripe secret key not configured", extra={"operation": operation})
            raise PaymentError(ErrorCode.PAYMENT_PROCESSING_ERROR, http_status=503)
        try:
            return await asyncio.to_thread(func, *args, api_key=self.secret_key, **kwargs)
        except stripe.StripeError as exc:
            logger.warning(
                "Stripe call failed",
                extra={"operation": operation, "stripe_code": getattr(exc, "code", None)},
            )
            raise map_stripe_error(exc) from exc

    async def create_payment_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> PaymentIntentResult:
        options: dict[str, Any] = {}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key
        intent = await self._call(
            "create_payment_intent",
            stripe.PaymentIntent.create,
            amount=amount_minor,
            currency=currency.lower(),
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
            **options,
        )
        return _intent(intent)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentResult:
        intent = await self._call(
            "retrieve_payment_intent", stripe.PaymentIntent.retrieve, payment_intent_id
        )
        return _intent(intent)

    async def cancel_payment_intent(self, payment_intent_id: str) -> PaymentIntentResult:
        intent = await self._call(
            "cancel_payment_intent", stripe.PaymentIntent.cancel, payment_intent_id
        )
        return _intent(intent)

    async def create_refund(
        self,
        payment_intent_id: str,
        amount_minor: int,
        idempotency_key: str | None = None,
    ) -> RefundResult:
        options: dict[str, Any] = {}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key
        refund = await self._call(
            "create_refund",
            stripe.Refund.create,
            payment_intent=payment_intent_id,
            amount=amount_minor,
            **options,
        )
        return RefundResult(id=refund["id"], status=refund["status"], amount_minor=int(refund["amount"]))

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Verify the webhook signature and return the event as a plain dict."""
        if not self.webhook_secret or not signature:
            raise PaymentError(ErrorCode.PAYMENT_WEBHOOK_INVALID)
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as exc:
            logger.warning("Invalid webhook payload")
            raise PaymentError(ErrorCode.PAYMENT_WEBHOOK_INVALID) from exc
        except stripe.SignatureVerificationError as exc:
            logger.warning("Invalid signature for webhook")
            raise PaymentError(ErrorCode.PAYMENT_WEBHOOK_INVALID) from exc
        return json.loads(payload)


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency; tests override it with a fake gateway."""
    return StripeGateway(STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET)
