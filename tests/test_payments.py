"""Test the Stripe gateway and its error mapping."""
import hashlib
import hmac
import json
import time

import pytest
import stripe

from core.errors import ErrorCode, PaymentError
from verticals.salon.payments import StripeGateway, map_stripe_error

WEBHOOK_SECRET = "whsec_test_secret"


def _signature(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


# -- error mapping --

def test_card_errors_map_to_payment_codes():
    expired = map_stripe_error(stripe.CardError("Your card has expired.", None, "expired_card"))
    assert expired.code == ErrorCode.PAYMENT_EXPIRED_CARD
    assert expired.http_status == 402

    unknown = map_stripe_error(stripe.CardError("Declined.", None, "processing_quirk"))
    assert unknown.code == ErrorCode.PAYMENT_DECLINED


def test_decline_code_is_preferred():
    body = {"error": {"type": "card_error", "code": "card_declined", "decline_code": "insufficient_funds"}}
    error = stripe.CardError("Declined.", None, "card_declined", json_body=body)
    assert map_stripe_error(error).code == ErrorCode.PAYMENT_INSUFFICIENT_FUNDS


def test_other_stripe_errors_are_processing_errors():
    error = map_stripe_error(stripe.APIConnectionError("Network down"))
    assert error.code == ErrorCode.PAYMENT_PROCESSING_ERROR
    assert error.http_status == 502


# -- gateway calls --

@pytest.mark.asyncio
async def test_create_payment_intent(monkeypatch):
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        return {"id": "pi_1", "status": "requires_payment_method", "amount": 5870, "client_secret": "s_1"}

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)
    gateway = StripeGateway("sk_test_key", WEBHOOK_SECRET)

    intent = await gateway.create_payment_intent(5870, "CHF", {"order_id": "o-1"}, idempotency_key="k1")

    assert intent.id == "pi_1"
    assert intent.client_secret == "s_1"
    assert calls[0]["currency"] == "chf"
    assert calls[0]["api_key"] == "sk_test_key"
    assert calls[0]["idempotency_key"] == "k1"


@pytest.mark.asyncio
async def test_card_error_from_sdk_is_translated(monkeypatch):
    def refund(**kwargs):
        raise stripe.CardError("Your card has expired.", None, "expired_card")

    monkeypatch.setattr(stripe.Refund, "create", refund)
    gateway = StripeGateway("sk_test_key", WEBHOOK_SECRET)

    with pytest.raises(PaymentError) as exc_info:
        await gateway.create_refund("pi_1", 1000)
    assert exc_info.value.code == ErrorCode.PAYMENT_EXPIRED_CARD


@pytest.mark.asyncio
async def test_missing_secret_key():
    with pytest.raises(PaymentError) as exc_info:
        await StripeGateway("", WEBHOOK_SECRET).retrieve_payment_intent("pi_1")
    assert exc_info.value.http_status == 503


# -- webhook signatures --

def test_construct_event_with_valid_signature():
    payload = json.dumps({"id": "evt_1", "type": "payment_intent.succeeded", "data": {"object": {}}}).encode()
    event = StripeGateway("sk_test_key", WEBHOOK_SECRET).construct_event(payload, _signature(payload))
    assert event["id"] == "evt_1"


def test_construct_event_rejects_bad_signature():
    payload = b'{"id": "evt_1"}'
    gateway = StripeGateway("sk_test_key", WEBHOOK_SECRET)
    with pytest.raises(PaymentError) as exc_info:
        gateway.construct_event(payload, _signature(payload, "whsec_other"))
    assert exc_info.value.code == ErrorCode.PAYMENT_WEBHOOK_INVALID


def test_construct_event_needs_secret_and_header():
    with pytest.raises(PaymentError):
        StripeGateway("sk_test_key", "").construct_event(b"{}", "t=1,v1=abc")
    with pytest.raises(PaymentError):
        StripeGateway("sk_test_key", WEBHOOK_SECRET).construct_event(b"{}", None)
