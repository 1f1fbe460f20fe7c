from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from salon_checkout.core_settings import Settings
from salon_checkout.infrastructure.payments import (
    PaymentGatewayError, SessionLineItem, StripeGateway, to_minor_units,
)


@pytest.fixture
def stripe_gateway():
    return StripeGateway(Settings(STRIPE_SECRET_KEY="sk_test_key", CURRENCY="usd"))


@pytest.mark.parametrize("amount,cents", [
    (Decimal("10.00"), 1000),
    (Decimal("24.50"), 2450),
    (Decimal("0.005"), 1),
    (Decimal("19.994"), 1999),
])
def test_minor_units(amount, cents):
    assert to_minor_units(amount) == cents


def test_session_is_created_with_fixed_quantities(stripe_gateway, monkeypatch):
    calls = {}

    def fake_create(**kwargs):
        calls.update(kwargs)
        return SimpleNamespace(id="cs_live_1", url="https://checkout.stripe.com/c/pay/cs_live_1")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    session = stripe_gateway.create_session(
        [SessionLineItem(name="Keratin Mask", unit_price=Decimal("24.50"), qty=2)],
        "usd", "ana@example.com", {"order_id": 12, "user_id": 7},
    )

    assert session.id == "cs_live_1"
    assert calls["mode"] == "payment"
    assert calls["api_key"] == "sk_test_key"
    assert calls["metadata"] == {"order_id": "12", "user_id": "7"}
    item = calls["line_items"][0]
    assert item["price_data"]["unit_amount"] == 2450
    assert item["quantity"] == 2
    assert item["adjustable_quantity"] == {"enabled": False}


def test_missing_session_is_none(stripe_gateway, monkeypatch):
    def fake_retrieve(session_id, **kwargs):
        raise stripe.InvalidRequestError("No such checkout.session", "id", code="resource_missing")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)
    assert stripe_gateway.retrieve_session("cs_gone") is None


def test_provider_failure_is_wrapped(stripe_gateway, monkeypatch):
    def fake_retrieve(session_id, **kwargs):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)
    with pytest.raises(PaymentGatewayError):
        stripe_gateway.retrieve_session("cs_1")


def test_retrieved_session_exposes_reference_and_metadata(stripe_gateway, monkeypatch):
    def fake_retrieve(session_id, **kwargs):
        return SimpleNamespace(
            id=session_id, payment_status="paid", payment_intent="pi_9", metadata={"order_id": "12"}, url=None
        )

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)
    status = stripe_gateway.retrieve_session("cs_1")
    assert status.completed
    assert status.payment_reference == "pi_9"
    assert status.metadata == {"order_id": "12"}


def test_missing_secret_key_fails_fast():
    gateway = StripeGateway(Settings(STRIPE_SECRET_KEY=None))
    with pytest.raises(PaymentGatewayError):
        gateway.retrieve_session("cs_1")
