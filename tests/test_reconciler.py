import pytest
from sqlalchemy import update

from salon_checkout.application.errors import (
    Forbidden, OrderAlreadyPaid, OrderNotLinked, PaymentProviderError, SessionNotFound,
)
from salon_checkout.application.ledger import OrderLedger
from salon_checkout.application.reconciler import PaymentReconciler
from salon_checkout.application.schemas import CartLine
from salon_checkout.domain.models import Order, Product


def cart(*pairs):
    return [CartLine(product_id=pid, qty=qty) for pid, qty in pairs]


@pytest.fixture
def card_checkout(db, products, customer, gateway):
    return OrderLedger(db).open_card_order(customer, cart((1, 1), (2, 2)), PaymentReconciler(db, gateway))


def read_order(session_factory, order_id):
    with session_factory() as session:
        return session.get(Order, order_id)


def test_completed_session_marks_order_paid_and_deducts_once(
    db, gateway, customer, card_checkout, session_factory, stock_of
):
    gateway.complete(card_checkout.session_id, reference="pi_3Nx")
    result = PaymentReconciler(db, gateway).verify(card_checkout.session_id, customer)

    assert result.ok is True
    assert result.order_id == card_checkout.order_id
    order = read_order(session_factory, card_checkout.order_id)
    assert order.payment_status == "paid"
    assert order.status == "processing"
    assert order.payment_reference == "pi_3Nx"
    assert order.inventory_deducted is True
    assert stock_of(1) == 4
    assert stock_of(2) == 0


def test_repeated_verification_never_deducts_twice(db, gateway, customer, card_checkout, session_factory, stock_of):
    gateway.complete(card_checkout.session_id)
    for _ in range(3):
        with session_factory() as session:
            result = PaymentReconciler(session, gateway).verify(card_checkout.session_id, customer)
        assert result.ok is True
        assert result.order_id == card_checkout.order_id

    assert stock_of(1) == 4
    assert stock_of(2) == 0


def test_reverification_keeps_later_fulfilment_status(db, gateway, customer, card_checkout, session_factory):
    gateway.complete(card_checkout.session_id)
    reconciler = PaymentReconciler(db, gateway)
    reconciler.verify(card_checkout.session_id, customer)

    with session_factory() as session:
        session.execute(update(Order).where(Order.id == card_checkout.order_id).values(status="fulfilled"))
        session.commit()

    reconciler.verify(card_checkout.session_id, customer)
    assert read_order(session_factory, card_checkout.order_id).status == "fulfilled"


def test_unpaid_session_is_not_an_error(db, gateway, customer, card_checkout, session_factory, stock_of):
    result = PaymentReconciler(db, gateway).verify(card_checkout.session_id, customer)

    assert result.ok is False
    assert result.payment_status == "unpaid"
    assert result.order_id is None
    assert read_order(session_factory, card_checkout.order_id).payment_status == "pending"
    assert stock_of(1) == 5


def test_unknown_session(db, gateway, customer, products):
    with pytest.raises(SessionNotFound):
        PaymentReconciler(db, gateway).verify("cs_missing", customer)


@pytest.mark.parametrize("metadata", [{}, {"order_id": ""}, {"order_id": "abc"}])
def test_session_without_order(db, gateway, customer, products, metadata):
    gateway.add_session("cs_orphan", metadata=metadata)
    with pytest.raises(OrderNotLinked):
        PaymentReconciler(db, gateway).verify("cs_orphan", customer)


def test_other_users_order_is_forbidden(db, gateway, other_customer, card_checkout, stock_of):
    gateway.complete(card_checkout.session_id)
    with pytest.raises(Forbidden):
        PaymentReconciler(db, gateway).verify(card_checkout.session_id, other_customer)
    assert stock_of(1) == 5


def test_session_linked_to_missing_order_is_forbidden(db, gateway, customer, products):
    gateway.add_session("cs_stale", metadata={"order_id": "4242"})
    with pytest.raises(Forbidden):
        PaymentReconciler(db, gateway).verify("cs_stale", customer)


def test_session_pointing_at_cash_order_is_not_settled(db, gateway, customer, products, session_factory, stock_of):
    order = OrderLedger(db).place_cash_order(customer, cart((1, 2)))
    gateway.add_session("cs_cash", metadata={"order_id": str(order.id)})

    with pytest.raises(OrderNotLinked):
        PaymentReconciler(db, gateway).verify("cs_cash", customer)

    saved = read_order(session_factory, order.id)
    assert saved.payment_status == "unpaid"
    assert saved.inventory_deducted is False
    assert stock_of(1) == 3


def test_deferred_deduction_floors_at_zero(db, gateway, customer, card_checkout, session_factory, stock_of):
    # Another shopper bought the last masks while this card payment was open
    with session_factory() as session:
        session.execute(update(Product).where(Product.id == 2).values(stock=1))
        session.commit()

    gateway.complete(card_checkout.session_id)
    result = PaymentReconciler(db, gateway).verify(card_checkout.session_id, customer)

    assert result.ok is True
    assert stock_of(2) == 0
    assert stock_of(1) == 4


def test_replayed_card_checkout_returns_open_session(db, products, customer, gateway, count_orders):
    ledger = OrderLedger(db)
    reconciler = PaymentReconciler(db, gateway)
    first = ledger.open_card_order(customer, cart((1, 1)), reconciler, idempotency_key="k-1")
    again = ledger.open_card_order(customer, cart((1, 1)), reconciler, idempotency_key="k-1")

    assert again.order_id == first.order_id
    assert again.session_id == first.session_id
    assert again.redirect_url == first.redirect_url
    assert len(gateway.created) == 1
    assert count_orders() == 1


def test_replayed_card_checkout_after_provider_payment(db, products, customer, gateway):
    ledger = OrderLedger(db)
    reconciler = PaymentReconciler(db, gateway)
    first = ledger.open_card_order(customer, cart((1, 1)), reconciler, idempotency_key="k-2")
    gateway.complete(first.session_id)

    with pytest.raises(OrderAlreadyPaid):
        ledger.open_card_order(customer, cart((1, 1)), reconciler, idempotency_key="k-2")
    assert len(gateway.created) == 1


def test_replay_reopens_session_when_first_attempt_failed(db, products, customer, gateway, session_factory):
    ledger = OrderLedger(db)
    reconciler = PaymentReconciler(db, gateway)
    gateway.fail_create = True
    with pytest.raises(PaymentProviderError):
        ledger.open_card_order(customer, cart((1, 1)), reconciler, idempotency_key="k-3")

    gateway.fail_create = False
    checkout = ledger.open_card_order(customer, cart((1, 1)), reconciler, idempotency_key="k-3")
    assert read_order(session_factory, checkout.order_id).payment_session_id == checkout.session_id
