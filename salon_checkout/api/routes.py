from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Query
from salon_checkout.application.errors import (
    CheckoutError, UnavailableProduct, InsufficientStock, OrderPersistenceFailure,
    OrderAlreadyPaid, PaymentProviderError, SessionNotFound, OrderNotLinked, Forbidden,
    IdempotencyKeyReused,
)
from salon_checkout.application.ledger import OrderLedger
from salon_checkout.application.reconciler import PaymentReconciler
from salon_checkout.application.schemas import (
    CartSubmit, OrderCreated, CheckoutSessionCreated, VerifyRead, OrderRead,
)
from salon_checkout.domain.permissions import Identity
from .deps import get_current_identity, get_ledger, get_reconciler, require_permission

STATUS_BY_ERROR = {
    UnavailableProduct: 400,
    InsufficientStock: 409,
    OrderAlreadyPaid: 409,
    IdempotencyKeyReused: 409,
    OrderPersistenceFailure: 500,
    PaymentProviderError: 502,
    SessionNotFound: 404,
    OrderNotLinked: 400,
    Forbidden: 403,
}

def to_http_error(err: CheckoutError) -> HTTPException:
    return HTTPException(status_code=STATUS_BY_ERROR.get(type(err), 500), detail=str(err))

orders_router = APIRouter(prefix="/orders", tags=["orders"])

@orders_router.get("/mine", response_model=list[OrderRead])
def list_my_orders(
    identity: Identity = Depends(get_current_identity),
    ledger: OrderLedger = Depends(get_ledger),
):
    return ledger.list_orders_for(identity)

@orders_router.get("/", response_model=list[OrderRead])
def list_orders(
    identity: Identity = Depends(require_permission("orders", "read")),
    ledger: OrderLedger = Depends(get_ledger),
):
    """All orders, for admins and staff granted orders:read."""
    return ledger.list_all_orders()

@orders_router.post("/", response_model=OrderCreated, status_code=201)
def create_cash_order(
    payload: CartSubmit,
    identity: Identity = Depends(get_current_identity),
    ledger: OrderLedger = Depends(get_ledger),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    try:
        order = ledger.place_cash_order(
            identity, payload.items, payload.shipping_address, payload.phone, idempotency_key
        )
    except CheckoutError as e:
        raise to_http_error(e)
    return OrderCreated(order_id=order.id)

payments_router = APIRouter(prefix="/payments", tags=["payments"])

@payments_router.post("/create-checkout-session", response_model=CheckoutSessionCreated)
def create_checkout_session(
    payload: CartSubmit,
    identity: Identity = Depends(get_current_identity),
    ledger: OrderLedger = Depends(get_ledger),
    reconciler: PaymentReconciler = Depends(get_reconciler),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    try:
        checkout = ledger.open_card_order(
            identity, payload.items, reconciler,
            payload.shipping_address, payload.phone, idempotency_key,
        )
    except CheckoutError as e:
        raise to_http_error(e)
    return CheckoutSessionCreated(
        url=checkout.redirect_url, session_id=checkout.session_id, order_id=checkout.order_id
    )

@payments_router.get("/verify", response_model=VerifyRead, response_model_exclude_none=True)
def verify_payment(
    session_id: str = Query(..., min_length=1),
    identity: Identity = Depends(get_current_identity),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    try:
        result = reconciler.verify(session_id, identity)
    except CheckoutError as e:
        raise to_http_error(e)
    return VerifyRead(ok=result.ok, order_id=result.order_id, payment_status=result.payment_status)
