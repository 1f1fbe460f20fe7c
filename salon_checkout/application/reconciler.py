"""Card payment sessions and their one-time verification.

Stock for card orders is deducted here, after the provider reports the session
as paid. The ``inventory_deducted`` flag on the order, read under a row lock,
keeps the deduction to a single pass however often verification is retried.
"""
from typing import Optional
from pydantic import BaseModel
from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from salon_checkout.domain.models import Order, Product, PAYMENT_CARD, PAYMENT_PAID, ORDER_PROCESSING
from salon_checkout.domain.permissions import Identity
from salon_checkout.infrastructure.db import transaction
from salon_checkout.infrastructure.payments import (
    CheckoutSession, PaymentGateway, PaymentGatewayError, SessionLineItem,
)
from salon_checkout.core.logging_config import get_logger
from .errors import (
    Forbidden, OrderAlreadyPaid, OrderNotLinked, OrderPersistenceFailure,
    PaymentProviderError, SessionNotFound,
)

logger = get_logger(__name__)

class VerifyResult(BaseModel):
    ok: bool
    order_id: Optional[int] = None
    payment_status: Optional[str] = None
    class Config:
        frozen = True

class PaymentReconciler:
    def __init__(self, db: Session, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway

    def open_session(self, order: Order, identity: Identity) -> CheckoutSession:
        items = [
            SessionLineItem(
                name=line.product_name_snapshot or f"Product {line.product_id}",
                unit_price=line.unit_price,
                qty=line.qty,
            )
            for line in order.lines
        ]
        try:
            session = self.gateway.create_session(
                line_items=items,
                currency=order.currency,
                customer_email=identity.email,
                metadata={"order_id": order.id, "user_id": identity.id},
            )
        except PaymentGatewayError as e:
            logger.warning(
                f"Order {order.id} left pending without a payment session",
                extra={'extra_fields': {'order_id': order.id, 'error': str(e)}}
            )
            raise PaymentProviderError("Failed to create checkout session", order_id=order.id) from e

        logger.info(
            f"Checkout session opened for order {order.id}",
            extra={'extra_fields': {'order_id': order.id, 'session_id': session.id}}
        )
        return session

    def resume_session(self, order: Order) -> Optional[CheckoutSession]:
        """Return the order's still-open session, or None if a new one is needed."""
        try:
            status = self.gateway.retrieve_session(order.payment_session_id)
        except PaymentGatewayError as e:
            raise PaymentProviderError(str(e), order_id=order.id) from e
        if status is None:
            return None
        if status.completed:
            # Paid at the provider but not verified yet; never open a second charge
            raise OrderAlreadyPaid(order.id)
        if not status.url:
            return None
        return CheckoutSession(id=status.id, url=status.url)

    def verify(self, session_id: str, identity: Identity) -> VerifyResult:
        try:
            status = self.gateway.retrieve_session(session_id)
        except PaymentGatewayError as e:
            raise PaymentProviderError(str(e)) from e
        if status is None:
            raise SessionNotFound(session_id)

        try:
            order_id = int(status.metadata.get("order_id") or 0)
        except (TypeError, ValueError):
            order_id = 0
        if not order_id:
            raise OrderNotLinked(session_id)

        order = self.db.get(Order, order_id)
        if order is None or order.user_id != identity.id:
            raise Forbidden()
        if order.payment_method != PAYMENT_CARD:
            # Cash orders already took their stock at placement
            logger.warning(
                f"Session {session_id} points at non-card order {order_id}",
                extra={'extra_fields': {'order_id': order_id, 'session_id': session_id}}
            )
            raise OrderNotLinked(session_id)

        if not status.completed:
            return VerifyResult(ok=False, payment_status=status.payment_status)

        try:
            with transaction(self.db):
                self._settle(order_id, status.payment_reference)
        except SQLAlchemyError as e:
            logger.error(f"Verification of order {order_id} rolled back: {e}", exc_info=True)
            raise OrderPersistenceFailure("Verify failed") from e

        return VerifyResult(ok=True, order_id=order_id)

    def _settle(self, order_id: int, payment_reference: Optional[str]) -> None:
        order = self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()

        if order.payment_status != PAYMENT_PAID:
            order.payment_status = PAYMENT_PAID
            order.status = ORDER_PROCESSING
            logger.info(
                f"Order {order.id} marked paid",
                extra={'extra_fields': {'order_id': order.id, 'payment_reference': payment_reference}}
            )
        if payment_reference:
            order.payment_reference = payment_reference

        if order.inventory_deducted:
            return
        for line in order.lines:
            self._deduct_stock(order.id, line.product_id, line.qty)
        order.inventory_deducted = True

    def _deduct_stock(self, order_id: int, product_id: int, qty: int) -> None:
        current = self.db.execute(select(Product.stock).where(Product.id == product_id)).scalar_one_or_none()
        if current is not None and current < qty:
            logger.warning(
                f"Stock for product {product_id} floored at zero",
                extra={'extra_fields': {'order_id': order_id, 'product_id': product_id,
                                        'stock': current, 'qty': qty}}
            )
        self.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=case((Product.stock >= qty, Product.stock - qty), else_=0))
            .execution_options(synchronize_session="fetch")
        )
