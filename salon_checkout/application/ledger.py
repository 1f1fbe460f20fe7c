"""Order creation for the cash and card checkout paths.

Totals always come from the catalog snapshot, never from the request. The cash
path deducts stock inside the same transaction that writes the order; the card
path leaves stock alone until the payment is verified.
"""
from typing import Iterable, Optional, TYPE_CHECKING
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from salon_checkout.domain.models import (
    Order, OrderLine, Product,
    PAYMENT_COD, PAYMENT_CARD, PAYMENT_UNPAID, PAYMENT_PENDING, PAYMENT_PAID, ORDER_PENDING,
)
from salon_checkout.domain.permissions import Identity
from salon_checkout.infrastructure.db import transaction
from salon_checkout.core.logging_config import get_logger
from salon_checkout.core_settings import get_settings
from .catalog import CatalogReader, CartSnapshot
from .errors import (
    UnavailableProduct, InsufficientStock, OrderPersistenceFailure,
    OrderAlreadyPaid, PaymentProviderError, IdempotencyKeyReused,
)
from .schemas import CartLine

if TYPE_CHECKING:
    from .reconciler import PaymentReconciler

logger = get_logger(__name__)

class CardCheckout(BaseModel):
    order_id: int
    session_id: str
    redirect_url: str
    class Config:
        frozen = True

class OrderLedger:
    def __init__(self, db: Session, catalog: Optional[CatalogReader] = None):
        self.db = db
        self.catalog = catalog or CatalogReader(db)
        self.currency = get_settings().CURRENCY

    def list_orders_for(self, identity: Identity) -> list[Order]:
        stmt = (
            select(Order)
            .where(Order.user_id == identity.id)
            .options(selectinload(Order.lines))
            .order_by(Order.id.desc())
        )
        return list(self.db.execute(stmt).scalars())

    def list_all_orders(self) -> list[Order]:
        stmt = select(Order).options(selectinload(Order.lines)).order_by(Order.id.desc())
        return list(self.db.execute(stmt).scalars())

    def _find_by_idempotency_key(self, identity: Identity, key: Optional[str],
                                 payment_method: str) -> Optional[Order]:
        if not key:
            return None
        order = self.db.execute(
            select(Order).where(Order.user_id == identity.id, Order.idempotency_key == key)
        ).scalar_one_or_none()
        if order is not None and order.payment_method != payment_method:
            logger.warning(
                f"Idempotency key of {order.payment_method} order {order.id} reused for {payment_method}",
                extra={'extra_fields': {'order_id': order.id, 'user_id': identity.id}}
            )
            raise IdempotencyKeyReused(order.id, order.payment_method)
        return order

    def _replay_after_conflict(self, identity: Identity, key: Optional[str], payment_method: str,
                               error: IntegrityError) -> Order:
        """Called from an except block once the insert lost to a request carrying the same key."""
        winner = self._find_by_idempotency_key(identity, key, payment_method)
        if winner is None:
            logger.error(f"{payment_method} order rolled back: {error}", exc_info=True)
            raise OrderPersistenceFailure() from error
        return winner

    def _new_order(self, identity: Identity, snapshot: CartSnapshot, shipping_address: Optional[dict],
                   phone: Optional[str], payment_method: str, payment_status: str,
                   idempotency_key: Optional[str]) -> Order:
        order = Order(
            user_id=identity.id,
            email=identity.email,
            phone=phone or identity.phone,
            shipping_address=dict(shipping_address or {}),
            subtotal=snapshot.subtotal,
            # No shipping or tax yet
            total=snapshot.subtotal,
            currency=self.currency,
            status=ORDER_PENDING,
            payment_method=payment_method,
            payment_status=payment_status,
            inventory_deducted=False,
            idempotency_key=idempotency_key,
        )
        self.db.add(order)
        self.db.flush()  # a duplicate idempotency key fails here
        return order

    def _add_lines(self, order: Order, snapshot: CartSnapshot) -> None:
        order.lines = [
            OrderLine(
                product_id=line.product_id,
                product_name_snapshot=line.name,
                qty=line.qty,
                unit_price=line.unit_price,
                line_total=line.line_total,
            )
            for line in snapshot.lines
        ]
        self.db.flush()

    def _take_stock(self, product_id: int, name: str, qty: int) -> None:
        result = self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.is_active.is_(True), Product.stock >= qty)
            .values(stock=Product.stock - qty)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 1:
            return
        # Stock moved since validation; find out why
        current = self.db.execute(
            select(Product.stock, Product.is_active).where(Product.id == product_id)
        ).first()
        if current is None or not current.is_active:
            raise UnavailableProduct([product_id])
        raise InsufficientStock(name, qty)

    def place_cash_order(self, identity: Identity, cart_lines: Iterable[CartLine],
                         shipping_address: Optional[dict] = None, phone: Optional[str] = None,
                         idempotency_key: Optional[str] = None) -> Order:
        existing = self._find_by_idempotency_key(identity, idempotency_key, PAYMENT_COD)
        if existing is not None:
            logger.info(f"Replaying cash order {existing.id} for idempotency key")
            return existing

        snapshot = self.catalog.resolve(cart_lines)
        try:
            with transaction(self.db):
                order = self._new_order(
                    identity, snapshot, shipping_address, phone,
                    PAYMENT_COD, PAYMENT_UNPAID, idempotency_key,
                )
                # Lines go in after every product row is claimed
                for line in snapshot.lines:
                    self._take_stock(line.product_id, line.name, line.qty)
                self._add_lines(order, snapshot)
        except IntegrityError as e:
            if not idempotency_key:
                logger.error(f"Cash order rolled back: {e}", exc_info=True)
                raise OrderPersistenceFailure() from e
            order = self._replay_after_conflict(identity, idempotency_key, PAYMENT_COD, e)
            logger.info(f"Replaying cash order {order.id} placed by a concurrent request")
            return order
        except SQLAlchemyError as e:
            logger.error(f"Cash order rolled back: {e}", exc_info=True)
            raise OrderPersistenceFailure() from e

        logger.info(
            f"Cash order {order.id} placed",
            extra={'extra_fields': {'order_id': order.id, 'user_id': identity.id, 'total': str(order.total)}}
        )
        return order

    def open_card_order(self, identity: Identity, cart_lines: Iterable[CartLine],
                        payments: "PaymentReconciler", shipping_address: Optional[dict] = None,
                        phone: Optional[str] = None, idempotency_key: Optional[str] = None) -> CardCheckout:
        existing = self._find_by_idempotency_key(identity, idempotency_key, PAYMENT_CARD)
        if existing is not None:
            return self._resume_card_order(existing, identity, payments)

        snapshot = self.catalog.resolve(cart_lines)
        try:
            with transaction(self.db):
                order = self._new_order(
                    identity, snapshot, shipping_address, phone,
                    PAYMENT_CARD, PAYMENT_PENDING, idempotency_key,
                )
                self._add_lines(order, snapshot)
        except IntegrityError as e:
            if not idempotency_key:
                logger.error(f"Card order rolled back: {e}", exc_info=True)
                raise OrderPersistenceFailure() from e
            winner = self._replay_after_conflict(identity, idempotency_key, PAYMENT_CARD, e)
            return self._resume_card_order(winner, identity, payments)
        except SQLAlchemyError as e:
            logger.error(f"Card order rolled back: {e}", exc_info=True)
            raise OrderPersistenceFailure() from e

        # The order row is committed; a failure below leaves it pending with no session
        session = payments.open_session(order, identity)
        self.attach_session(order, session.id)
        return CardCheckout(order_id=order.id, session_id=session.id, redirect_url=session.url)

    def _resume_card_order(self, order: Order, identity: Identity, payments: "PaymentReconciler") -> CardCheckout:
        if order.payment_status == PAYMENT_PAID:
            raise OrderAlreadyPaid(order.id)
        session = payments.resume_session(order) if order.payment_session_id else None
        if session is None:
            session = payments.open_session(order, identity)
            self.attach_session(order, session.id)
        logger.info(f"Resuming card order {order.id} for idempotency key")
        return CardCheckout(order_id=order.id, session_id=session.id, redirect_url=session.url)

    def attach_session(self, order: Order, session_id: str) -> None:
        try:
            with transaction(self.db):
                order.payment_session_id = session_id
        except SQLAlchemyError as e:
            logger.error(f"Could not store session on order {order.id}: {e}", exc_info=True)
            raise PaymentProviderError("Failed to link payment session", order_id=order.id) from e
