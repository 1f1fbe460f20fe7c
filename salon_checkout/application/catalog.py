from decimal import Decimal
from typing import Iterable
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session
from salon_checkout.domain.models import Product
from salon_checkout.core.logging_config import get_logger
from .errors import UnavailableProduct, InsufficientStock
from .schemas import CartLine

logger = get_logger(__name__)

class SnapshotLine(BaseModel):
    product_id: int
    name: str
    qty: int
    unit_price: Decimal
    line_total: Decimal
    class Config:
        frozen = True

class CartSnapshot(BaseModel):
    lines: list[SnapshotLine]
    subtotal: Decimal
    class Config:
        frozen = True

class CatalogReader:
    """Resolves cart lines to server-side prices and live stock. Read-only."""

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, cart_lines: Iterable[CartLine]) -> CartSnapshot:
        requested = [(line.product_id, max(1, int(line.qty or 1))) for line in cart_lines]
        wanted_ids = {pid for pid, _ in requested}

        rows = self.db.execute(
            select(Product)
            .where(Product.id.in_(wanted_ids), Product.is_active.is_(True))
            .execution_options(populate_existing=True)
        ).scalars().all()
        products = {p.id: p for p in rows}
        if len(products) != len(wanted_ids):
            missing = sorted(wanted_ids - products.keys())
            logger.info(
                "Cart references unavailable products",
                extra={'extra_fields': {'product_ids': missing}}
            )
            raise UnavailableProduct(missing)

        lines = []
        subtotal = Decimal("0.00")
        for pid, qty in requested:
            product = products[pid]
            if product.stock < qty:
                raise InsufficientStock(product.name, qty)
            unit = Decimal(product.price)
            line_total = unit * qty
            subtotal += line_total
            lines.append(SnapshotLine(
                product_id=pid, name=product.name, qty=qty, unit_price=unit, line_total=line_total
            ))

        return CartSnapshot(lines=lines, subtotal=subtotal)
