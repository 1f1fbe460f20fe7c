from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Any

class CartLine(BaseModel):
    product_id: int = Field(alias="productId")
    # Clamped to a minimum of 1 by the catalog reader
    qty: int = 1
    class Config:
        populate_by_name = True

class CartSubmit(BaseModel):
    items: list[CartLine] = Field(min_length=1)
    shipping_address: dict[str, Any] = Field(default_factory=dict, alias="shippingAddress")
    phone: Optional[str] = None
    class Config:
        populate_by_name = True

class OrderCreated(BaseModel):
    order_id: int = Field(alias="orderId")
    class Config:
        populate_by_name = True

class CheckoutSessionCreated(BaseModel):
    url: str
    session_id: str = Field(alias="sessionId")
    order_id: int = Field(alias="orderId")
    class Config:
        populate_by_name = True

class VerifyRead(BaseModel):
    ok: bool
    order_id: Optional[int] = Field(default=None, alias="orderId")
    payment_status: Optional[str] = Field(default=None, alias="paymentStatus")
    class Config:
        populate_by_name = True

class OrderLineRead(BaseModel):
    id: int
    product_id: int
    product_name_snapshot: Optional[str] = None
    qty: int
    unit_price: float
    line_total: float
    class Config:
        from_attributes = True

class OrderRead(BaseModel):
    id: int
    user_id: int
    subtotal: float
    total: float
    currency: str
    status: str
    payment_method: str
    payment_status: str
    created_at: datetime
    lines: list[OrderLineRead] = []
    class Config:
        from_attributes = True
