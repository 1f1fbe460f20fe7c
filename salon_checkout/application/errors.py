"""Checkout and payment errors raised by the application layer."""
from typing import Optional


class CheckoutError(Exception):
    """Base exception for checkout and payment failures."""

    pass


class UnavailableProduct(CheckoutError):
    """Raised when a cart references a missing or inactive product."""

    def __init__(self, product_ids: Optional[list[int]] = None):
        self.product_ids = product_ids or []
        super().__init__("One or more products are unavailable")


class InsufficientStock(CheckoutError):
    """Raised when a requested quantity exceeds the product's live stock."""

    def __init__(self, product_name: str, requested: int):
        self.product_name = product_name
        self.requested = requested
        super().__init__(f"Insufficient stock for {product_name}")


class OrderPersistenceFailure(CheckoutError):
    """Raised when writing an order, its lines or stock fails and is rolled back."""

    def __init__(self, message: str = "Failed to create order"):
        super().__init__(message)


class PaymentProviderError(CheckoutError):
    """Raised when the payment provider rejects or fails a request."""

    def __init__(self, message: str = "Payment provider unavailable", order_id: Optional[int] = None):
        self.order_id = order_id
        super().__init__(message)


class OrderAlreadyPaid(CheckoutError):
    """Raised when a replayed card checkout targets an order that is already paid."""

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__("This order has already been completed")


class IdempotencyKeyReused(CheckoutError):
    """Raised when an idempotency key already belongs to a checkout of another payment method."""

    def __init__(self, order_id: int, payment_method: str):
        self.order_id = order_id
        self.payment_method = payment_method
        super().__init__("Idempotency key already used for a different checkout")


class SessionNotFound(CheckoutError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__("Session not found")


class OrderNotLinked(CheckoutError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__("Order not linked")


class Forbidden(CheckoutError):
    def __init__(self):
        super().__init__("Forbidden")
