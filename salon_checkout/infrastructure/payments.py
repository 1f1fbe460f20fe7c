"""Hosted card checkout backed by Stripe Checkout Sessions."""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Protocol
import stripe
from pydantic import BaseModel, Field
from salon_checkout.core_settings import Settings, get_settings
from salon_checkout.core.logging_config import get_logger

logger = get_logger(__name__)

class SessionLineItem(BaseModel):
    name: str
    unit_price: Decimal
    qty: int
    class Config:
        frozen = True

class CheckoutSession(BaseModel):
    id: str
    url: str
    class Config:
        frozen = True

class SessionStatus(BaseModel):
    id: str
    # Raw provider status: "paid", "unpaid" or "no_payment_required"
    payment_status: str
    payment_reference: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    # Hosted page, only present while the session is open
    url: Optional[str] = None
    class Config:
        frozen = True

    @property
    def completed(self) -> bool:
        return self.payment_status == "paid"

class PaymentGatewayError(Exception):
    pass

class PaymentGateway(Protocol):
    def create_session(
        self,
        line_items: list[SessionLineItem],
        currency: str,
        customer_email: Optional[str],
        metadata: dict,
    ) -> CheckoutSession: ...

    def retrieve_session(self, session_id: str) -> Optional[SessionStatus]: ...

def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

class StripeGateway:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _request_options(self) -> dict:
        if not self.settings.STRIPE_SECRET_KEY:
            raise PaymentGatewayError("STRIPE_SECRET_KEY not set")
        return {
            "api_key": self.settings.STRIPE_SECRET_KEY,
            "stripe_version": self.settings.STRIPE_API_VERSION,
        }

    def create_session(self, line_items, currency, customer_email, metadata) -> CheckoutSession:
        options = self._request_options()
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": currency,
                            "product_data": {"name": item.name},
                            "unit_amount": to_minor_units(item.unit_price),
                        },
                        "quantity": item.qty,
                        "adjustable_quantity": {"enabled": False},
                    }
                    for item in line_items
                ],
                success_url=self.settings.STRIPE_SUCCESS_URL,
                cancel_url=self.settings.STRIPE_CANCEL_URL,
                customer_email=customer_email,
                metadata={k: str(v) for k, v in metadata.items()},
                **options,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe session creation failed: {e}")
            raise PaymentGatewayError(str(e)) from e
        return CheckoutSession(id=session.id, url=session.url)

    def retrieve_session(self, session_id: str) -> Optional[SessionStatus]:
        options = self._request_options()
        try:
            session = stripe.checkout.Session.retrieve(session_id, **options)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                return None
            raise PaymentGatewayError(str(e)) from e
        except stripe.StripeError as e:
            logger.error(f"Stripe session lookup failed: {e}")
            raise PaymentGatewayError(str(e)) from e

        metadata = session.metadata or {}
        return SessionStatus(
            id=session.id,
            payment_status=session.payment_status,
            payment_reference=session.payment_intent if isinstance(session.payment_intent, str) else None,
            metadata=dict(metadata),
            url=getattr(session, "url", None),
        )

def get_payment_gateway() -> PaymentGateway:
    return StripeGateway()
