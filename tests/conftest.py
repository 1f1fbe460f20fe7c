import os

# Settings are read once at import time; point them at test values first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("JWT_SECRET", "test-secret")

from decimal import Decimal
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from salon_checkout.auth_local import create_access_token
from salon_checkout.domain.models import Base, Order, Product
from salon_checkout.domain.permissions import Identity, ROLE_ADMIN, ROLE_STAFF
from salon_checkout.infrastructure.db import get_db
from salon_checkout.infrastructure.payments import (
    CheckoutSession, PaymentGatewayError, SessionStatus, get_payment_gateway,
)
from salon_checkout.main import app


class FakeGateway:
    """In-memory stand-in for Stripe Checkout."""

    def __init__(self):
        self.sessions: dict[str, SessionStatus] = {}
        self.created: list[dict] = []
        self.fail_create = False

    def create_session(self, line_items, currency, customer_email, metadata) -> CheckoutSession:
        if self.fail_create:
            raise PaymentGatewayError("card network unavailable")
        session_id = f"cs_test_{len(self.created) + 1}"
        url = f"https://checkout.stripe.test/pay/{session_id}"
        self.created.append({
            "id": session_id,
            "line_items": list(line_items),
            "currency": currency,
            "customer_email": customer_email,
            "metadata": dict(metadata),
        })
        self.sessions[session_id] = SessionStatus(
            id=session_id,
            payment_status="unpaid",
            metadata={k: str(v) for k, v in metadata.items()},
            url=url,
        )
        return CheckoutSession(id=session_id, url=url)

    def retrieve_session(self, session_id: str) -> Optional[SessionStatus]:
        return self.sessions.get(session_id)

    def complete(self, session_id: str, reference: str = "pi_test_123") -> None:
        current = self.sessions[session_id]
        self.sessions[session_id] = SessionStatus(
            id=session_id,
            payment_status="paid",
            payment_reference=reference,
            metadata=current.metadata,
        )

    def add_session(self, session_id: str, payment_status: str = "paid", metadata: Optional[dict] = None) -> None:
        self.sessions[session_id] = SessionStatus(
            id=session_id, payment_status=payment_status, metadata=metadata or {}
        )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def products(session_factory):
    """Product 1: price 10.00 stock 5; product 2: 24.50 stock 2; product 3 inactive."""
    with session_factory() as session:
        session.add_all([
            Product(id=1, name="Argan Oil Serum", category="hair", price=Decimal("10.00"), stock=5, is_active=True),
            Product(id=2, name="Keratin Mask", category="hair", price=Decimal("24.50"), stock=2, is_active=True),
            Product(id=3, name="Retired Nail Kit", category="nails", price=Decimal("8.00"), stock=40, is_active=False),
        ])
        session.commit()


@pytest.fixture
def stock_of(session_factory):
    def read(product_id: int) -> Optional[int]:
        with session_factory() as session:
            return session.execute(select(Product.stock).where(Product.id == product_id)).scalar_one_or_none()
    return read


@pytest.fixture
def count_orders(session_factory):
    def count() -> int:
        with session_factory() as session:
            return len(session.execute(select(Order.id)).all())
    return count


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def customer():
    return Identity(id=7, email="ana@example.com", phone="555-0101")


@pytest.fixture
def other_customer():
    return Identity(id=8, email="bo@example.com", phone="555-0102")


@pytest.fixture
def admin():
    return Identity(id=1, email="owner@example.com", role=ROLE_ADMIN)


@pytest.fixture
def staff_with_orders():
    return Identity(id=2, email="desk@example.com", role=ROLE_STAFF,
                    permissions={"orders": {"read": True, "write": False}})


@pytest.fixture
def auth_headers():
    def build(identity: Identity) -> dict:
        return {"Authorization": f"Bearer {create_access_token(identity)}"}
    return build


@pytest.fixture
def client(session_factory, gateway, products):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()
