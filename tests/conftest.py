"""Pytest fixtures for storefront tests."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("MOCK_PAYMENT_LATENCY", "0")

import json
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront import auth, cart, clients, config, models, webhooks
from storefront.clients.payment_gateway import AUTHORIZED, MockPaymentGateway
from storefront.database import get_db
from storefront.main import app

ADMIN_ID = 1
USER_ID = 42
OTHER_USER_ID = 43


@pytest.fixture
def engine():
    """In-memory SQLite database with the full schema, one per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def make_product(db):
    """Factory that inserts a product and returns it."""

    def _make(name="Widget", price="10.00", stock=10, critical_stock_level=5, is_active=True):
        product = models.Product(
            name=name,
            price=Decimal(price),
            stock=stock,
            critical_stock_level=critical_stock_level,
            is_active=is_active,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def fill_cart(db):
    """Put (product, count) pairs into a user's cart."""

    def _fill(user_id, *lines):
        for product, count in lines:
            cart.add_to_cart(db, user_id, product.id, count)

    return _fill


@pytest.fixture
def gateway():
    gateway = MockPaymentGateway(latency=0, seed=1)
    gateway.configure(AUTHORIZED)
    clients.set_gateway(gateway)
    yield gateway
    clients.reset_gateway()


@pytest.fixture
def client(db, gateway):
    """TestClient whose requests share the test's database session."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def token_headers(user_id, role="user"):
    token = auth.create_access_token(user_id, f"user{user_id}@example.com", role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers():
    return token_headers(USER_ID)


@pytest.fixture
def admin_headers():
    return token_headers(ADMIN_ID, role="admin")


@pytest.fixture
def other_headers():
    return token_headers(OTHER_USER_ID)


@pytest.fixture
def webhook_sink(monkeypatch):
    """
    Subscribe three endpoints and route deliveries to an in-memory transport.

    ok.test accepts, broken.test answers 500 and down.test refuses the
    connection. Returns the list of received deliveries.
    """
    received = []

    def handler(request):
        received.append({"url": str(request.url), "payload": json.loads(request.content)})
        if request.url.host == "down.test":
            raise httpx.ConnectError("connection refused", request=request)
        if request.url.host == "broken.test":
            return httpx.Response(500)
        return httpx.Response(204)

    monkeypatch.setattr(
        config, "WEBHOOK_URLS", ["http://ok.test/hooks", "http://broken.test/hooks", "http://down.test/hooks"]
    )
    monkeypatch.setattr(webhooks, "transport", httpx.MockTransport(handler))
    return received
