"""Pytest fixtures for storefront tests."""

import os

# settings are read at import time, point everything at throwaway values first
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"

import pytest  # noqa: E402
from jose import jwt  # noqa: E402
from sqlmodel import Session, SQLModel  # noqa: E402

from storefront.config import settings  # noqa: E402
from storefront.database import create_db_and_tables, engine  # noqa: E402
from storefront.models.order import Order  # noqa: E402
from storefront.services.order_store import OrderStore  # noqa: E402
from storefront.services.order_validator import validate_order  # noqa: E402

CUSTOMER_ID = "user-1"
OTHER_CUSTOMER_ID = "user-2"
ADMIN_ID = "admin-1"


@pytest.fixture(autouse=True)
def tables():
    """Fresh schema for every test."""
    SQLModel.metadata.drop_all(engine)
    create_db_and_tables()
    yield
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(tables):
    with Session(engine) as session:
        yield session


@pytest.fixture
def store(session):
    return OrderStore(session)


@pytest.fixture
def make_order(tables):
    """Insert an order row directly and return it as an OrderRecord."""

    def _make(**overrides):
        fields = {
            "user_id": CUSTOMER_ID,
            "customer_name": "Ann Smith",
            "subtotal": 84.99,
            "shipping_cost": 0.0,
            "total": 84.99,
            "status": "pending",
            "payment_received": False,
            "shipping_address": {
                "full_name": "Ann Smith",
                "street": "1 Main St",
                "city": "Gyumri",
                "state": "Shirak",
                "zip": "3101",
                "country": "Armenia",
            },
        }
        fields.update(overrides)
        with Session(engine) as session:
            order = Order(**fields)
            session.add(order)
            session.commit()
            session.refresh(order)
            return validate_order(order)

    return _make


def _encode_token(user_id: str, role: str = None, email: str = None, **claims) -> str:
    payload = {"sub": user_id, "email": email or f"{user_id}@example.com", **claims}
    if role:
        payload["app_metadata"] = {"role": role}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


@pytest.fixture
def customer_token():
    return _encode_token(CUSTOMER_ID)


@pytest.fixture
def admin_token():
    return _encode_token(ADMIN_ID, role=settings.ADMIN_ROLE)


@pytest.fixture
def customer_headers(customer_token):
    return {"Authorization": f"Bearer {customer_token}"}


@pytest.fixture
def admin_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from storefront.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def token_for():
    """Signed access token for any user id, optionally with an app role."""
    return _encode_token
