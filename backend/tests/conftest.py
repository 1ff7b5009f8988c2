import os

# Settings are read at import time: point them at throwaway backends first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

import pytest

from core.database import Base, SessionLocal, engine
from models import order as order_models  # noqa: F401  registers tables
from models.order import OrderType, PaymentType
from models.schemas import GuestContact, LineItem, OrderCreate
from services.order_service import OrderService
from services.order_store import OrderStore
from utils.broadcast import EventHub


class RecordingHandle:
    """Subscriber double that keeps every frame it is sent."""

    def __init__(self, name="handle"):
        self.name = name
        self.sent = []

    async def send_text(self, message):
        self.sent.append(message)


class BrokenHandle:
    async def send_text(self, message):
        raise RuntimeError("socket closed")


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db):
    return OrderStore(db)


@pytest.fixture
def hub():
    return EventHub()


@pytest.fixture
def service(store, hub):
    return OrderService(store, hub)


def line(item_id, name=None, price=100.0, qty=1):
    return LineItem(item_id=item_id, name=name or item_id.upper(), unit_price=price, quantity=qty)


@pytest.fixture
def make_draft():
    def _make(**overrides):
        fields = dict(
            items=[line("idly", "Idly", 30.0, 2), line("dosa", "Dosa", 110.0, 1)],
            outlet_id="outlet-1",
            restaurant_id="rest-1",
            restaurant_name="Saravana Bhavan",
            outlet_name="MG Road",
            order_type=OrderType.DINE_IN,
            table_number="12",
            payment_type=PaymentType.PAY_LATER,
            user_id="user-1",
        )
        fields.update(overrides)
        if fields.get("guest") is not None:
            fields["user_id"] = None
        return OrderCreate(**fields)
    return _make


@pytest.fixture
def guest():
    return GuestContact(name="Asha", email="asha@example.com", phone="9999999999")


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    import main

    Base.metadata.create_all(bind=engine)
    with TestClient(main.app) as c:
        yield c
    Base.metadata.drop_all(bind=engine)
