import os

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")

import uuid  # noqa: E402

import pytest  # noqa: E402
from sqlmodel import SQLModel, Session  # noqa: E402

from cod_orders.database import engine  # noqa: E402
from cod_orders.models import delivery as _delivery_models  # noqa: E402,F401
from cod_orders.models import ledger as _ledger_models  # noqa: E402,F401
from cod_orders.models import stock as _stock_models  # noqa: E402,F401
from cod_orders.models.product import Product  # noqa: E402
from cod_orders.models.profile import Profile, Role  # noqa: E402
from cod_orders.schemas.order import OrderCreate, OrderItemCreate  # noqa: E402
from cod_orders.services.wiring import Services  # noqa: E402


class RecordingChannel:
    """Notification channel that keeps every message it is given."""

    __name__ = "recording_channel"

    def __init__(self):
        self.messages = []

    def __call__(self, message):
        self.messages.append(message)

    def events_for(self, recipient_id):
        return [m.event_type for m in self.messages if m.recipient_id == recipient_id]


@pytest.fixture
def session():
    SQLModel.metadata.create_all(engine)
    with Session(engine) as s:
        yield s
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def services(channel):
    return Services(channels=[channel])


def _profile(session, role, name, **extra):
    profile = Profile(
        id=uuid.uuid4(),
        email=f"{name}@example.com",
        name=name,
        role=role,
        **extra,
    )
    session.add(profile)
    return profile


@pytest.fixture
def people(session):
    people = {
        "buyer": _profile(session, Role.INDIVIDUAL, "amina", phone="+255700000001"),
        "pharmacy": _profile(
            session,
            Role.PHARMACY,
            "afya",
            business_name="Afya Pharmacy",
            address="Jamhuri St, Dodoma",
            phone="+255700000002",
            latitude=-6.1630,
            longitude=35.7516,
        ),
        "wholesaler": _profile(
            session,
            Role.WHOLESALE,
            "bohari",
            business_name="Bohari Wholesale",
            address="Kikuyu Ave, Dodoma",
        ),
        "rider": _profile(session, Role.DELIVERY, "juma", phone="+255700000003"),
        "other_rider": _profile(session, Role.DELIVERY, "neema"),
        "admin": _profile(session, Role.ADMIN, "admin"),
    }
    session.commit()
    return people


@pytest.fixture
def products(session, people):
    products = {
        "paracetamol": Product(
            seller_id=people["pharmacy"].id,
            name="Paracetamol 500mg",
            price=2500,
            stock_on_hand=10,
        ),
        "amoxicillin": Product(
            seller_id=people["pharmacy"].id,
            name="Amoxicillin 250mg",
            price=4000,
            stock_on_hand=5,
        ),
        "gloves": Product(
            seller_id=people["wholesaler"].id,
            name="Latex gloves (box)",
            price=12000,
            stock_on_hand=50,
        ),
    }
    session.add_all(products.values())
    session.commit()
    return products


def _order_payload(seller, items, **overrides):
    data = {
        "seller_id": seller.id,
        "items": [
            OrderItemCreate(product_id=product.id, quantity=qty) for product, qty in items
        ],
        "delivery_address": "Area D, Dodoma",
        "delivery_phone": "+255700000001",
        "delivery_fee": 2000,
    }
    data.update(overrides)
    return OrderCreate(**data)


@pytest.fixture
def make_payload():
    return _order_payload


@pytest.fixture
def place_order(session, services, people, products):
    """Place a 2 x paracetamol order (7000 incl. 2000 delivery)."""

    def _place(items=None, seller=None, **overrides):
        seller = seller or people["pharmacy"]
        items = items or [(products["paracetamol"], 2)]
        return services.orders.create_order(
            session,
            people["buyer"].id,
            _order_payload(seller, items, **overrides),
        )

    return _place


@pytest.fixture
def dispatched_order(session, services, people, place_order):
    """Order that has a rider assigned. Returns (order, assignment)."""
    order = place_order()
    pharmacy = people["pharmacy"].id
    services.orders.accept(session, pharmacy, order.id)
    services.orders.mark_ready(session, pharmacy, order.id)
    assignment = services.orders.request_rider(
        session, pharmacy, order.id, people["rider"].id
    )
    return order, assignment
