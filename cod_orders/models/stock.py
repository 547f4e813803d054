# cod_orders/models/stock.py
import uuid
from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

from cod_orders.models.order import utcnow


class ReservationStatus:
    RESERVED = "reserved"
    FULFILLED = "fulfilled"
    RELEASED = "released"


class StockReservation(SQLModel, table=True):
    """
    Hold on one product's stock for one order.

    reserved  -> counted in products.reserved_quantity
    fulfilled -> deducted from products.stock_on_hand
    released  -> hold dropped, stock available again

    A row leaves `reserved` exactly once.
    """

    __tablename__ = "stock_reservations"
    __table_args__ = (
        UniqueConstraint("order_id", "product_id", name="uq_reservation_order_product"),
    )

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )

    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)
    product_id: uuid.UUID = Field(foreign_key="products.id", index=True)

    quantity: int = Field(gt=0)
    status: str = Field(default=ReservationStatus.RESERVED, index=True)

    reserved_at: datetime = Field(default_factory=utcnow)
    released_at: datetime | None = None
    fulfilled_at: datetime | None = None
    updated_at: datetime = Field(default_factory=utcnow)


class InventoryMovement(SQLModel, table=True):
    """Permanent stock movement written when a reservation is fulfilled."""

    __tablename__ = "inventory_movements"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )

    product_id: uuid.UUID = Field(foreign_key="products.id", index=True)
    order_id: uuid.UUID | None = Field(default=None, foreign_key="orders.id", index=True)

    # out | in | adjustment
    movement_type: str = "out"
    quantity: int
    reason: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
