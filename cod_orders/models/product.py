# cod_orders/models/product.py
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class Product(SQLModel, table=True):
    """
    Sellable product held by a pharmacy or wholesaler.

    Catalog CRUD lives elsewhere; this service only touches the stock
    counters:
      - stock_on_hand: physical units on the shelf
      - reserved_quantity: units held for accepted, undelivered orders

    Available-to-sell is stock_on_hand - reserved_quantity.
    """

    __tablename__ = "products"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    seller_id: uuid.UUID = Field(
        foreign_key="profiles.id",
        index=True,
    )

    name: str = Field(
        max_length=200,
        index=True,
    )

    price: float = Field(
        ge=0,
        description="Unit selling price",
    )

    stock_on_hand: int = Field(
        default=0,
        ge=0,
        description="Units physically in stock",
    )

    reserved_quantity: int = Field(
        default=0,
        ge=0,
        description="Units held by open reservations",
    )

    is_active: bool = Field(
        default=True,
        index=True,
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    @property
    def available_quantity(self) -> int:
        return self.stock_on_hand - self.reserved_quantity
