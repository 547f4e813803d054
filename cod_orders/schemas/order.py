# cod_orders/schemas/order.py
import uuid
from datetime import datetime
from typing import Literal

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel

OrderStatusLiteral = Literal[
    "pending_pharmacy_confirmation",
    "preparing_order",
    "awaiting_rider",
    "rider_assigned",
    "out_for_delivery",
    "delivered_and_paid",
    "delivery_failed",
    "cancelled",
]


def _strip_or_none(v: str | None) -> str | None:
    if v is None:
        return v
    v = v.strip()
    return v or None


class OrderItemCreate(SQLModel):
    """
    One requested line.

    unit_price may be omitted, in which case the catalog price is used.
    Quantity is checked by the lifecycle engine, not here, so a bad
    quantity surfaces as a domain ValidationError.
    """

    model_config = ConfigDict(extra="forbid")

    product_id: uuid.UUID
    quantity: int
    unit_price: float | None = None


class OrderCreate(SQLModel):
    """
    Payload for placing a COD order.

    Buyer provides:
      - seller_id (pharmacy or wholesaler)
      - items
      - delivery address and phone (required)
      - optional notes and coordinates
      - optional delivery fee or distance; otherwise it is derived from
        coordinates, or zero

    Backend derives:
      - buyer_id from token
      - order_number, status, payment_status
      - line totals, subtotal, total_amount
    """

    model_config = ConfigDict(extra="forbid")

    seller_id: uuid.UUID
    items: list[OrderItemCreate]
    delivery_address: str | None = None
    delivery_phone: str | None = None
    delivery_notes: str | None = None
    delivery_latitude: float | None = None
    delivery_longitude: float | None = None
    distance_km: float | None = None
    delivery_fee: float | None = None

    @field_validator("delivery_address", "delivery_phone", "delivery_notes")
    @classmethod
    def normalize_text(cls, v: str | None) -> str | None:
        return _strip_or_none(v)


class OrderRead(SQLModel):
    """
    Order without items.
    """

    id: uuid.UUID
    order_number: str
    order_type: str
    buyer_id: uuid.UUID
    seller_id: uuid.UUID
    rider_id: uuid.UUID | None
    status: OrderStatusLiteral
    payment_status: str
    payment_method: str
    subtotal: float
    delivery_fee: float
    total_amount: float
    delivery_address: str
    delivery_phone: str
    delivery_notes: str | None
    distance_km: float | None
    notes: str | None
    cash_collected: float | None
    cash_discrepancy: float | None
    created_at: datetime
    updated_at: datetime
    rider_assigned_at: datetime | None
    picked_up_at: datetime | None
    delivered_at: datetime | None
    cash_collected_at: datetime | None


class OrderItemRead(SQLModel):
    id: uuid.UUID
    product_id: uuid.UUID
    product_name: str | None
    quantity: int
    unit_price: float
    line_total: float


class StatusHistoryRead(SQLModel):
    status: str
    changed_by: uuid.UUID | None
    notes: str | None
    created_at: datetime


class OrderDetailRead(OrderRead):
    """
    Full order view including items and a human status label.
    """

    status_label: str
    items: list[OrderItemRead]


class OrderReject(SQLModel):
    model_config = ConfigDict(extra="forbid")

    reason: str | None = None


class RiderRequest(SQLModel):
    model_config = ConfigDict(extra="forbid")

    rider_id: uuid.UUID
