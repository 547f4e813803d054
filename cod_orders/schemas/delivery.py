# cod_orders/schemas/delivery.py
import uuid
from datetime import datetime
from typing import Literal

from pydantic import ConfigDict
from sqlmodel import SQLModel

AssignmentStatusLiteral = Literal[
    "assigned", "accepted", "picked_up", "delivered", "failed", "cancelled"
]


class AssignmentRead(SQLModel):
    id: uuid.UUID
    order_id: uuid.UUID
    rider_id: uuid.UUID
    seller_id: uuid.UUID
    status: AssignmentStatusLiteral
    pickup_address: str
    delivery_address: str
    customer_phone: str
    customer_name: str
    delivery_notes: str | None
    cash_amount: float
    cash_collected: bool
    collected_amount: float | None
    cash_discrepancy: float | None
    failure_reason: str | None
    actual_pickup_time: datetime | None
    actual_delivery_time: datetime | None
    created_at: datetime
    updated_at: datetime


class DeliveredPayload(SQLModel):
    """Rider reports the cash collected at the door."""

    model_config = ConfigDict(extra="forbid")

    cash_amount: float | None = None


class FailurePayload(SQLModel):
    model_config = ConfigDict(extra="forbid")

    reason: str | None = None


class RiderRead(SQLModel):
    id: uuid.UUID
    name: str
    phone: str | None
    address: str | None


class FeeQuoteRead(SQLModel):
    total_fee: float
    rider_share: float
    platform_share: float
    distance_km: float
    currency: str
