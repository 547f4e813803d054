# cod_orders/models/ledger.py
"""
Secondary records written around order transitions: POS sales, audit log
and in-app notifications.
"""
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field

from cod_orders.models.order import utcnow


class PosSale(SQLModel, table=True):
    """Completed sale booked against the seller when COD cash is collected."""

    __tablename__ = "pos_sales"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )

    seller_id: uuid.UUID = Field(foreign_key="profiles.id", index=True)
    # One sale per delivered order
    order_id: uuid.UUID = Field(foreign_key="orders.id", unique=True, index=True)

    total_amount: float
    payment_method: str = "cod"
    customer_name: str = "COD Customer"

    sale_date: datetime = Field(default_factory=utcnow)


class PosSaleItem(SQLModel, table=True):
    __tablename__ = "pos_sale_items"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )

    pos_sale_id: uuid.UUID = Field(foreign_key="pos_sales.id", index=True)
    product_id: uuid.UUID = Field(foreign_key="products.id")

    quantity: int
    unit_price: float
    total_price: float


class AuditLog(SQLModel, table=True):
    """Immutable record of a state-changing action."""

    __tablename__ = "audit_logs"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )

    user_id: uuid.UUID | None = Field(default=None, index=True)
    action: str = Field(index=True)
    resource_type: str
    resource_id: uuid.UUID = Field(index=True)
    details: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    category: str = "delivery"

    created_at: datetime = Field(default_factory=utcnow)


class Notification(SQLModel, table=True):
    """In-app notification shown on the recipient's dashboard."""

    __tablename__ = "notifications"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )

    recipient_id: uuid.UUID = Field(foreign_key="profiles.id", index=True)
    event_type: str = Field(index=True)
    title: str
    message: str
    payload: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    is_read: bool = False

    created_at: datetime = Field(default_factory=utcnow)
