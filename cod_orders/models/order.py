# cod_orders/models/order.py
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus:
    """
    COD order lifecycle.

      pending_pharmacy_confirmation -> preparing_order -> awaiting_rider
        -> rider_assigned -> out_for_delivery -> delivered_and_paid

    delivery_failed and cancelled are side exits.
    """

    PENDING_PHARMACY_CONFIRMATION = "pending_pharmacy_confirmation"
    PREPARING_ORDER = "preparing_order"
    AWAITING_RIDER = "awaiting_rider"
    RIDER_ASSIGNED = "rider_assigned"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED_AND_PAID = "delivered_and_paid"
    DELIVERY_FAILED = "delivery_failed"
    CANCELLED = "cancelled"

    TERMINAL = frozenset({DELIVERED_AND_PAID, DELIVERY_FAILED, CANCELLED})
    ACTIVE = (
        PENDING_PHARMACY_CONFIRMATION,
        PREPARING_ORDER,
        AWAITING_RIDER,
        RIDER_ASSIGNED,
        OUT_FOR_DELIVERY,
    )
    # Seller rejection / admin cancel is only allowed before a rider is involved
    CANCELLABLE = (
        PENDING_PHARMACY_CONFIRMATION,
        PREPARING_ORDER,
        AWAITING_RIDER,
    )

    LABELS = {
        PENDING_PHARMACY_CONFIRMATION: "Pending Confirmation",
        PREPARING_ORDER: "Preparing Order",
        AWAITING_RIDER: "Ready for Pickup",
        RIDER_ASSIGNED: "Rider Assigned",
        OUT_FOR_DELIVERY: "Out for Delivery",
        DELIVERED_AND_PAID: "Delivered & Paid",
        DELIVERY_FAILED: "Delivery Failed",
        CANCELLED: "Cancelled",
    }

    @classmethod
    def label(cls, status: str) -> str:
        return cls.LABELS.get(status, status)


class PaymentStatus:
    PENDING = "pending"
    PAID = "paid"


class OrderType:
    RETAIL = "retail"
    WHOLESALE = "wholesale"


class Order(SQLModel, table=True):
    """
    One cash-on-delivery buyer transaction.

    Status is only changed through the lifecycle engine; phase timestamps
    (rider_assigned_at, picked_up_at, delivered_at, cash_collected_at) are
    written once by the transition that reaches that phase.
    """

    __tablename__ = "orders"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_number: str = Field(
        unique=True,
        index=True,
        description="COD-<YYYYMMDD>-<6-digit suffix>",
    )

    # retail | wholesale
    order_type: str = Field(default=OrderType.RETAIL)

    buyer_id: uuid.UUID = Field(foreign_key="profiles.id", index=True)
    seller_id: uuid.UUID = Field(foreign_key="profiles.id", index=True)
    rider_id: uuid.UUID | None = Field(
        default=None,
        foreign_key="profiles.id",
        index=True,
    )

    status: str = Field(
        default=OrderStatus.PENDING_PHARMACY_CONFIRMATION,
        index=True,
    )
    payment_status: str = Field(default=PaymentStatus.PENDING, index=True)
    payment_method: str = Field(default="cod")

    subtotal: float = Field(default=0, description="Sum of line totals")
    delivery_fee: float = Field(default=0)
    total_amount: float = Field(description="subtotal + delivery_fee")

    delivery_address: str
    delivery_phone: str
    delivery_notes: str | None = None
    delivery_latitude: float | None = None
    delivery_longitude: float | None = None
    distance_km: float | None = None

    # Seller-facing notes (e.g. rejection reason)
    notes: str | None = None

    # Amount the rider reported and its difference from total_amount
    cash_collected: float | None = None
    cash_discrepancy: float | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    rider_assigned_at: datetime | None = None
    picked_up_at: datetime | None = None
    delivered_at: datetime | None = None
    cash_collected_at: datetime | None = None

    @property
    def is_wholesale(self) -> bool:
        return self.order_type == OrderType.WHOLESALE


class OrderItem(SQLModel, table=True):
    """
    Line item inside an order. Prices are snapshotted at order time.
    """

    __tablename__ = "order_items"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)
    product_id: uuid.UUID = Field(foreign_key="products.id", index=True)
    product_name: str | None = None

    quantity: int = Field(gt=0)
    unit_price: float = Field(ge=0)
    line_total: float


class OrderStatusHistory(SQLModel, table=True):
    """
    Append-only trail of status changes. Rows are never updated or deleted.
    """

    __tablename__ = "order_status_history"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )

    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)
    status: str
    changed_by: uuid.UUID | None = None
    notes: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
