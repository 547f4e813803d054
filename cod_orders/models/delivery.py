# cod_orders/models/delivery.py
import uuid
from datetime import datetime

from sqlmodel import SQLModel, Field

from cod_orders.models.order import utcnow


class AssignmentStatus:
    """
    Rider sub-lifecycle:

      assigned -> accepted -> picked_up -> delivered | failed

    cancelled is reachable administratively from assigned/accepted.
    """

    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"

    ACTIVE = (ASSIGNED, ACCEPTED, PICKED_UP)
    TERMINAL = frozenset({DELIVERED, FAILED, CANCELLED})


class DeliveryAssignment(SQLModel, table=True):
    """
    One rider's task for one order.

    Addresses, phone and cash amount are copied from the order and seller
    profile when the rider is requested; later edits to either do not
    change the assignment.

    cash_collected is true only once status is delivered, and
    failure_reason is only set once status is failed.
    """

    __tablename__ = "delivery_assignments"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)
    rider_id: uuid.UUID = Field(foreign_key="profiles.id", index=True)
    seller_id: uuid.UUID = Field(foreign_key="profiles.id", index=True)

    status: str = Field(default=AssignmentStatus.ASSIGNED, index=True)

    pickup_address: str = ""
    delivery_address: str = ""
    customer_phone: str = ""
    customer_name: str = "Customer"
    delivery_notes: str | None = None

    # Expected cash (order total) vs what the rider reported
    cash_amount: float = 0
    cash_collected: bool = False
    collected_amount: float | None = None
    cash_discrepancy: float | None = None

    failure_reason: str | None = None

    actual_pickup_time: datetime | None = None
    actual_delivery_time: datetime | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
