# cod_orders/services/events.py
"""
Delivery domain events.

The delivery service owns assignment state and publishes an event for each
rider-side transition; the order service subscribes and moves the order to
match. Neither writes the other's tables directly.

Two phases:
  - subscribe(): runs inside the publisher's unit of work, before commit.
    An exception aborts the whole transition.
  - subscribe_after_commit(): runs once the transition is durable. Used for
    bookkeeping and notifications; failures are the handler's own concern.
"""
import logging
import uuid
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlmodel import Session

from cod_orders.models.order import utcnow

logger = logging.getLogger(__name__)


class DeliveryEventType:
    PICKED_UP = "assignment.picked_up"
    DELIVERED = "assignment.delivered"
    FAILED = "assignment.failed"
    CANCELLED = "assignment.cancelled"


@dataclass(frozen=True)
class DeliveryEvent:
    type: str
    assignment_id: uuid.UUID
    order_id: uuid.UUID
    actor_id: uuid.UUID | None
    occurred_at: datetime = field(default_factory=utcnow)
    data: dict[str, Any] = field(default_factory=dict)


Handler = Callable[[Session, DeliveryEvent], None]


class DeliveryEventBus:
    """In-process, synchronous publish/subscribe for delivery events."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._after_commit: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def subscribe_after_commit(self, event_type: str, handler: Handler) -> None:
        self._after_commit[event_type].append(handler)

    def publish(self, session: Session, event: DeliveryEvent) -> None:
        """Run in-transaction handlers; exceptions propagate to the publisher."""
        logger.debug("publish %s for order %s", event.type, event.order_id)
        for handler in self._handlers[event.type]:
            handler(session, event)

    def publish_committed(self, session: Session, event: DeliveryEvent) -> None:
        for handler in self._after_commit[event.type]:
            handler(session, event)
