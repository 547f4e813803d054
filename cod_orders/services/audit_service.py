# cod_orders/services/audit_service.py
import logging
import uuid
from datetime import datetime
from typing import Any

from sqlmodel import Session

from cod_orders.models.ledger import AuditLog
from cod_orders.repositories.ledger_repo import LedgerRepository
from cod_orders.services.best_effort import best_effort

logger = logging.getLogger(__name__)

# ── Audit action constants ────────────────────────────────────────────────────
ACTION_ORDER_CREATED = "order_created"
ACTION_ORDER_ACCEPTED = "order_accepted"
ACTION_ORDER_REJECTED = "order_rejected"
ACTION_ORDER_READY = "order_ready"
ACTION_ORDER_CANCELLED = "order_cancelled"
ACTION_RIDER_ASSIGNED = "rider_assigned"
ACTION_DELIVERY_ACCEPTED = "delivery_accepted"
ACTION_ORDER_PICKED_UP = "order_picked_up"
ACTION_ORDER_DELIVERED = "order_delivered"
ACTION_DELIVERY_FAILED = "delivery_failed"
ACTION_DELIVERY_CANCELLED = "delivery_cancelled"

RESOURCE_ORDER = "order"
RESOURCE_ASSIGNMENT = "delivery_assignment"


def jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return value


class AuditService:
    """
    Append-only audit trail for every state-changing action.

    Call after the main action has committed. A failed write is logged and
    never reaches the caller.
    """

    def __init__(self, repo: LedgerRepository):
        self.repo = repo

    def append(
        self,
        session: Session,
        actor_id: uuid.UUID | None,
        action: str,
        resource_type: str,
        resource_id: uuid.UUID,
        details: dict[str, Any] | None = None,
    ) -> AuditLog | None:
        entry = AuditLog(
            user_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=jsonable(details or {}),
        )
        return best_effort(
            session,
            f"audit:{action}",
            self.repo.add_audit,
            session,
            entry,
            context={"resource_type": resource_type, "resource_id": str(resource_id)},
        )
