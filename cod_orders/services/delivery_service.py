# cod_orders/services/delivery_service.py
import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlmodel import Session

from cod_orders.core.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from cod_orders.database import unit_of_work
from cod_orders.models.delivery import AssignmentStatus, DeliveryAssignment
from cod_orders.models.order import Order, utcnow
from cod_orders.models.profile import Profile, Role
from cod_orders.repositories.delivery_repo import DeliveryRepository
from cod_orders.repositories.profile_repo import ProfileRepository
from cod_orders.services import audit_service as audit
from cod_orders.services.audit_service import AuditService
from cod_orders.services.events import (
    DeliveryEvent,
    DeliveryEventBus,
    DeliveryEventType,
)

logger = logging.getLogger(__name__)


class DeliveryService:
    """
    Rider-facing sub-lifecycle of a COD order.

      assigned -> accepted -> picked_up -> delivered | failed
      assigned | accepted -> cancelled (admin)

    Responsibilities:
      - create the assignment snapshot when a seller requests a rider
      - enforce that only the assigned rider drives rider transitions
      - publish a DeliveryEvent for every transition that the order must
        mirror (picked up, delivered, failed, cancelled)

    Order rows are never written here; the order service reacts to events.
    """

    def __init__(
        self,
        repo: DeliveryRepository,
        profile_repo: ProfileRepository,
        audit_service: AuditService,
        events: DeliveryEventBus,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.profile_repo = profile_repo
        self.audit = audit_service
        self.events = events
        self.clock = clock

    # -------- Creation (called by the order lifecycle) --------

    def create_assignment(
        self,
        session: Session,
        order: Order,
        seller: Profile | None,
        rider_id: uuid.UUID,
        customer_name: str | None = None,
    ) -> DeliveryAssignment:
        """
        Insert an `assigned` row snapshotting addresses and cash to collect.

        Does not commit; the caller moves the order in the same unit of work.

        Raises:
            InvalidStateError: the order already has an active assignment.
        """
        if self.repo.get_active_for_order(session, order.id) is not None:
            raise InvalidStateError(
                f"Order {order.order_number} already has an active delivery assignment"
            )

        assignment = DeliveryAssignment(
            order_id=order.id,
            rider_id=rider_id,
            seller_id=order.seller_id,
            status=AssignmentStatus.ASSIGNED,
            pickup_address=(seller.address if seller else None) or "",
            delivery_address=order.delivery_address or "",
            customer_phone=order.delivery_phone or "",
            customer_name=customer_name or "Customer",
            delivery_notes=order.delivery_notes,
            cash_amount=order.total_amount,
            cash_collected=False,
        )
        return self.repo.create(session, assignment)

    # -------- Queries --------

    def get_active_for_order(
        self,
        session: Session,
        order_id: uuid.UUID,
    ) -> DeliveryAssignment | None:
        return self.repo.get_active_for_order(session, order_id)

    def get_assignment(
        self,
        session: Session,
        actor_id: uuid.UUID,
        assignment_id: uuid.UUID,
    ) -> DeliveryAssignment:
        """
        Rider, seller or admin view of one assignment.
        """
        assignment = self._get(session, assignment_id)
        if actor_id not in (assignment.rider_id, assignment.seller_id) and not (
            self.profile_repo.is_admin(session, actor_id)
        ):
            raise AuthorizationError("Not allowed to view this delivery assignment")
        return assignment

    def list_rider_assignments(
        self,
        session: Session,
        rider_id: uuid.UUID,
        active_only: bool = True,
    ) -> list[DeliveryAssignment]:
        statuses = AssignmentStatus.ACTIVE if active_only else None
        return self.repo.list_for_rider(session, rider_id, statuses)

    def list_available_riders(self, session: Session) -> list[Profile]:
        return self.profile_repo.list_by_role(session, Role.DELIVERY)

    # -------- Rider transitions --------

    def accept(
        self,
        session: Session,
        actor_id: uuid.UUID,
        assignment_id: uuid.UUID,
    ) -> DeliveryAssignment:
        """
        Rider takes the job. The order status does not change.
        """
        assignment = self._get_for_rider(session, actor_id, assignment_id)
        return self._transition(
            session,
            assignment,
            actor_id,
            expected=(AssignmentStatus.ASSIGNED,),
            new_status=AssignmentStatus.ACCEPTED,
            event_type=None,
            audit_action=audit.ACTION_DELIVERY_ACCEPTED,
        )

    def mark_picked_up(
        self,
        session: Session,
        actor_id: uuid.UUID,
        assignment_id: uuid.UUID,
    ) -> DeliveryAssignment:
        """
        Rider collected the parcel; the order goes out_for_delivery.
        """
        assignment = self._get_for_rider(session, actor_id, assignment_id)
        now = self.clock()
        return self._transition(
            session,
            assignment,
            actor_id,
            expected=(AssignmentStatus.ACCEPTED,),
            new_status=AssignmentStatus.PICKED_UP,
            event_type=DeliveryEventType.PICKED_UP,
            audit_action=audit.ACTION_ORDER_PICKED_UP,
            occurred_at=now,
            actual_pickup_time=now,
        )

    def mark_delivered(
        self,
        session: Session,
        actor_id: uuid.UUID,
        assignment_id: uuid.UUID,
        cash_amount: float | None,
    ) -> DeliveryAssignment:
        """
        Rider handed over the parcel and collected cash.

        The reported amount is stored as-is; any difference from the
        expected cash_amount is kept in cash_discrepancy for reconciliation
        and does not block completion.

        Raises:
            ValidationError: cash amount missing or negative.
        """
        assignment = self._get_for_rider(session, actor_id, assignment_id)
        if cash_amount is None:
            raise ValidationError("Collected cash amount is required")
        if cash_amount < 0:
            raise ValidationError("Collected cash amount cannot be negative")

        discrepancy = round(cash_amount - assignment.cash_amount, 2)
        if discrepancy:
            logger.warning(
                "Cash discrepancy on assignment %s (order %s): expected %s, collected %s",
                assignment.id,
                assignment.order_id,
                assignment.cash_amount,
                cash_amount,
            )

        now = self.clock()
        return self._transition(
            session,
            assignment,
            actor_id,
            expected=(AssignmentStatus.PICKED_UP,),
            new_status=AssignmentStatus.DELIVERED,
            event_type=DeliveryEventType.DELIVERED,
            audit_action=audit.ACTION_ORDER_DELIVERED,
            audit_details={
                "cash_collected": cash_amount,
                "cash_expected": assignment.cash_amount,
                "cash_discrepancy": discrepancy,
            },
            event_data={"cash_amount": cash_amount, "cash_discrepancy": discrepancy},
            occurred_at=now,
            cash_collected=True,
            collected_amount=cash_amount,
            cash_discrepancy=discrepancy,
            actual_delivery_time=now,
        )

    def mark_failed(
        self,
        session: Session,
        actor_id: uuid.UUID,
        assignment_id: uuid.UUID,
        reason: str | None,
    ) -> DeliveryAssignment:
        """
        Rider could not complete the delivery after pickup.
        """
        assignment = self._get_for_rider(session, actor_id, assignment_id)
        return self._fail(
            session,
            assignment,
            actor_id,
            reason,
            expected=(AssignmentStatus.PICKED_UP,),
        )

    # -------- Administrative transitions --------

    def fail_assignment(
        self,
        session: Session,
        actor_id: uuid.UUID,
        assignment_id: uuid.UUID,
        reason: str | None,
    ) -> DeliveryAssignment:
        """
        Admin marks any active assignment failed.
        """
        self._require_admin(session, actor_id)
        assignment = self._get(session, assignment_id)
        return self._fail(
            session,
            assignment,
            actor_id,
            reason,
            expected=AssignmentStatus.ACTIVE,
        )

    def cancel_assignment(
        self,
        session: Session,
        actor_id: uuid.UUID,
        assignment_id: uuid.UUID,
        reason: str | None = None,
    ) -> DeliveryAssignment:
        """
        Admin withdraws a rider before pickup. The order goes back to
        awaiting_rider so the seller can request someone else.
        """
        self._require_admin(session, actor_id)
        assignment = self._get(session, assignment_id)
        return self._transition(
            session,
            assignment,
            actor_id,
            expected=(AssignmentStatus.ASSIGNED, AssignmentStatus.ACCEPTED),
            new_status=AssignmentStatus.CANCELLED,
            event_type=DeliveryEventType.CANCELLED,
            audit_action=audit.ACTION_DELIVERY_CANCELLED,
            audit_details={"reason": reason},
            event_data={"reason": reason},
        )

    # -------- Internals --------

    def _fail(
        self,
        session: Session,
        assignment: DeliveryAssignment,
        actor_id: uuid.UUID,
        reason: str | None,
        expected: tuple[str, ...],
    ) -> DeliveryAssignment:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A failure reason is required")
        return self._transition(
            session,
            assignment,
            actor_id,
            expected=expected,
            new_status=AssignmentStatus.FAILED,
            event_type=DeliveryEventType.FAILED,
            audit_action=audit.ACTION_DELIVERY_FAILED,
            audit_details={"reason": reason, "previous_status": assignment.status},
            event_data={"reason": reason, "previous_status": assignment.status},
            failure_reason=reason,
        )

    def _transition(
        self,
        session: Session,
        assignment: DeliveryAssignment,
        actor_id: uuid.UUID,
        expected: tuple[str, ...],
        new_status: str,
        event_type: str | None,
        audit_action: str,
        audit_details: dict[str, Any] | None = None,
        event_data: dict[str, Any] | None = None,
        occurred_at: datetime | None = None,
        **values: Any,
    ) -> DeliveryAssignment:
        """
        Check-and-set the assignment, let subscribers move the order in the
        same unit of work, commit, then run after-commit work.
        """
        if assignment.status not in expected:
            raise InvalidStateError(
                f"Cannot move delivery from {assignment.status} to {new_status}"
            )

        event = None
        if event_type is not None:
            event = DeliveryEvent(
                type=event_type,
                assignment_id=assignment.id,
                order_id=assignment.order_id,
                actor_id=actor_id,
                occurred_at=occurred_at or self.clock(),
                data=event_data or {},
            )

        with unit_of_work(session):
            if not self.repo.transition(session, assignment.id, expected, new_status, **values):
                raise InvalidStateError(
                    f"Delivery {assignment.id} changed status concurrently"
                )
            if event is not None:
                self.events.publish(session, event)

        if event is not None:
            self.events.publish_committed(session, event)

        details = {"order_id": assignment.order_id, "status": new_status}
        details.update(audit_details or {})
        self.audit.append(
            session,
            actor_id,
            audit_action,
            audit.RESOURCE_ASSIGNMENT,
            assignment.id,
            details,
        )

        session.refresh(assignment)
        return assignment

    def _get(self, session: Session, assignment_id: uuid.UUID) -> DeliveryAssignment:
        assignment = self.repo.get_by_id(session, assignment_id)
        if assignment is None:
            raise NotFoundError("Delivery assignment not found")
        return assignment

    def _get_for_rider(
        self,
        session: Session,
        actor_id: uuid.UUID,
        assignment_id: uuid.UUID,
    ) -> DeliveryAssignment:
        assignment = self._get(session, assignment_id)
        if assignment.rider_id != actor_id:
            raise AuthorizationError("This delivery is assigned to another rider")
        return assignment

    def _require_admin(self, session: Session, actor_id: uuid.UUID) -> None:
        if not self.profile_repo.is_admin(session, actor_id):
            raise AuthorizationError("Admin access required")
