# cod_orders/repositories/delivery_repo.py
import uuid
from collections.abc import Iterable
from typing import Any

from sqlalchemy import update
from sqlmodel import Session, select

from cod_orders.models.delivery import AssignmentStatus, DeliveryAssignment
from cod_orders.models.order import utcnow


class DeliveryRepository:
    """
    Data access layer for delivery_assignments.

    No commits here; the delivery service owns the unit of work.
    """

    def get_by_id(
        self,
        session: Session,
        assignment_id: uuid.UUID,
    ) -> DeliveryAssignment | None:
        return session.get(DeliveryAssignment, assignment_id)

    def get_active_for_order(
        self,
        session: Session,
        order_id: uuid.UUID,
    ) -> DeliveryAssignment | None:
        stmt = (
            select(DeliveryAssignment)
            .where(DeliveryAssignment.order_id == order_id)
            .where(DeliveryAssignment.status.in_(AssignmentStatus.ACTIVE))
        )
        return session.exec(stmt).first()

    def list_for_order(
        self,
        session: Session,
        order_id: uuid.UUID,
    ) -> list[DeliveryAssignment]:
        stmt = (
            select(DeliveryAssignment)
            .where(DeliveryAssignment.order_id == order_id)
            .order_by(DeliveryAssignment.created_at)
        )
        return session.exec(stmt).all()

    def list_for_rider(
        self,
        session: Session,
        rider_id: uuid.UUID,
        statuses: Iterable[str] | None = None,
    ) -> list[DeliveryAssignment]:
        stmt = select(DeliveryAssignment).where(DeliveryAssignment.rider_id == rider_id)
        if statuses is not None:
            stmt = stmt.where(DeliveryAssignment.status.in_(list(statuses)))
        stmt = stmt.order_by(DeliveryAssignment.created_at.desc())
        return session.exec(stmt).all()

    def create(
        self,
        session: Session,
        assignment: DeliveryAssignment,
    ) -> DeliveryAssignment:
        session.add(assignment)
        session.flush()
        session.refresh(assignment)
        return assignment

    def transition(
        self,
        session: Session,
        assignment_id: uuid.UUID,
        expected: Iterable[str],
        new_status: str,
        **values: Any,
    ) -> bool:
        """
        Check-and-set status update; False if the status moved underneath us.
        """
        stmt = (
            update(DeliveryAssignment)
            .where(
                DeliveryAssignment.id == assignment_id,
                DeliveryAssignment.status.in_(list(expected)),
            )
            .values(status=new_status, updated_at=utcnow(), **values)
        )
        result = session.exec(stmt)
        return result.rowcount == 1
