# cod_orders/routers/deliveries.py
import uuid

from fastapi import APIRouter, Body, Depends
from sqlmodel import Session

from cod_orders.core.auth import require_admin, require_auth, require_rider, require_seller
from cod_orders.database import get_session
from cod_orders.models.profile import Profile
from cod_orders.schemas.delivery import (
    AssignmentRead,
    DeliveredPayload,
    FailurePayload,
    RiderRead,
)
from cod_orders.services.wiring import services

router = APIRouter(prefix="/deliveries", tags=["Deliveries"])

service = services.deliveries


# -------- Rider endpoints --------


@router.get(
    "/me",
    response_model=list[AssignmentRead],
)
def list_my_assignments(
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_rider),
    active_only: bool = True,
):
    """
    The calling rider's assignments.

    Query:
      - active_only: only assigned / accepted / picked_up (default).
    """
    return service.list_rider_assignments(session, current_user.id, active_only)


@router.get(
    "/riders",
    response_model=list[RiderRead],
    dependencies=[Depends(require_seller)],
)
def list_riders(session: Session = Depends(get_session)):
    """
    Delivery riders a seller can request.
    """
    return service.list_available_riders(session)


@router.get(
    "/{assignment_id}",
    response_model=AssignmentRead,
)
def get_assignment(
    assignment_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_auth),
):
    """
    Auth:
      - assigned rider, seller of the order, or admin.
    """
    return service.get_assignment(session, current_user.id, assignment_id)


@router.post(
    "/{assignment_id}/accept",
    response_model=AssignmentRead,
)
def accept_assignment(
    assignment_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_rider),
):
    return service.accept(session, current_user.id, assignment_id)


@router.post(
    "/{assignment_id}/pickup",
    response_model=AssignmentRead,
)
def pickup_assignment(
    assignment_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_rider),
):
    """
    Parcel collected from the seller; the order goes out_for_delivery.
    """
    return service.mark_picked_up(session, current_user.id, assignment_id)


@router.post(
    "/{assignment_id}/deliver",
    response_model=AssignmentRead,
)
def deliver_assignment(
    assignment_id: uuid.UUID,
    payload: DeliveredPayload,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_rider),
):
    """
    Parcel handed over and cash collected; the order becomes
    delivered_and_paid.

    Body:
      - cash_amount: what the rider actually collected.
    """
    return service.mark_delivered(
        session, current_user.id, assignment_id, payload.cash_amount
    )


@router.post(
    "/{assignment_id}/fail",
    response_model=AssignmentRead,
)
def fail_assignment(
    assignment_id: uuid.UUID,
    payload: FailurePayload,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_rider),
):
    """
    Delivery could not be completed after pickup. A reason is required.
    """
    return service.mark_failed(session, current_user.id, assignment_id, payload.reason)


# -------- Admin endpoints --------


@router.post(
    "/{assignment_id}/admin-fail",
    response_model=AssignmentRead,
)
def admin_fail_assignment(
    assignment_id: uuid.UUID,
    payload: FailurePayload,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_admin),
):
    """
    Mark any active assignment failed (admin only).
    """
    return service.fail_assignment(session, current_user.id, assignment_id, payload.reason)


@router.post(
    "/{assignment_id}/cancel",
    response_model=AssignmentRead,
)
def cancel_assignment(
    assignment_id: uuid.UUID,
    payload: FailurePayload | None = Body(default=None),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_admin),
):
    """
    Withdraw the rider before pickup (admin only). The order returns to
    awaiting_rider.
    """
    reason = payload.reason if payload else None
    return service.cancel_assignment(session, current_user.id, assignment_id, reason)
