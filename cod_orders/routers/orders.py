# cod_orders/routers/orders.py
import uuid

from fastapi import APIRouter, Body, Depends, status
from sqlmodel import Session

from cod_orders.core.auth import require_admin, require_auth, require_seller
from cod_orders.database import get_session
from cod_orders.models.profile import Profile
from cod_orders.schemas.delivery import AssignmentRead
from cod_orders.schemas.order import (
    OrderCreate,
    OrderDetailRead,
    OrderRead,
    OrderReject,
    RiderRequest,
    StatusHistoryRead,
)
from cod_orders.services.wiring import services

router = APIRouter(prefix="/orders", tags=["Orders"])

service = services.orders


# -------- Buyer endpoints --------


@router.post(
    "",
    response_model=OrderRead,
    status_code=status.HTTP_201_CREATED,
)
def create_order(
    payload: OrderCreate,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_auth),
):
    """
    Place a cash-on-delivery order with a pharmacy or wholesaler.

    Auth:
      - Any authenticated profile can buy.
    """
    return service.create_order(session, current_user.id, payload)


@router.get(
    "/me",
    response_model=list[OrderRead],
)
def list_my_orders(
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_auth),
    skip: int = 0,
    limit: int = 50,
):
    """
    List the caller's orders as a buyer, newest first.
    """
    return service.list_buyer_orders(session, current_user.id, skip, limit)


# -------- Seller endpoints --------


@router.get(
    "/seller",
    response_model=list[OrderRead],
)
def list_seller_orders(
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_seller),
    active_only: bool = True,
    skip: int = 0,
    limit: int = 50,
):
    """
    Orders placed with the calling pharmacy/wholesaler.

    Query:
      - active_only: hide delivered, failed and cancelled orders (default).
    """
    return service.list_seller_orders(
        session, current_user.id, active_only, skip, limit
    )


@router.get(
    "/{order_id}",
    response_model=OrderDetailRead,
)
def get_order(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_auth),
):
    """
    Order with items.

    Auth:
      - buyer, seller, assigned rider or admin.
    """
    return service.get_order_detail(session, current_user.id, order_id)


@router.get(
    "/{order_id}/history",
    response_model=list[StatusHistoryRead],
)
def get_order_history(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_auth),
):
    return service.get_history(session, current_user.id, order_id)


@router.post(
    "/{order_id}/accept",
    response_model=OrderRead,
)
def accept_order(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_seller),
):
    """
    Confirm a pending order (pending_pharmacy_confirmation -> preparing_order).
    """
    return service.accept(session, current_user.id, order_id)


@router.post(
    "/{order_id}/reject",
    response_model=OrderRead,
)
def reject_order(
    order_id: uuid.UUID,
    payload: OrderReject,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_seller),
):
    """
    Reject an order before a rider is assigned. A reason is required.
    """
    return service.reject(session, current_user.id, order_id, payload.reason)


@router.post(
    "/{order_id}/ready",
    response_model=OrderRead,
)
def mark_order_ready(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_seller),
):
    """
    Packed and ready for pickup (preparing_order -> awaiting_rider).
    """
    return service.mark_ready(session, current_user.id, order_id)


@router.post(
    "/{order_id}/request-rider",
    response_model=AssignmentRead,
    status_code=status.HTTP_201_CREATED,
)
def request_rider(
    order_id: uuid.UUID,
    payload: RiderRequest,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_seller),
):
    """
    Assign a delivery rider to an order that is awaiting_rider.
    """
    return service.request_rider(session, current_user.id, order_id, payload.rider_id)


# -------- Admin endpoints --------


@router.post(
    "/{order_id}/cancel",
    response_model=OrderRead,
)
def cancel_order(
    order_id: uuid.UUID,
    payload: OrderReject | None = Body(default=None),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_admin),
):
    """
    Cancel an order before a rider is assigned (admin only).
    """
    reason = payload.reason if payload else None
    return service.cancel_order(session, current_user.id, order_id, reason)
