import pytest
from sqlalchemy.exc import OperationalError

from cod_orders.core.errors import (
    AuthorizationError,
    InvalidStateError,
    StockLedgerError,
    ValidationError,
)
from cod_orders.models.delivery import AssignmentStatus
from cod_orders.models.order import OrderStatus, PaymentStatus
from cod_orders.models.stock import ReservationStatus
from cod_orders.services.notification_service import NotificationEvent


@pytest.fixture
def picked_up(session, services, people, dispatched_order):
    order, assignment = dispatched_order
    rider = people["rider"].id
    services.deliveries.accept(session, rider, assignment.id)
    services.deliveries.mark_picked_up(session, rider, assignment.id)
    return order, assignment


def test_assignment_snapshot(people, dispatched_order):
    order, assignment = dispatched_order
    assert assignment.status == AssignmentStatus.ASSIGNED
    assert assignment.rider_id == people["rider"].id
    assert assignment.seller_id == people["pharmacy"].id
    assert assignment.delivery_address == "Area D, Dodoma"
    assert assignment.customer_phone == "+255700000001"
    assert assignment.customer_name == "amina"
    assert assignment.cash_amount == order.total_amount
    assert assignment.cash_collected is False


def test_only_assigned_rider_can_act(session, services, people, dispatched_order):
    _, assignment = dispatched_order
    other = people["other_rider"].id

    with pytest.raises(AuthorizationError):
        services.deliveries.accept(session, other, assignment.id)

    session.refresh(assignment)
    assert assignment.status == AssignmentStatus.ASSIGNED


def test_pickup_requires_accept(session, services, people, dispatched_order):
    order, assignment = dispatched_order
    with pytest.raises(InvalidStateError):
        services.deliveries.mark_picked_up(session, people["rider"].id, assignment.id)
    session.refresh(order)
    assert order.status == OrderStatus.RIDER_ASSIGNED


def test_pickup_moves_order(session, services, people, picked_up):
    order, assignment = picked_up
    assert assignment.status == AssignmentStatus.PICKED_UP
    assert assignment.actual_pickup_time is not None
    session.refresh(order)
    assert order.status == OrderStatus.OUT_FOR_DELIVERY


def test_deliver_requires_cash_amount(session, services, people, picked_up):
    order, assignment = picked_up
    rider = people["rider"].id

    with pytest.raises(ValidationError):
        services.deliveries.mark_delivered(session, rider, assignment.id, None)
    with pytest.raises(ValidationError):
        services.deliveries.mark_delivered(session, rider, assignment.id, -1)

    session.refresh(order)
    assert order.status == OrderStatus.OUT_FOR_DELIVERY


def test_cash_discrepancy_is_recorded(session, services, people, picked_up, caplog):
    order, assignment = picked_up

    services.deliveries.mark_delivered(session, people["rider"].id, assignment.id, 6500)

    assert assignment.status == AssignmentStatus.DELIVERED
    assert assignment.cash_collected is True
    assert assignment.collected_amount == 6500
    assert assignment.cash_discrepancy == -500
    session.refresh(order)
    assert order.status == OrderStatus.DELIVERED_AND_PAID
    assert order.payment_status == PaymentStatus.PAID
    assert order.cash_collected == 6500
    assert order.cash_discrepancy == -500
    assert "Cash discrepancy" in caplog.text


def test_delivered_notifies_buyer(session, services, people, picked_up, channel):
    _, assignment = picked_up
    services.deliveries.mark_delivered(session, people["rider"].id, assignment.id, 7000)
    buyer_events = channel.events_for(people["buyer"].id)
    assert buyer_events[-1] == NotificationEvent.ORDER_STATUS_CHANGED
    assert "Delivered & Paid" in channel.messages[-1].title


def test_deliver_twice_rejected(session, services, people, picked_up):
    order, assignment = picked_up
    rider = people["rider"].id
    services.deliveries.mark_delivered(session, rider, assignment.id, 7000)

    with pytest.raises(InvalidStateError):
        services.deliveries.mark_delivered(session, rider, assignment.id, 7000)

    sale = services.ledger_repo.get_sale_for_order(session, order.id)
    assert len(services.ledger_repo.list_sale_items(session, sale.id)) == 1


def test_rider_failure_releases_stock(session, services, people, products, picked_up):
    order, assignment = picked_up

    services.deliveries.mark_failed(
        session, people["rider"].id, assignment.id, "Customer not reachable"
    )

    assert assignment.status == AssignmentStatus.FAILED
    assert assignment.failure_reason == "Customer not reachable"
    session.refresh(order)
    assert order.status == OrderStatus.DELIVERY_FAILED
    para = products["paracetamol"]
    session.refresh(para)
    assert (para.stock_on_hand, para.reserved_quantity) == (10, 0)
    [reservation] = services.stock.list_for_order(session, order.id)
    assert reservation.status == ReservationStatus.RELEASED


@pytest.fixture
def broken_stock_ledger(services, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("UPDATE stock_reservations", {}, Exception("disk I/O error"))

    monkeypatch.setattr(services.stock.repo, "close_reservation", broken)


def test_failed_release_rolls_back_rider_failure(
    session, services, people, picked_up, broken_stock_ledger
):
    order, assignment = picked_up

    with pytest.raises(StockLedgerError):
        services.deliveries.mark_failed(
            session, people["rider"].id, assignment.id, "Customer not reachable"
        )

    session.refresh(assignment)
    session.refresh(order)
    assert assignment.status == AssignmentStatus.PICKED_UP
    assert assignment.failure_reason is None
    assert order.status == OrderStatus.OUT_FOR_DELIVERY
    [reservation] = services.stock.list_for_order(session, order.id)
    assert reservation.status == ReservationStatus.RESERVED
    history = [h.status for h in services.order_repo.list_history(session, order.id)]
    assert OrderStatus.DELIVERY_FAILED not in history


def test_failed_fulfil_rolls_back_delivery(
    session, services, people, products, picked_up, broken_stock_ledger
):
    order, assignment = picked_up

    with pytest.raises(StockLedgerError):
        services.deliveries.mark_delivered(session, people["rider"].id, assignment.id, 7000)

    session.refresh(assignment)
    session.refresh(order)
    assert assignment.status == AssignmentStatus.PICKED_UP
    assert assignment.cash_collected is False
    assert order.status == OrderStatus.OUT_FOR_DELIVERY
    assert order.payment_status == PaymentStatus.PENDING
    para = products["paracetamol"]
    session.refresh(para)
    assert (para.stock_on_hand, para.reserved_quantity) == (10, 2)
    assert services.ledger_repo.get_sale_for_order(session, order.id) is None


def test_rider_failure_needs_reason(session, services, people, picked_up):
    _, assignment = picked_up
    with pytest.raises(ValidationError):
        services.deliveries.mark_failed(session, people["rider"].id, assignment.id, "")


def test_rider_cannot_fail_before_pickup(session, services, people, dispatched_order):
    _, assignment = dispatched_order
    with pytest.raises(InvalidStateError):
        services.deliveries.mark_failed(session, people["rider"].id, assignment.id, "Rain")


def test_admin_can_fail_before_pickup(session, services, people, dispatched_order):
    order, assignment = dispatched_order

    services.deliveries.fail_assignment(session, people["admin"].id, assignment.id, "Bike broke")

    session.refresh(order)
    assert order.status == OrderStatus.DELIVERY_FAILED


def test_admin_only_operations(session, services, people, dispatched_order):
    _, assignment = dispatched_order
    with pytest.raises(AuthorizationError):
        services.deliveries.cancel_assignment(session, people["pharmacy"].id, assignment.id)
    with pytest.raises(AuthorizationError):
        services.deliveries.fail_assignment(
            session, people["rider"].id, assignment.id, "No"
        )


def test_admin_cancel_then_request_new_rider(session, services, people, dispatched_order):
    order, assignment = dispatched_order
    pharmacy = people["pharmacy"].id

    services.deliveries.cancel_assignment(
        session, people["admin"].id, assignment.id, "Rider unavailable"
    )

    assert assignment.status == AssignmentStatus.CANCELLED
    session.refresh(order)
    assert order.status == OrderStatus.AWAITING_RIDER
    assert order.rider_id is None

    second = services.orders.request_rider(
        session, pharmacy, order.id, people["other_rider"].id
    )
    assert second.id != assignment.id
    assert order.rider_id == people["other_rider"].id
    assert services.deliveries.get_active_for_order(session, order.id).id == second.id


def test_cancel_keeps_assignment_timestamp(session, services, people, dispatched_order):
    order, assignment = dispatched_order
    session.refresh(order)
    first_assigned_at = order.rider_assigned_at

    services.deliveries.cancel_assignment(session, people["admin"].id, assignment.id)

    session.refresh(order)
    assert order.status == OrderStatus.AWAITING_RIDER
    assert order.rider_assigned_at == first_assigned_at

    services.orders.request_rider(
        session, people["pharmacy"].id, order.id, people["other_rider"].id
    )
    session.refresh(order)
    assert order.rider_assigned_at >= first_assigned_at


def test_cancel_keeps_delivery_notes_snapshot(session, services, people, place_order):
    order = place_order(delivery_notes="Blue gate opposite the school")
    pharmacy = people["pharmacy"].id
    services.orders.accept(session, pharmacy, order.id)
    services.orders.mark_ready(session, pharmacy, order.id)
    assignment = services.orders.request_rider(session, pharmacy, order.id, people["rider"].id)

    services.deliveries.cancel_assignment(
        session, people["admin"].id, assignment.id, "Rider unavailable"
    )

    session.refresh(assignment)
    assert assignment.delivery_notes == "Blue gate opposite the school"
    history = services.order_repo.list_history(session, order.id)
    assert history[-1].notes == "Rider assignment cancelled: Rider unavailable"


def test_cannot_cancel_after_pickup(session, services, people, picked_up):
    _, assignment = picked_up
    with pytest.raises(InvalidStateError):
        services.deliveries.cancel_assignment(session, people["admin"].id, assignment.id)


def test_second_rider_request_while_active(session, services, people, dispatched_order):
    order, _ = dispatched_order
    with pytest.raises(InvalidStateError):
        services.orders.request_rider(
            session, people["pharmacy"].id, order.id, people["other_rider"].id
        )


def test_assignment_visibility(session, services, people, dispatched_order):
    _, assignment = dispatched_order
    for who in ("rider", "pharmacy", "admin"):
        assert services.deliveries.get_assignment(session, people[who].id, assignment.id)
    with pytest.raises(AuthorizationError):
        services.deliveries.get_assignment(session, people["buyer"].id, assignment.id)


def test_rider_lists(session, services, people, picked_up):
    _, assignment = picked_up
    rider = people["rider"].id

    assert [a.id for a in services.deliveries.list_rider_assignments(session, rider)] == [
        assignment.id
    ]
    services.deliveries.mark_delivered(session, rider, assignment.id, 7000)
    assert services.deliveries.list_rider_assignments(session, rider) == []
    assert len(services.deliveries.list_rider_assignments(session, rider, active_only=False)) == 1

    riders = services.deliveries.list_available_riders(session)
    assert [r.name for r in riders] == ["juma", "neema"]


def test_audit_trail_for_assignment(session, services, people, picked_up):
    _, assignment = picked_up
    actions = [e.action for e in services.ledger_repo.list_audit_for(session, assignment.id)]
    assert actions == ["rider_assigned", "delivery_accepted", "order_picked_up"]
