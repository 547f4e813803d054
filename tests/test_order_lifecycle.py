import uuid
from datetime import datetime, timezone

import pytest

from cod_orders.core.errors import (
    AuthorizationError,
    DependencyError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from cod_orders.models.order import OrderStatus, OrderType, PaymentStatus
from cod_orders.models.stock import ReservationStatus
from cod_orders.services.notification_service import NotificationEvent
from cod_orders.services.order_service import generate_order_number
from cod_orders.services.wiring import Services


def _statuses(services, session, order):
    return [h.status for h in services.order_repo.list_history(session, order.id)]


# -------- Creation --------


def test_create_order_prices_and_numbers(session, services, people, place_order):
    order = place_order()

    assert order.status == OrderStatus.PENDING_PHARMACY_CONFIRMATION
    assert order.payment_status == PaymentStatus.PENDING
    assert order.payment_method == "cod"
    assert order.order_type == OrderType.RETAIL
    assert order.subtotal == 5000
    assert order.delivery_fee == 2000
    assert order.total_amount == 7000
    assert order.order_number.startswith("COD-")
    assert len(order.order_number.split("-")[-1]) == 6

    items = services.order_repo.list_items_for_order(session, order.id)
    assert [(i.product_name, i.quantity, i.line_total) for i in items] == [
        ("Paracetamol 500mg", 2, 5000)
    ]
    assert _statuses(services, session, order) == [
        OrderStatus.PENDING_PHARMACY_CONFIRMATION
    ]


def test_create_order_does_not_touch_stock(session, place_order, products):
    place_order()
    para = products["paracetamol"]
    session.refresh(para)
    assert para.reserved_quantity == 0


def test_create_order_notifies_seller_and_buyer(people, place_order, channel):
    place_order()
    assert channel.events_for(people["pharmacy"].id) == [
        NotificationEvent.COD_ORDER_RECEIVED
    ]
    assert channel.events_for(people["buyer"].id) == [NotificationEvent.COD_ORDER_PLACED]


def test_create_order_writes_audit_row(session, services, place_order):
    order = place_order()
    [entry] = services.ledger_repo.list_audit_for(session, order.id)
    assert entry.action == "order_created"
    assert entry.details["order_number"] == order.order_number


def test_fee_from_distance(place_order):
    order = place_order(delivery_fee=None, distance_km=5)
    assert order.delivery_fee == 2000
    assert order.distance_km == 5


def test_fee_from_coordinates(place_order):
    order = place_order(
        delivery_fee=None,
        delivery_latitude=-6.1630,
        delivery_longitude=35.7516,
    )
    assert order.distance_km == 0
    assert order.delivery_fee == 1000


def test_fee_defaults_to_zero(place_order):
    order = place_order(delivery_fee=None)
    assert order.delivery_fee == 0
    assert order.total_amount == 5000


def test_wholesale_order_type_and_audit_prefix(session, services, people, products, place_order):
    order = place_order(items=[(products["gloves"], 1)], seller=people["wholesaler"])
    assert order.order_type == OrderType.WHOLESALE
    [entry] = services.ledger_repo.list_audit_for(session, order.id)
    assert entry.action == "wholesale_order_created"


@pytest.mark.parametrize(
    "quantities, overrides",
    [
        ([], {}),
        ([1], {"delivery_address": "   "}),
        ([1], {"delivery_phone": None}),
    ],
)
def test_create_order_validation(
    session, services, people, products, make_payload, quantities, overrides
):
    lines = [(products["paracetamol"], qty) for qty in quantities]
    payload = make_payload(people["pharmacy"], lines, **overrides)
    with pytest.raises(ValidationError):
        services.orders.create_order(session, people["buyer"].id, payload)


def test_create_order_rejects_bad_quantity(session, services, people, products, make_payload):
    payload = make_payload(people["pharmacy"], [(products["paracetamol"], 0)])
    with pytest.raises(ValidationError):
        services.orders.create_order(session, people["buyer"].id, payload)


def test_create_order_rejects_foreign_product(session, services, people, products, make_payload):
    payload = make_payload(people["pharmacy"], [(products["gloves"], 1)])
    with pytest.raises(ValidationError):
        services.orders.create_order(session, people["buyer"].id, payload)


def test_create_order_unknown_seller(session, services, people, products, make_payload):
    payload = make_payload(people["rider"], [(products["paracetamol"], 1)])
    with pytest.raises(NotFoundError):
        services.orders.create_order(session, people["buyer"].id, payload)


FROZEN_NOW = datetime(2025, 3, 14, 9, 26, 53, 589000, tzinfo=timezone.utc)


def test_order_number_retries_on_collision(services, place_order, monkeypatch):
    monkeypatch.setattr(services.orders, "clock", lambda: FROZEN_NOW)

    first = place_order()
    second = place_order()

    assert first.order_number == generate_order_number(FROZEN_NOW)
    assert second.order_number == generate_order_number(FROZEN_NOW, 1)


def test_order_number_gives_up_after_max_attempts(session, services, place_order, monkeypatch):
    monkeypatch.setattr(services.order_repo, "number_exists", lambda s, number: True)
    with pytest.raises(DependencyError):
        place_order()


def test_generate_order_number_format():
    assert generate_order_number(FROZEN_NOW) == "COD-20250314-413589"
    assert generate_order_number(FROZEN_NOW, 1) == "COD-20250314-413590"


# -------- Seller transitions --------


def test_happy_path_to_delivered(session, services, people, products, place_order):
    order = place_order()
    pharmacy, rider = people["pharmacy"].id, people["rider"].id

    services.orders.accept(session, pharmacy, order.id)
    para = products["paracetamol"]
    session.refresh(para)
    assert para.reserved_quantity == 2

    services.orders.mark_ready(session, pharmacy, order.id)
    assignment = services.orders.request_rider(session, pharmacy, order.id, rider)
    assert order.status == OrderStatus.RIDER_ASSIGNED
    assert order.rider_id == rider
    assert order.rider_assigned_at is not None
    assert assignment.cash_amount == 7000
    assert assignment.pickup_address == "Jamhuri St, Dodoma"

    services.deliveries.accept(session, rider, assignment.id)
    session.refresh(order)
    assert order.status == OrderStatus.RIDER_ASSIGNED

    services.deliveries.mark_picked_up(session, rider, assignment.id)
    session.refresh(order)
    assert order.status == OrderStatus.OUT_FOR_DELIVERY
    assert order.picked_up_at is not None

    services.deliveries.mark_delivered(session, rider, assignment.id, 7000)
    session.refresh(order)
    assert order.status == OrderStatus.DELIVERED_AND_PAID
    assert order.payment_status == PaymentStatus.PAID
    assert order.cash_collected == 7000
    assert order.cash_discrepancy == 0
    assert order.delivered_at is not None
    assert order.cash_collected_at is not None

    session.refresh(para)
    assert (para.stock_on_hand, para.reserved_quantity) == (8, 0)

    sale = services.ledger_repo.get_sale_for_order(session, order.id)
    assert sale is not None
    assert sale.total_amount == 7000
    assert [(i.quantity, i.total_price) for i in services.ledger_repo.list_sale_items(session, sale.id)] == [
        (2, 5000)
    ]

    assert _statuses(services, session, order) == [
        OrderStatus.PENDING_PHARMACY_CONFIRMATION,
        OrderStatus.PREPARING_ORDER,
        OrderStatus.AWAITING_RIDER,
        OrderStatus.RIDER_ASSIGNED,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED_AND_PAID,
    ]


def test_double_accept_is_rejected(session, services, people, place_order):
    order = place_order()
    pharmacy = people["pharmacy"].id

    services.orders.accept(session, pharmacy, order.id)
    with pytest.raises(InvalidStateError):
        services.orders.accept(session, pharmacy, order.id)

    reservations = services.stock.list_for_order(session, order.id)
    assert len(reservations) == 1
    assert _statuses(services, session, order).count(OrderStatus.PREPARING_ORDER) == 1


def test_stale_transition_loses_check_and_set(session, services, place_order):
    order = place_order()
    repo = services.order_repo
    expected = (OrderStatus.PENDING_PHARMACY_CONFIRMATION,)

    assert repo.transition(session, order.id, expected, OrderStatus.PREPARING_ORDER)
    assert not repo.transition(session, order.id, expected, OrderStatus.CANCELLED)
    session.commit()
    session.refresh(order)
    assert order.status == OrderStatus.PREPARING_ORDER


def test_accept_survives_failed_reservation(session, services, people, products, place_order):
    order = place_order(items=[(products["amoxicillin"], 6)])

    services.orders.accept(session, people["pharmacy"].id, order.id)

    session.refresh(order)
    assert order.status == OrderStatus.PREPARING_ORDER
    assert services.stock.list_for_order(session, order.id) == []


def test_reject_during_stock_hold_leaves_nothing_reserved(
    session, services, people, products, place_order, monkeypatch
):
    order = place_order()
    pharmacy = people["pharmacy"].id
    reserve = services.stock.reserve

    def reject_first(*args, **kwargs):
        services.orders.reject(session, pharmacy, order.id, "Closing early")
        return reserve(*args, **kwargs)

    monkeypatch.setattr(services.stock, "reserve", reject_first)
    services.orders.accept(session, pharmacy, order.id)

    session.refresh(order)
    assert order.status == OrderStatus.CANCELLED
    assert services.stock.list_for_order(session, order.id) == []
    para = products["paracetamol"]
    session.refresh(para)
    assert para.reserved_quantity == 0


def test_only_the_seller_can_accept(session, services, people, place_order):
    order = place_order()
    with pytest.raises(AuthorizationError):
        services.orders.accept(session, people["wholesaler"].id, order.id)
    session.refresh(order)
    assert order.status == OrderStatus.PENDING_PHARMACY_CONFIRMATION


def test_mark_ready_requires_preparing(session, services, people, place_order):
    order = place_order()
    with pytest.raises(InvalidStateError):
        services.orders.mark_ready(session, people["pharmacy"].id, order.id)


def test_mark_ready_only_writes_history(session, services, people, channel, place_order):
    order = place_order()
    pharmacy = people["pharmacy"].id
    services.orders.accept(session, pharmacy, order.id)
    sent = len(channel.messages)

    services.orders.mark_ready(session, pharmacy, order.id)

    assert order.status == OrderStatus.AWAITING_RIDER
    assert len(channel.messages) == sent
    assert _statuses(services, session, order)[-1] == OrderStatus.AWAITING_RIDER


def test_reject_releases_stock(session, services, people, products, place_order):
    order = place_order()
    pharmacy = people["pharmacy"].id
    services.orders.accept(session, pharmacy, order.id)

    services.orders.reject(session, pharmacy, order.id, "Out of stock")

    session.refresh(order)
    assert order.status == OrderStatus.CANCELLED
    assert order.notes == "Rejected by pharmacy: Out of stock"
    para = products["paracetamol"]
    session.refresh(para)
    assert para.reserved_quantity == 0
    [reservation] = services.stock.list_for_order(session, order.id)
    assert reservation.status == ReservationStatus.RELEASED


def test_reject_requires_reason(session, services, people, place_order):
    order = place_order()
    with pytest.raises(ValidationError):
        services.orders.reject(session, people["pharmacy"].id, order.id, "  ")


def test_wholesaler_rejection_note(session, services, people, products, place_order):
    order = place_order(items=[(products["gloves"], 1)], seller=people["wholesaler"])
    services.orders.reject(session, people["wholesaler"].id, order.id, "Closed")
    assert order.notes == "Rejected by wholesaler: Closed"


def test_cannot_reject_after_rider_assigned(session, services, people, dispatched_order):
    order, _ = dispatched_order
    with pytest.raises(InvalidStateError):
        services.orders.reject(session, people["pharmacy"].id, order.id, "Too late")


def test_request_rider_requires_awaiting_rider(session, services, people, place_order):
    order = place_order()
    with pytest.raises(InvalidStateError):
        services.orders.request_rider(
            session, people["pharmacy"].id, order.id, people["rider"].id
        )


def test_request_rider_unknown_rider(session, services, people, place_order):
    order = place_order()
    pharmacy = people["pharmacy"].id
    services.orders.accept(session, pharmacy, order.id)
    services.orders.mark_ready(session, pharmacy, order.id)

    with pytest.raises(NotFoundError):
        services.orders.request_rider(session, pharmacy, order.id, people["buyer"].id)
    with pytest.raises(NotFoundError):
        services.orders.request_rider(session, pharmacy, order.id, uuid.uuid4())

    session.refresh(order)
    assert order.status == OrderStatus.AWAITING_RIDER
    assert services.deliveries.get_active_for_order(session, order.id) is None


def test_request_rider_notifies_rider(people, dispatched_order, channel):
    assert channel.events_for(people["rider"].id) == [NotificationEvent.DELIVERY_ASSIGNED]


# -------- Admin cancellation --------


def test_admin_cancel_before_rider(session, services, people, products, place_order):
    order = place_order()
    services.orders.accept(session, people["pharmacy"].id, order.id)

    services.orders.cancel_order(session, people["admin"].id, order.id, "Duplicate")

    assert order.status == OrderStatus.CANCELLED
    para = products["paracetamol"]
    session.refresh(para)
    assert para.reserved_quantity == 0


def test_cancel_requires_admin(session, services, people, place_order):
    order = place_order()
    with pytest.raises(AuthorizationError):
        services.orders.cancel_order(session, people["buyer"].id, order.id)


def test_cannot_cancel_out_for_delivery(session, services, people, dispatched_order):
    order, assignment = dispatched_order
    rider = people["rider"].id
    services.deliveries.accept(session, rider, assignment.id)
    services.deliveries.mark_picked_up(session, rider, assignment.id)

    with pytest.raises(InvalidStateError):
        services.orders.cancel_order(session, people["admin"].id, order.id)
    session.refresh(order)
    assert order.status == OrderStatus.OUT_FOR_DELIVERY


# -------- Queries --------


def test_order_visibility(session, services, people, place_order):
    order = place_order()
    for who in ("buyer", "pharmacy", "admin"):
        detail = services.orders.get_order_detail(session, people[who].id, order.id)
        assert detail.status_label == "Pending Confirmation"
        assert len(detail.items) == 1

    with pytest.raises(AuthorizationError):
        services.orders.get_order(session, people["wholesaler"].id, order.id)
    with pytest.raises(NotFoundError):
        services.orders.get_order(session, people["buyer"].id, uuid.uuid4())


def test_seller_active_orders(session, services, people, place_order):
    kept = place_order()
    dropped = place_order()
    services.orders.reject(session, people["pharmacy"].id, dropped.id, "No stock")

    active = services.orders.list_seller_orders(session, people["pharmacy"].id, active_only=True)
    assert [o.id for o in active] == [kept.id]
    everything = services.orders.list_seller_orders(
        session, people["pharmacy"].id, active_only=False
    )
    assert len(everything) == 2
    assert len(services.orders.list_buyer_orders(session, people["buyer"].id)) == 2


# -------- Tolerated failures --------


def test_notification_failure_does_not_block_order(session, people, products, make_payload):
    def broken_channel(message):
        raise ConnectionError("SMTP down")

    services = Services(channels=[broken_channel])
    payload = make_payload(people["pharmacy"], [(products["paracetamol"], 1)])

    order = services.orders.create_order(session, people["buyer"].id, payload)
    services.orders.accept(session, people["pharmacy"].id, order.id)

    session.refresh(order)
    assert order.status == OrderStatus.PREPARING_ORDER
    inbox = services.ledger_repo.list_notifications(session, people["pharmacy"].id)
    assert [n.event_type for n in inbox] == [NotificationEvent.COD_ORDER_RECEIVED]


def test_audit_failure_does_not_block_order(session, services, people, place_order, monkeypatch):
    order = place_order()

    def broken(*args, **kwargs):
        raise RuntimeError("audit table locked")

    monkeypatch.setattr(services.ledger_repo, "add_audit", broken)
    services.orders.accept(session, people["pharmacy"].id, order.id)

    session.refresh(order)
    assert order.status == OrderStatus.PREPARING_ORDER


def test_pos_failure_does_not_undo_delivery(session, services, people, dispatched_order, monkeypatch):
    order, assignment = dispatched_order
    rider = people["rider"].id
    services.deliveries.accept(session, rider, assignment.id)
    services.deliveries.mark_picked_up(session, rider, assignment.id)

    def broken(*args, **kwargs):
        raise RuntimeError("pos offline")

    monkeypatch.setattr(services.pos, "record_sale", broken)
    services.deliveries.mark_delivered(session, rider, assignment.id, 7000)

    session.refresh(order)
    assert order.status == OrderStatus.DELIVERED_AND_PAID
    assert services.ledger_repo.get_sale_for_order(session, order.id) is None
