# cod_orders/services/order_service.py
import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlmodel import Session

from cod_orders.core.config import Settings, get_settings
from cod_orders.core.errors import (
    AuthorizationError,
    DependencyError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from cod_orders.database import unit_of_work
from cod_orders.models.delivery import AssignmentStatus, DeliveryAssignment
from cod_orders.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusHistory,
    OrderType,
    PaymentStatus,
    utcnow,
)
from cod_orders.models.product import Product
from cod_orders.models.profile import Profile, Role
from cod_orders.repositories.order_repo import OrderRepository
from cod_orders.repositories.profile_repo import ProfileRepository
from cod_orders.schemas.order import (
    OrderCreate,
    OrderDetailRead,
    OrderItemRead,
    OrderRead,
)
from cod_orders.services import audit_service as audit
from cod_orders.services.audit_service import AuditService
from cod_orders.services.best_effort import best_effort
from cod_orders.services.delivery_service import DeliveryService
from cod_orders.services.events import (
    DeliveryEvent,
    DeliveryEventBus,
    DeliveryEventType,
)
from cod_orders.services.notification_service import (
    NotificationEvent,
    NotificationService,
    format_amount,
)
from cod_orders.services.pos_service import PosSaleRecorder
from cod_orders.services.pricing import fee_for_distance, haversine_distance
from cod_orders.services.stock_service import StockReservationService

logger = logging.getLogger(__name__)


def generate_order_number(now: datetime, attempt: int = 0) -> str:
    """
    COD-<YYYYMMDD>-<6 digits>.

    The suffix is the last six digits of the millisecond timestamp, shifted
    by the attempt number so a retry after a collision picks a new value.
    """
    millis = int(now.timestamp() * 1000)
    return f"COD-{now:%Y%m%d}-{(millis + attempt) % 1_000_000:06d}"


class OrderService:
    """
    COD order lifecycle engine.

    Responsibilities:
      - create orders (validation, pricing, order number, history)
      - seller transitions: accept, reject, mark ready, request rider
      - admin cancellation before a rider is involved
      - mirror delivery events onto the order (picked up, delivered,
        failed, assignment cancelled)

    Every transition is a check-and-set on the order status inside one unit
    of work together with its history row and mandatory stock work.
    Notifications, audit rows, POS bookkeeping and the stock hold on accept
    run afterwards and never undo the transition.
    """

    def __init__(
        self,
        order_repo: OrderRepository,
        profile_repo: ProfileRepository,
        delivery_service: DeliveryService,
        stock_service: StockReservationService,
        notification_service: NotificationService,
        audit_service: AuditService,
        pos_recorder: PosSaleRecorder,
        events: DeliveryEventBus,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.order_repo = order_repo
        self.profile_repo = profile_repo
        self.delivery = delivery_service
        self.stock = stock_service
        self.notifications = notification_service
        self.audit = audit_service
        self.pos = pos_recorder
        self.settings = settings or get_settings()
        self.clock = clock

        events.subscribe(DeliveryEventType.PICKED_UP, self._on_picked_up)
        events.subscribe(DeliveryEventType.DELIVERED, self._on_delivered)
        events.subscribe(DeliveryEventType.FAILED, self._on_failed)
        events.subscribe(DeliveryEventType.CANCELLED, self._on_assignment_cancelled)
        events.subscribe_after_commit(DeliveryEventType.PICKED_UP, self._after_picked_up)
        events.subscribe_after_commit(DeliveryEventType.DELIVERED, self._after_delivered)
        events.subscribe_after_commit(DeliveryEventType.FAILED, self._after_failed)

    # -------- Buyer operations --------

    def create_order(
        self,
        session: Session,
        buyer_id: uuid.UUID,
        payload: OrderCreate,
    ) -> Order:
        """
        Place a COD order with a pharmacy or wholesaler.

        Steps:
          1. Validate delivery details and items.
          2. Resolve the seller and snapshot product names/prices.
          3. Work out the delivery fee.
          4. Insert order, items and the first history row in one unit.
          5. Notify seller and buyer, write the audit row (best effort).

        Stock is not touched here; it is held when the seller accepts.
        """
        if not payload.items:
            raise ValidationError("Order must contain at least one item")
        if not payload.delivery_address:
            raise ValidationError("Delivery address is required")
        if not payload.delivery_phone:
            raise ValidationError("Delivery phone is required")
        if payload.seller_id == buyer_id:
            raise ValidationError("You cannot order from yourself")

        seller = self.profile_repo.get_with_role(session, payload.seller_id, Role.SELLERS)
        if seller is None:
            raise NotFoundError("Seller not found")
        buyer = self.profile_repo.get_by_id(session, buyer_id)

        lines: list[OrderItem] = []
        for item in payload.items:
            if item.quantity is None or item.quantity <= 0:
                raise ValidationError("Item quantity must be greater than zero")
            if item.unit_price is not None and item.unit_price < 0:
                raise ValidationError("Item price cannot be negative")

            product = session.get(Product, item.product_id)
            if product is None or product.seller_id != seller.id:
                raise ValidationError(
                    f"Product {item.product_id} is not sold by this seller"
                )
            if not product.is_active:
                raise ValidationError(f"Product '{product.name}' is not available")

            unit_price = item.unit_price if item.unit_price is not None else product.price
            lines.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    quantity=item.quantity,
                    unit_price=unit_price,
                    line_total=round(unit_price * item.quantity, 2),
                )
            )

        distance_km, delivery_fee = self._delivery_fee(payload, seller)
        if delivery_fee < 0:
            raise ValidationError("Delivery fee cannot be negative")
        subtotal = round(sum(line.line_total for line in lines), 2)
        order_type = OrderType.WHOLESALE if seller.role == Role.WHOLESALE else OrderType.RETAIL

        with unit_of_work(session):
            order = self.order_repo.create_order(
                session,
                Order(
                    order_number=self._next_order_number(session),
                    order_type=order_type,
                    buyer_id=buyer_id,
                    seller_id=seller.id,
                    status=OrderStatus.PENDING_PHARMACY_CONFIRMATION,
                    payment_status=PaymentStatus.PENDING,
                    payment_method="cod",
                    subtotal=subtotal,
                    delivery_fee=delivery_fee,
                    total_amount=round(subtotal + delivery_fee, 2),
                    delivery_address=payload.delivery_address,
                    delivery_phone=payload.delivery_phone,
                    delivery_notes=payload.delivery_notes,
                    delivery_latitude=payload.delivery_latitude,
                    delivery_longitude=payload.delivery_longitude,
                    distance_km=distance_km,
                ),
            )
            for line in lines:
                line.order_id = order.id
            self.order_repo.create_items(session, lines)
            self.order_repo.add_history(
                session,
                order.id,
                OrderStatus.PENDING_PHARMACY_CONFIRMATION,
                buyer_id,
                "COD order placed",
            )
        session.refresh(order)

        logger.info(
            "Created %s order %s for buyer %s (total %s)",
            order.order_type,
            order.order_number,
            buyer_id,
            order.total_amount,
        )

        payload_ = self._order_payload(order)
        payload_.update(
            customer_name=buyer.display_name if buyer else "Customer",
            seller_name=seller.display_name,
        )
        self.notifications.notify(
            session,
            seller.id,
            seller.email,
            NotificationEvent.COD_ORDER_RECEIVED,
            payload_,
            phone=seller.phone,
        )
        self.notifications.notify(
            session,
            buyer_id,
            buyer.email if buyer else None,
            NotificationEvent.COD_ORDER_PLACED,
            payload_,
            phone=order.delivery_phone,
        )
        self._audit(
            session,
            buyer_id,
            audit.ACTION_ORDER_CREATED,
            order,
            {"items": len(lines), "delivery_fee": delivery_fee},
        )
        return order

    # -------- Seller operations --------

    def accept(self, session: Session, actor_id: uuid.UUID, order_id: uuid.UUID) -> Order:
        """
        pending_pharmacy_confirmation -> preparing_order.

        Stock is held after the commit. A failed hold is logged for manual
        reconciliation and does not undo the acceptance. The hold is only
        kept if the order is still preparing_order when it commits.
        """
        order = self._get_for_seller(session, actor_id, order_id)
        order = self._transition(
            session,
            order,
            actor_id,
            expected=(OrderStatus.PENDING_PHARMACY_CONFIRMATION,),
            new_status=OrderStatus.PREPARING_ORDER,
            notes=f"Order accepted by {self._seller_label(order)}",
        )

        best_effort(
            session,
            "stock:reserve",
            self._hold_stock,
            session,
            order.id,
            context={"order_id": str(order.id), "order_number": order.order_number},
        )

        self._notify_buyer_status(
            session, order, OrderStatus.PENDING_PHARMACY_CONFIRMATION
        )
        self._audit(session, actor_id, audit.ACTION_ORDER_ACCEPTED, order)
        return order

    def reject(
        self,
        session: Session,
        actor_id: uuid.UUID,
        order_id: uuid.UUID,
        reason: str | None,
    ) -> Order:
        """
        Seller cancels the order before a rider is involved.

        Any stock held for the order is released in the same unit of work.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A rejection reason is required")

        order = self._get_for_seller(session, actor_id, order_id)
        old_status = order.status
        note = f"Rejected by {self._seller_label(order)}: {reason}"
        order = self._transition(
            session,
            order,
            actor_id,
            expected=OrderStatus.CANCELLABLE,
            new_status=OrderStatus.CANCELLED,
            notes=note,
            release_stock=True,
            values={"notes": note},
        )

        self._notify_buyer_status(session, order, old_status)
        self._audit(
            session,
            actor_id,
            audit.ACTION_ORDER_REJECTED,
            order,
            {"reason": reason, "previous_status": old_status},
        )
        return order

    def mark_ready(self, session: Session, actor_id: uuid.UUID, order_id: uuid.UUID) -> Order:
        """preparing_order -> awaiting_rider."""
        order = self._get_for_seller(session, actor_id, order_id)
        order = self._transition(
            session,
            order,
            actor_id,
            expected=(OrderStatus.PREPARING_ORDER,),
            new_status=OrderStatus.AWAITING_RIDER,
            notes="Order ready for pickup",
        )
        self._audit(session, actor_id, audit.ACTION_ORDER_READY, order)
        return order

    def request_rider(
        self,
        session: Session,
        actor_id: uuid.UUID,
        order_id: uuid.UUID,
        rider_id: uuid.UUID,
    ) -> DeliveryAssignment:
        """
        Assign a delivery rider to an order that is awaiting_rider.

        The assignment row and the order move to rider_assigned commit
        together; if either fails neither is kept.
        """
        order = self._get_for_seller(session, actor_id, order_id)
        if order.status != OrderStatus.AWAITING_RIDER:
            raise InvalidStateError(
                f"Order {order.order_number} is {order.status}; a rider can only be "
                "requested once it is ready for pickup"
            )

        rider = self.profile_repo.get_with_role(session, rider_id, {Role.DELIVERY})
        if rider is None:
            raise NotFoundError("Rider not found")

        seller = self.profile_repo.get_by_id(session, order.seller_id)
        buyer = self.profile_repo.get_by_id(session, order.buyer_id)
        now = self.clock()

        with unit_of_work(session):
            assignment = self.delivery.create_assignment(
                session,
                order,
                seller,
                rider.id,
                customer_name=buyer.display_name if buyer else None,
            )
            moved = self.order_repo.transition(
                session,
                order.id,
                (OrderStatus.AWAITING_RIDER,),
                OrderStatus.RIDER_ASSIGNED,
                rider_id=rider.id,
                rider_assigned_at=now,
            )
            if not moved:
                raise InvalidStateError(
                    f"Order {order.order_number} changed status concurrently"
                )
            self.order_repo.add_history(
                session,
                order.id,
                OrderStatus.RIDER_ASSIGNED,
                actor_id,
                f"Rider {rider.name} assigned",
            )
        session.refresh(order)
        session.refresh(assignment)

        logger.info(
            "Assigned rider %s to order %s (assignment %s)",
            rider.id,
            order.order_number,
            assignment.id,
        )

        payload = self._order_payload(order)
        payload.update(
            assignment_id=assignment.id,
            pickup_address=assignment.pickup_address,
            delivery_address=assignment.delivery_address,
            cash_display=format_amount(assignment.cash_amount, self.settings.CURRENCY),
        )
        self.notifications.notify(
            session,
            rider.id,
            rider.email,
            NotificationEvent.DELIVERY_ASSIGNED,
            payload,
            phone=rider.phone,
        )
        self._notify_buyer_status(session, order, OrderStatus.AWAITING_RIDER)
        self.audit.append(
            session,
            actor_id,
            audit.ACTION_RIDER_ASSIGNED,
            audit.RESOURCE_ASSIGNMENT,
            assignment.id,
            {"order_id": order.id, "rider_id": rider.id},
        )
        return assignment

    # -------- Admin operations --------

    def cancel_order(
        self,
        session: Session,
        actor_id: uuid.UUID,
        order_id: uuid.UUID,
        reason: str | None = None,
    ) -> Order:
        """
        Admin cancellation. Only allowed before a rider is assigned; once a
        rider is involved the assignment must be cancelled or failed instead.
        """
        if not self.profile_repo.is_admin(session, actor_id):
            raise AuthorizationError("Admin access required")

        order = self._get(session, order_id)
        old_status = order.status
        reason = (reason or "").strip() or None
        order = self._transition(
            session,
            order,
            actor_id,
            expected=OrderStatus.CANCELLABLE,
            new_status=OrderStatus.CANCELLED,
            notes=f"Cancelled by admin: {reason}" if reason else "Cancelled by admin",
            release_stock=True,
        )
        self._notify_buyer_status(session, order, old_status)
        self._audit(
            session,
            actor_id,
            audit.ACTION_ORDER_CANCELLED,
            order,
            {"reason": reason, "previous_status": old_status},
        )
        return order

    # -------- Queries --------

    def get_order(self, session: Session, actor_id: uuid.UUID, order_id: uuid.UUID) -> Order:
        """Order visible to its buyer, seller, assigned rider or an admin."""
        order = self._get(session, order_id)
        if actor_id not in (order.buyer_id, order.seller_id, order.rider_id) and not (
            self.profile_repo.is_admin(session, actor_id)
        ):
            raise AuthorizationError("Not allowed to view this order")
        return order

    def get_order_detail(
        self,
        session: Session,
        actor_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> OrderDetailRead:
        order = self.get_order(session, actor_id, order_id)
        items = self.order_repo.list_items_for_order(session, order.id)
        return OrderDetailRead(
            **OrderRead.model_validate(order, from_attributes=True).model_dump(),
            status_label=OrderStatus.label(order.status),
            items=[OrderItemRead.model_validate(it, from_attributes=True) for it in items],
        )

    def get_history(
        self,
        session: Session,
        actor_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> list[OrderStatusHistory]:
        order = self.get_order(session, actor_id, order_id)
        return self.order_repo.list_history(session, order.id)

    def list_buyer_orders(
        self,
        session: Session,
        buyer_id: uuid.UUID,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Order]:
        return self.order_repo.list_for_buyer(session, buyer_id, skip=skip, limit=limit)

    def list_seller_orders(
        self,
        session: Session,
        seller_id: uuid.UUID,
        active_only: bool = True,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Order]:
        statuses = OrderStatus.ACTIVE if active_only else None
        return self.order_repo.list_for_seller(
            session, seller_id, statuses, skip=skip, limit=limit
        )

    # -------- Delivery event handlers (inside the delivery unit of work) --------

    def _on_picked_up(self, session: Session, event: DeliveryEvent) -> None:
        self._mirror(
            session,
            event,
            expected=(OrderStatus.RIDER_ASSIGNED,),
            new_status=OrderStatus.OUT_FOR_DELIVERY,
            notes="Picked up by rider",
            picked_up_at=event.occurred_at,
        )

    def _on_delivered(self, session: Session, event: DeliveryEvent) -> None:
        cash = event.data["cash_amount"]
        discrepancy = event.data.get("cash_discrepancy") or 0
        self._mirror(
            session,
            event,
            expected=(OrderStatus.OUT_FOR_DELIVERY,),
            new_status=OrderStatus.DELIVERED_AND_PAID,
            notes=(
                "Delivered and cash collected: "
                f"{format_amount(cash, self.settings.CURRENCY)}"
            ),
            payment_status=PaymentStatus.PAID,
            cash_collected=cash,
            cash_discrepancy=discrepancy,
            delivered_at=event.occurred_at,
            cash_collected_at=event.occurred_at,
        )
        self.stock.fulfill(session, event.order_id, reason="COD order delivered")
        if discrepancy:
            logger.warning(
                "Order %s delivered with cash discrepancy %s",
                event.order_id,
                discrepancy,
            )

    def _on_failed(self, session: Session, event: DeliveryEvent) -> None:
        reason = event.data.get("reason")
        self._mirror(
            session,
            event,
            expected=(OrderStatus.RIDER_ASSIGNED, OrderStatus.OUT_FOR_DELIVERY),
            new_status=OrderStatus.DELIVERY_FAILED,
            notes=f"Delivery failed: {reason}" if reason else "Delivery failed",
        )
        self.stock.release(session, event.order_id)

    def _on_assignment_cancelled(self, session: Session, event: DeliveryEvent) -> None:
        reason = event.data.get("reason")
        self._mirror(
            session,
            event,
            expected=(OrderStatus.RIDER_ASSIGNED,),
            new_status=OrderStatus.AWAITING_RIDER,
            notes=(
                f"Rider assignment cancelled: {reason}"
                if reason
                else "Rider assignment cancelled"
            ),
            rider_id=None,
        )

    def _mirror(
        self,
        session: Session,
        event: DeliveryEvent,
        expected: tuple[str, ...],
        new_status: str,
        notes: str,
        **values: Any,
    ) -> None:
        if not self.order_repo.transition(
            session, event.order_id, expected, new_status, **values
        ):
            order = self.order_repo.get_by_id(session, event.order_id)
            current = order.status if order else "missing"
            raise InvalidStateError(
                f"Order {event.order_id} is {current}; cannot move to {new_status}"
            )
        self.order_repo.add_history(session, event.order_id, new_status, event.actor_id, notes)

    # -------- Delivery event handlers (after commit) --------

    def _after_picked_up(self, session: Session, event: DeliveryEvent) -> None:
        order = self._refreshed(session, event.order_id)
        if order is not None:
            self._notify_buyer_status(session, order, OrderStatus.RIDER_ASSIGNED)

    def _after_delivered(self, session: Session, event: DeliveryEvent) -> None:
        order = self._refreshed(session, event.order_id)
        if order is None:
            return
        best_effort(
            session,
            "pos:record_sale",
            self.pos.record_sale,
            session,
            order,
            context={"order_id": str(order.id), "order_number": order.order_number},
        )
        self._notify_buyer_status(session, order, OrderStatus.OUT_FOR_DELIVERY)

    def _after_failed(self, session: Session, event: DeliveryEvent) -> None:
        order = self._refreshed(session, event.order_id)
        if order is None:
            return
        if event.data.get("previous_status") == AssignmentStatus.PICKED_UP:
            old_status = OrderStatus.OUT_FOR_DELIVERY
        else:
            old_status = OrderStatus.RIDER_ASSIGNED
        self._notify_buyer_status(session, order, old_status)

    # -------- Internals --------

    def _transition(
        self,
        session: Session,
        order: Order,
        actor_id: uuid.UUID,
        expected: tuple[str, ...],
        new_status: str,
        notes: str,
        release_stock: bool = False,
        values: dict[str, Any] | None = None,
    ) -> Order:
        """
        Check-and-set one order transition with its history row.

        The pre-check gives a clear error for the common case; the
        conditional UPDATE catches a concurrent writer that got there first.
        """
        if order.status not in expected:
            raise InvalidStateError(
                f"Cannot move order {order.order_number} from {order.status} "
                f"to {new_status}"
            )

        with unit_of_work(session):
            if not self.order_repo.transition(
                session, order.id, expected, new_status, **(values or {})
            ):
                raise InvalidStateError(
                    f"Order {order.order_number} changed status concurrently"
                )
            self.order_repo.add_history(session, order.id, new_status, actor_id, notes)
            if release_stock:
                self.stock.release(session, order.id)

        session.refresh(order)
        logger.info(
            "Order %s moved to %s by %s", order.order_number, new_status, actor_id
        )
        return order

    def _hold_stock(self, session: Session, order_id: uuid.UUID) -> list:
        reservations = self.stock.reserve(
            session, order_id, self.order_repo.list_items_for_order(session, order_id)
        )
        # Drop the hold if a reject or cancel committed while it was taken.
        if not self.order_repo.lock_in_status(
            session, order_id, (OrderStatus.PREPARING_ORDER,)
        ):
            raise InvalidStateError(
                f"Order {order_id} left preparing_order; stock hold dropped"
            )
        return reservations

    def _delivery_fee(
        self,
        payload: OrderCreate,
        seller: Profile,
    ) -> tuple[float | None, float]:
        """
        Explicit fee wins, then distance, then coordinates; otherwise free.
        """
        distance_km = payload.distance_km
        if distance_km is not None and distance_km < 0:
            raise ValidationError("Distance cannot be negative")

        if (
            distance_km is None
            and payload.delivery_latitude is not None
            and payload.delivery_longitude is not None
            and seller.latitude is not None
            and seller.longitude is not None
        ):
            distance_km = round(
                haversine_distance(
                    seller.latitude,
                    seller.longitude,
                    payload.delivery_latitude,
                    payload.delivery_longitude,
                ),
                2,
            )

        if payload.delivery_fee is not None:
            return distance_km, payload.delivery_fee
        if distance_km is not None:
            return distance_km, fee_for_distance(distance_km)
        return None, 0.0

    def _next_order_number(self, session: Session) -> str:
        now = self.clock()
        for attempt in range(self.settings.ORDER_NUMBER_MAX_ATTEMPTS):
            number = generate_order_number(now, attempt)
            if not self.order_repo.number_exists(session, number):
                return number
            logger.debug("Order number %s taken, retrying", number)
        raise DependencyError("Could not allocate a unique order number")

    def _get(self, session: Session, order_id: uuid.UUID) -> Order:
        order = self.order_repo.get_by_id(session, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    def _get_for_seller(
        self,
        session: Session,
        actor_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> Order:
        order = self._get(session, order_id)
        if order.seller_id != actor_id:
            raise AuthorizationError("Only the seller of this order can do that")
        return order

    def _refreshed(self, session: Session, order_id: uuid.UUID) -> Order | None:
        order = self.order_repo.get_by_id(session, order_id)
        if order is not None:
            session.refresh(order)
        return order

    def _seller_label(self, order: Order) -> str:
        return "wholesaler" if order.is_wholesale else "pharmacy"

    def _order_payload(self, order: Order) -> dict[str, Any]:
        return {
            "order_id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "total_amount": order.total_amount,
            "total_display": format_amount(order.total_amount, self.settings.CURRENCY),
        }

    def _notify_buyer_status(self, session: Session, order: Order, old_status: str) -> None:
        buyer = self.profile_repo.get_by_id(session, order.buyer_id)
        payload = self._order_payload(order)
        payload.update(old_status=old_status, new_status=order.status)
        self.notifications.notify(
            session,
            order.buyer_id,
            buyer.email if buyer else None,
            NotificationEvent.ORDER_STATUS_CHANGED,
            payload,
            phone=order.delivery_phone,
        )

    def _audit(
        self,
        session: Session,
        actor_id: uuid.UUID | None,
        action: str,
        order: Order,
        details: dict[str, Any] | None = None,
    ) -> None:
        if order.is_wholesale:
            action = f"wholesale_{action}"
        data = {
            "order_number": order.order_number,
            "status": order.status,
            "total_amount": order.total_amount,
        }
        data.update(details or {})
        self.audit.append(
            session,
            actor_id,
            action,
            audit.RESOURCE_ORDER,
            order.id,
            data,
        )
