# cod_orders/services/stock_service.py
import logging
import uuid
from collections import OrderedDict
from collections.abc import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from cod_orders.core.errors import StockLedgerError
from cod_orders.models.order import OrderItem
from cod_orders.models.stock import (
    InventoryMovement,
    ReservationStatus,
    StockReservation,
)
from cod_orders.repositories.stock_repo import StockRepository

logger = logging.getLogger(__name__)


class StockReservationService:
    """
    Reserve, release and fulfil stock held for an order.

    Responsibilities:
      - one reservation row per (order, product)
      - keep products.reserved_quantity / stock_on_hand in step with rows
      - never double-deduct when called again after a partial failure

    The service never commits. It runs inside the caller's unit of work, so
    a raised StockLedgerError rolls back everything the call touched.
    Whether that error is tolerated is the caller's decision.
    """

    def __init__(self, repo: StockRepository):
        self.repo = repo

    def reserve(
        self,
        session: Session,
        order_id: uuid.UUID,
        items: Iterable[OrderItem],
    ) -> list[StockReservation]:
        """
        Hold stock for every line item.

        Quantities for the same product are summed. Products that already
        have a reservation for this order are skipped. An empty item list
        is a no-op.

        Raises:
            StockLedgerError: malformed item, unknown product, insufficient
            stock or a database failure.
        """
        wanted: OrderedDict[uuid.UUID, int] = OrderedDict()
        for item in items:
            if item.product_id is None or item.quantity is None or item.quantity <= 0:
                raise StockLedgerError(
                    f"Cannot reserve malformed item for order {order_id}"
                )
            wanted[item.product_id] = wanted.get(item.product_id, 0) + item.quantity

        if not wanted:
            logger.info("No items to reserve stock for order %s", order_id)
            return []

        created: list[StockReservation] = []
        try:
            for product_id, quantity in wanted.items():
                if self.repo.get_reservation(session, order_id, product_id):
                    continue

                if self.repo.get_product(session, product_id) is None:
                    raise StockLedgerError(f"Product {product_id} not found")

                if not self.repo.hold(session, product_id, quantity):
                    raise StockLedgerError(f"Insufficient stock for product {product_id}")

                created.append(
                    self.repo.add_reservation(
                        session,
                        StockReservation(
                            order_id=order_id,
                            product_id=product_id,
                            quantity=quantity,
                        ),
                    )
                )
        except SQLAlchemyError as exc:
            raise StockLedgerError(f"Stock reservation failed for order {order_id}") from exc

        logger.info("Reserved %d product(s) for order %s", len(created), order_id)
        return created

    def release(self, session: Session, order_id: uuid.UUID) -> int:
        """
        Drop every open hold for the order. Returns the number released.

        Raises:
            StockLedgerError: on database failure (stock would stay stuck).
        """
        released = 0
        try:
            for reservation in self.repo.list_for_order(
                session, order_id, ReservationStatus.RESERVED
            ):
                if not self.repo.close_reservation(
                    session, reservation.id, ReservationStatus.RELEASED
                ):
                    continue
                self.repo.unhold(session, reservation.product_id, reservation.quantity)
                released += 1
        except SQLAlchemyError as exc:
            raise StockLedgerError(f"Stock release failed for order {order_id}") from exc

        logger.info("Released %d reservation(s) for order %s", released, order_id)
        return released

    def fulfill(
        self,
        session: Session,
        order_id: uuid.UUID,
        reason: str | None = None,
    ) -> int:
        """
        Turn every open hold into a permanent deduction and record an
        outbound inventory movement per product. Returns the number fulfilled.

        Raises:
            StockLedgerError: on database failure.
        """
        fulfilled = 0
        try:
            for reservation in self.repo.list_for_order(
                session, order_id, ReservationStatus.RESERVED
            ):
                if not self.repo.close_reservation(
                    session, reservation.id, ReservationStatus.FULFILLED
                ):
                    continue
                self.repo.deduct(session, reservation.product_id, reservation.quantity)
                self.repo.add_movement(
                    session,
                    InventoryMovement(
                        product_id=reservation.product_id,
                        order_id=order_id,
                        movement_type="out",
                        quantity=reservation.quantity,
                        reason=reason,
                    ),
                )
                fulfilled += 1
        except SQLAlchemyError as exc:
            raise StockLedgerError(f"Stock fulfilment failed for order {order_id}") from exc

        logger.info("Fulfilled %d reservation(s) for order %s", fulfilled, order_id)
        return fulfilled

    def list_for_order(self, session: Session, order_id: uuid.UUID) -> list[StockReservation]:
        return self.repo.list_for_order(session, order_id)
