# cod_orders/repositories/stock_repo.py
import uuid

from sqlalchemy import update
from sqlmodel import Session, select

from cod_orders.models.order import utcnow
from cod_orders.models.product import Product
from cod_orders.models.stock import (
    InventoryMovement,
    ReservationStatus,
    StockReservation,
)


class StockRepository:
    """
    Data access layer for the stock ledger: product counters,
    stock_reservations and inventory_movements.

    Counter updates are single UPDATE statements with the arithmetic done
    in SQL, so concurrent orders on the same product serialize on the row.
    """

    # ---- Products ----

    def get_product(self, session: Session, product_id: uuid.UUID) -> Product | None:
        return session.get(Product, product_id)

    def hold(self, session: Session, product_id: uuid.UUID, quantity: int) -> bool:
        """
        Move `quantity` units from available to reserved.

        Returns False if the product does not have that many units available.
        """
        stmt = (
            update(Product)
            .where(
                Product.id == product_id,
                Product.stock_on_hand - Product.reserved_quantity >= quantity,
            )
            .values(
                reserved_quantity=Product.reserved_quantity + quantity,
                updated_at=utcnow(),
            )
        )
        return session.exec(stmt).rowcount == 1

    def unhold(self, session: Session, product_id: uuid.UUID, quantity: int) -> None:
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(
                reserved_quantity=Product.reserved_quantity - quantity,
                updated_at=utcnow(),
            )
        )
        session.exec(stmt)

    def deduct(self, session: Session, product_id: uuid.UUID, quantity: int) -> None:
        """Turn a hold into a permanent deduction from stock_on_hand."""
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(
                stock_on_hand=Product.stock_on_hand - quantity,
                reserved_quantity=Product.reserved_quantity - quantity,
                updated_at=utcnow(),
            )
        )
        session.exec(stmt)

    # ---- Reservations ----

    def list_for_order(
        self,
        session: Session,
        order_id: uuid.UUID,
        status: str | None = None,
    ) -> list[StockReservation]:
        stmt = select(StockReservation).where(StockReservation.order_id == order_id)
        if status is not None:
            stmt = stmt.where(StockReservation.status == status)
        return session.exec(stmt).all()

    def get_reservation(
        self,
        session: Session,
        order_id: uuid.UUID,
        product_id: uuid.UUID,
    ) -> StockReservation | None:
        stmt = select(StockReservation).where(
            StockReservation.order_id == order_id,
            StockReservation.product_id == product_id,
        )
        return session.exec(stmt).first()

    def add_reservation(
        self,
        session: Session,
        reservation: StockReservation,
    ) -> StockReservation:
        session.add(reservation)
        session.flush()
        return reservation

    def close_reservation(
        self,
        session: Session,
        reservation_id: uuid.UUID,
        new_status: str,
    ) -> bool:
        """
        Move a reservation out of `reserved`. Returns False if it already left.
        """
        now = utcnow()
        values = {"status": new_status, "updated_at": now}
        if new_status == ReservationStatus.RELEASED:
            values["released_at"] = now
        else:
            values["fulfilled_at"] = now
        stmt = (
            update(StockReservation)
            .where(
                StockReservation.id == reservation_id,
                StockReservation.status == ReservationStatus.RESERVED,
            )
            .values(**values)
        )
        return session.exec(stmt).rowcount == 1

    # ---- Movements ----

    def add_movement(self, session: Session, movement: InventoryMovement) -> None:
        session.add(movement)
        session.flush()
