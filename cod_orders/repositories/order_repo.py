# cod_orders/repositories/order_repo.py
import uuid
from collections.abc import Iterable
from typing import Any

from sqlalchemy import update
from sqlmodel import Session, select

from cod_orders.models.order import Order, OrderItem, OrderStatusHistory, utcnow


class OrderRepository:
    """
    Data access layer for orders, order_items and order_status_history.

    NOTE:
      - No commits here; every transition is a multi-step unit of work.
        The service is responsible for calling session.commit().
    """

    # ---- Orders ----

    def get_by_id(self, session: Session, order_id: uuid.UUID) -> Order | None:
        return session.get(Order, order_id)

    def number_exists(self, session: Session, order_number: str) -> bool:
        stmt = select(Order.id).where(Order.order_number == order_number)
        return session.exec(stmt).first() is not None

    def list_for_buyer(
        self,
        session: Session,
        buyer_id: uuid.UUID,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Order]:
        stmt = (
            select(Order)
            .where(Order.buyer_id == buyer_id)
            .order_by(Order.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return session.exec(stmt).all()

    def list_for_seller(
        self,
        session: Session,
        seller_id: uuid.UUID,
        statuses: Iterable[str] | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Order]:
        stmt = select(Order).where(Order.seller_id == seller_id)
        if statuses is not None:
            stmt = stmt.where(Order.status.in_(list(statuses)))
        stmt = stmt.order_by(Order.created_at.desc()).offset(skip).limit(limit)
        return session.exec(stmt).all()

    def create_order(self, session: Session, order: Order) -> Order:
        """
        Insert an Order without committing, but ensure id is populated.
        """
        session.add(order)
        session.flush()
        session.refresh(order)
        return order

    def transition(
        self,
        session: Session,
        order_id: uuid.UUID,
        expected: Iterable[str],
        new_status: str,
        **values: Any,
    ) -> bool:
        """
        Check-and-set status update.

        The row is only written if its current status is one of `expected`.
        Returns False when another request moved the order first.
        """
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.status.in_(list(expected)))
            .values(status=new_status, updated_at=utcnow(), **values)
        )
        result = session.exec(stmt)
        return result.rowcount == 1

    def lock_in_status(
        self,
        session: Session,
        order_id: uuid.UUID,
        statuses: Iterable[str],
    ) -> bool:
        """
        Lock the order row (SELECT ... FOR UPDATE) if it is in one of `statuses`.

        A concurrent transition on the same order waits for our commit.
        """
        stmt = (
            select(Order.id)
            .where(Order.id == order_id, Order.status.in_(list(statuses)))
            .with_for_update()
        )
        return session.exec(stmt).first() is not None

    # ---- Order items ----

    def list_items_for_order(
        self,
        session: Session,
        order_id: uuid.UUID,
    ) -> list[OrderItem]:
        stmt = select(OrderItem).where(OrderItem.order_id == order_id)
        return session.exec(stmt).all()

    def create_items(
        self,
        session: Session,
        items: list[OrderItem],
    ) -> list[OrderItem]:
        session.add_all(items)
        session.flush()
        return items

    # ---- Status history ----

    def add_history(
        self,
        session: Session,
        order_id: uuid.UUID,
        status: str,
        changed_by: uuid.UUID | None,
        notes: str | None = None,
    ) -> OrderStatusHistory:
        entry = OrderStatusHistory(
            order_id=order_id,
            status=status,
            changed_by=changed_by,
            notes=notes,
        )
        session.add(entry)
        session.flush()
        return entry

    def list_history(
        self,
        session: Session,
        order_id: uuid.UUID,
    ) -> list[OrderStatusHistory]:
        stmt = (
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.created_at)
        )
        return session.exec(stmt).all()
