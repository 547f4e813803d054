# cod_orders/services/pos_service.py
import logging

from sqlmodel import Session

from cod_orders.models.ledger import PosSale, PosSaleItem
from cod_orders.models.order import Order, OrderStatus
from cod_orders.repositories.ledger_repo import LedgerRepository
from cod_orders.repositories.order_repo import OrderRepository

logger = logging.getLogger(__name__)


class PosSaleRecorder:
    """
    Books a delivered COD order as a completed sale on the seller's POS.

    Bookkeeping only: the order's delivered_and_paid status is authoritative
    and is never rolled back because of a failure here.
    """

    def __init__(self, ledger_repo: LedgerRepository, order_repo: OrderRepository):
        self.ledger_repo = ledger_repo
        self.order_repo = order_repo

    def record_sale(
        self,
        session: Session,
        order: Order,
        customer_name: str = "COD Customer",
    ) -> PosSale:
        """
        Create one sale plus one line per order item.

        Returns the existing sale if the order was already booked.

        Raises:
            ValueError: if the order is not delivered_and_paid.
        """
        if order.status != OrderStatus.DELIVERED_AND_PAID:
            raise ValueError(
                f"Order {order.order_number} is {order.status}, not delivered_and_paid"
            )

        existing = self.ledger_repo.get_sale_for_order(session, order.id)
        if existing is not None:
            return existing

        items = self.order_repo.list_items_for_order(session, order.id)
        sale = PosSale(
            seller_id=order.seller_id,
            order_id=order.id,
            total_amount=order.total_amount,
            payment_method="cod",
            customer_name=customer_name,
        )
        sale_items = [
            PosSaleItem(
                product_id=it.product_id,
                quantity=it.quantity,
                unit_price=it.unit_price,
                total_price=it.unit_price * it.quantity,
            )
            for it in items
        ]
        sale = self.ledger_repo.create_sale(session, sale, sale_items)
        logger.info(
            "Recorded POS sale %s for order %s (%d items)",
            sale.id,
            order.order_number,
            len(sale_items),
        )
        return sale
