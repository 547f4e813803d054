# cod_orders/services/wiring.py
"""
Builds the shared service graph used by the routers.

Repositories are stateless; services share one delivery event bus so the
order lifecycle sees every assignment transition.
"""
from cod_orders.repositories.delivery_repo import DeliveryRepository
from cod_orders.repositories.ledger_repo import LedgerRepository
from cod_orders.repositories.order_repo import OrderRepository
from cod_orders.repositories.profile_repo import ProfileRepository
from cod_orders.repositories.stock_repo import StockRepository
from cod_orders.services.audit_service import AuditService
from cod_orders.services.delivery_service import DeliveryService
from cod_orders.services.events import DeliveryEventBus
from cod_orders.services.notification_service import Channel, NotificationService
from cod_orders.services.order_service import OrderService
from cod_orders.services.pos_service import PosSaleRecorder
from cod_orders.services.stock_service import StockReservationService


class Services:
    """Container for one wired set of services."""

    def __init__(self, channels: list[Channel] | None = None):
        self.events = DeliveryEventBus()

        self.order_repo = OrderRepository()
        self.profile_repo = ProfileRepository()
        self.delivery_repo = DeliveryRepository()
        self.stock_repo = StockRepository()
        self.ledger_repo = LedgerRepository()

        self.audit = AuditService(self.ledger_repo)
        self.notifications = NotificationService(self.ledger_repo, channels)
        self.stock = StockReservationService(self.stock_repo)
        self.pos = PosSaleRecorder(self.ledger_repo, self.order_repo)

        self.deliveries = DeliveryService(
            self.delivery_repo,
            self.profile_repo,
            self.audit,
            self.events,
        )
        self.orders = OrderService(
            self.order_repo,
            self.profile_repo,
            self.deliveries,
            self.stock,
            self.notifications,
            self.audit,
            self.pos,
            self.events,
        )


services = Services()
