# cod_orders/repositories/ledger_repo.py
import uuid

from sqlmodel import Session, select

from cod_orders.models.ledger import AuditLog, Notification, PosSale, PosSaleItem


class LedgerRepository:
    """
    Data access layer for the secondary records written around transitions:
    pos_sales, pos_sale_items, audit_logs and notifications.

    No commits here.
    """

    # ---- POS ----

    def get_sale_for_order(self, session: Session, order_id: uuid.UUID) -> PosSale | None:
        stmt = select(PosSale).where(PosSale.order_id == order_id)
        return session.exec(stmt).first()

    def create_sale(
        self,
        session: Session,
        sale: PosSale,
        items: list[PosSaleItem],
    ) -> PosSale:
        session.add(sale)
        session.flush()
        for item in items:
            item.pos_sale_id = sale.id
        session.add_all(items)
        session.flush()
        return sale

    def list_sale_items(self, session: Session, sale_id: uuid.UUID) -> list[PosSaleItem]:
        stmt = select(PosSaleItem).where(PosSaleItem.pos_sale_id == sale_id)
        return session.exec(stmt).all()

    # ---- Audit ----

    def add_audit(self, session: Session, entry: AuditLog) -> AuditLog:
        session.add(entry)
        session.flush()
        return entry

    def list_audit_for(self, session: Session, resource_id: uuid.UUID) -> list[AuditLog]:
        stmt = (
            select(AuditLog)
            .where(AuditLog.resource_id == resource_id)
            .order_by(AuditLog.created_at)
        )
        return session.exec(stmt).all()

    # ---- Notifications ----

    def add_notification(self, session: Session, notification: Notification) -> Notification:
        session.add(notification)
        session.flush()
        return notification

    def list_notifications(
        self,
        session: Session,
        recipient_id: uuid.UUID,
    ) -> list[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.recipient_id == recipient_id)
            .order_by(Notification.created_at.desc())
        )
        return session.exec(stmt).all()
