# cod_orders/services/notification_service.py
"""
Fire-and-forget notifications for COD order events.

Every notification is stored in-app first, then fanned out to the
configured channels (email, SMS). Nothing here raises into the caller:
a notification problem must never undo or block an order transition.
"""
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlmodel import Session

from cod_orders.core import email_client
from cod_orders.core.config import get_settings
from cod_orders.core.supabase_client import invoke_function
from cod_orders.models.ledger import Notification
from cod_orders.models.order import OrderStatus
from cod_orders.repositories.ledger_repo import LedgerRepository
from cod_orders.services.audit_service import jsonable
from cod_orders.services.best_effort import best_effort

logger = logging.getLogger(__name__)


class NotificationEvent:
    COD_ORDER_RECEIVED = "cod_order_received"  # seller: new order to confirm
    COD_ORDER_PLACED = "cod_order_placed"  # buyer: order went through
    ORDER_STATUS_CHANGED = "order_status_changed"  # buyer: status moved
    DELIVERY_ASSIGNED = "delivery_assigned"  # rider: new pickup


TEMPLATES: dict[str, tuple[str, str]] = {
    NotificationEvent.COD_ORDER_RECEIVED: (
        "New COD order {order_number}",
        "{customer_name} placed cash-on-delivery order {order_number} "
        "for {total_display}. Please confirm it.",
    ),
    NotificationEvent.COD_ORDER_PLACED: (
        "Order {order_number} placed",
        "Your order {order_number} with {seller_name} for {total_display} "
        "was placed. Pay cash when it is delivered.",
    ),
    NotificationEvent.ORDER_STATUS_CHANGED: (
        "Order {order_number}: {new_status_label}",
        "Your order {order_number} moved from {old_status_label} "
        "to {new_status_label}.",
    ),
    NotificationEvent.DELIVERY_ASSIGNED: (
        "New delivery assignment {order_number}",
        "Pick up order {order_number} at {pickup_address} and deliver to "
        "{delivery_address}. Collect {cash_display}.",
    ),
}


class _Blank(dict):
    def __missing__(self, key: str) -> str:
        return ""


def format_amount(amount: float | None, currency: str | None = None) -> str:
    currency = currency or get_settings().CURRENCY
    return f"{currency} {amount or 0:,.0f}"


def render(event_type: str, payload: dict[str, Any]) -> tuple[str, str]:
    """Title and body for an event; unknown events fall back to the type name."""
    values = _Blank(payload)
    for key in ("old_status", "new_status"):
        if key in payload:
            values[f"{key}_label"] = OrderStatus.label(payload[key])
    title, body = TEMPLATES.get(event_type, (event_type, event_type))
    return title.format_map(values), body.format_map(values)


@dataclass
class OutboundMessage:
    recipient_id: uuid.UUID
    event_type: str
    title: str
    body: str
    email: str | None = None
    phone: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


Channel = Callable[[OutboundMessage], None]


def email_channel(message: OutboundMessage) -> None:
    if not message.email:
        return
    if not email_client.is_configured():
        logger.debug("SMTP not configured; skipping email for %s", message.event_type)
        return
    email_client.send_email(
        to_email=message.email,
        subject=message.title,
        text_body=message.body,
        html_body=email_client.render_order_html(
            message.title, message.body, message.payload
        ),
    )


def sms_channel(message: OutboundMessage) -> None:
    settings = get_settings()
    if not settings.SMS_ENABLED or not message.phone:
        return
    invoke_function(
        settings.SMS_FUNCTION_NAME,
        {
            "to": message.phone,
            "message": message.body,
            "event_type": message.event_type,
            "order_id": message.payload.get("order_id"),
        },
    )


class NotificationService:
    """
    Notification dispatcher.

    notify() stores an in-app row, then tries each channel in turn.
    Every step is independent: a dead SMTP server does not stop the SMS,
    and neither stops the in-app row.
    """

    def __init__(
        self,
        repo: LedgerRepository,
        channels: list[Channel] | None = None,
    ):
        self.repo = repo
        self.channels = channels if channels is not None else [email_channel, sms_channel]

    def notify(
        self,
        session: Session,
        recipient_id: uuid.UUID,
        email: str | None,
        event_type: str,
        payload: dict[str, Any],
        phone: str | None = None,
    ) -> None:
        title, body = render(event_type, payload)
        context = {"recipient_id": str(recipient_id), "order_id": payload.get("order_id")}

        best_effort(
            session,
            f"notify:{event_type}",
            self.repo.add_notification,
            session,
            Notification(
                recipient_id=recipient_id,
                event_type=event_type,
                title=title,
                message=body,
                payload=jsonable(payload),
            ),
            context=context,
        )

        message = OutboundMessage(
            recipient_id=recipient_id,
            event_type=event_type,
            title=title,
            body=body,
            email=email,
            phone=phone,
            payload=jsonable(payload),
        )
        for channel in self.channels:
            try:
                channel(message)
            except Exception:
                logger.warning(
                    "Notification channel %s failed for %s (%s)",
                    getattr(channel, "__name__", channel),
                    event_type,
                    context,
                    exc_info=True,
                )
