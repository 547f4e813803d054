"""
SMTP delivery for order notification emails.

Connection details come from Settings (SMTP_* in .env):

    SMTP_HOST=smtp.gmail.com
    SMTP_PORT=465
    SMTP_USERNAME=orders@example.com
    SMTP_PASSWORD=<app password>
    SMTP_FROM_NAME=COD Orders
    SMTP_USE_TLS=false
    SMTP_USE_SSL=true

Every email has a plain-text part plus an HTML alternative that repeats
the text and lists the order summary.
"""
from __future__ import annotations

import html
import logging
import smtplib
from collections.abc import Mapping
from email.message import EmailMessage
from typing import Any

from cod_orders.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Payload keys shown in the HTML summary table, in display order
ORDER_SUMMARY_FIELDS: tuple[tuple[str, str], ...] = (
    ("Order", "order_number"),
    ("Amount", "total_display"),
    ("Cash to collect", "cash_display"),
    ("Pickup", "pickup_address"),
    ("Deliver to", "delivery_address"),
)


def is_configured(settings: Settings | None = None) -> bool:
    """True when host and credentials are all present."""
    settings = settings or get_settings()
    return bool(settings.SMTP_HOST and settings.SMTP_USERNAME and settings.SMTP_PASSWORD)


def render_order_html(title: str, body: str, payload: Mapping[str, Any]) -> str:
    """
    HTML body for an order event.

    Only summary fields present in `payload` get a row. All values are
    escaped.
    """
    rows = "".join(
        "<tr>"
        f'<td style="padding:4px 16px 4px 0;color:#666">{label}</td>'
        f"<td><strong>{html.escape(str(payload[key]))}</strong></td>"
        "</tr>"
        for label, key in ORDER_SUMMARY_FIELDS
        if payload.get(key) not in (None, "")
    )
    summary = f"<table>{rows}</table>" if rows else ""
    return (
        '<div style="font-family:Arial,sans-serif;font-size:14px">'
        f"<h2>{html.escape(title)}</h2>"
        f"<p>{html.escape(body)}</p>"
        f"{summary}"
        "</div>"
    )


def build_message(
    to_email: str,
    subject: str,
    text_body: str,
    html_body: str | None = None,
    settings: Settings | None = None,
) -> EmailMessage:
    settings = settings or get_settings()
    sender = settings.SMTP_FROM_EMAIL or settings.SMTP_USERNAME

    msg = EmailMessage()
    msg["From"] = f"{settings.SMTP_FROM_NAME} <{sender}>"
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(text_body)
    if html_body:
        msg.add_alternative(html_body, subtype="html")
    return msg


def _create_smtp_client(settings: Settings) -> smtplib.SMTP:
    """
    SMTP_SSL when SMTP_USE_SSL is set (port 465), otherwise plain SMTP
    upgraded with STARTTLS when SMTP_USE_TLS is set (port 587).
    """
    if settings.SMTP_USE_SSL:
        return smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30)

    server = smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30)
    if settings.SMTP_USE_TLS:
        server.starttls()
    return server


def send_email(
    to_email: str,
    subject: str,
    text_body: str,
    html_body: str | None = None,
    settings: Settings | None = None,
) -> None:
    """
    Send one email.

    Raises
    ------
    RuntimeError:
        If SMTP host or credentials are missing.
    smtplib.SMTPException:
        If the connection, login or send fails.
    """
    settings = settings or get_settings()
    if not is_configured(settings):
        raise RuntimeError(
            "SMTP is not configured. Set SMTP_HOST, SMTP_USERNAME and SMTP_PASSWORD."
        )

    msg = build_message(to_email, subject, text_body, html_body, settings)
    server = _create_smtp_client(settings)
    try:
        server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)
    finally:
        try:
            server.quit()
        except smtplib.SMTPException:
            # Connection is being torn down anyway.
            logger.debug("SMTP quit failed for %s", to_email)
    logger.info("Sent email '%s' to %s", subject, to_email)
