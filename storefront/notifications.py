"""Order notification email — sends a plain summary via SMTP.

Uses standard SMTP with STARTTLS. Settings come from ``STOREFRONT_SMTP_*``
and ``STOREFRONT_NOTIFY_RECIPIENTS``.

Security: password comes from settings, never logged. Customer emails are
not included in the message body.
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from storefront.config import Settings
from storefront.errors import HandlerFailure
from storefront.webhooks.schemas import OrderPlaced

logger = logging.getLogger(__name__)


class OrderMailer:
    """Email notifications for placed orders."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        sender: str = "",
        recipients: list[str] | None = None,
    ):
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._from = sender or user
        self._recipients = [r.strip() for r in recipients or [] if r.strip()]

    @classmethod
    def from_settings(cls, settings: Settings) -> OrderMailer:
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.smtp_from,
            recipients=settings.notify_recipients,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._host and self._from and self._recipients)

    def format_order(self, order: OrderPlaced) -> MIMEMultipart:
        total = order.amounts.total
        subject = f"[ORDER] #{order.friendly_id} - {total.value:.2f} {total.currency}"

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._from
        msg["To"] = ", ".join(self._recipients)

        lines = [f"Order {order.friendly_id} ({order.id})", ""]
        for offer in order.offers:
            variant = offer.variant
            lines.append(
                f"- {offer.name} / {variant.name} x{variant.quantity}: "
                f"{variant.price.value:.2f} {variant.price.currency}"
            )
        lines += ["", f"Total: {total.value:.2f} {total.currency}"]
        msg.attach(MIMEText("\n".join(lines), "plain"))
        return msg

    def send(self, formatted: MIMEMultipart) -> None:
        """Send via SMTP with TLS.

        Raises:
            HandlerFailure: on any SMTP or connection error
        """
        try:
            with smtplib.SMTP(self._host, self._port, timeout=15) as server:
                server.starttls()
                if self._user and self._password:
                    server.login(self._user, self._password)
                server.send_message(formatted)
        except (smtplib.SMTPException, OSError) as e:
            raise HandlerFailure(f"SMTP error: {e}") from e

    def notify_order(self, order: OrderPlaced) -> bool:
        """Send the order summary.  Returns False when email is not configured."""
        if not self.is_configured:
            logger.debug("Order email not configured — skipping %s", order.id)
            return False
        self.send(self.format_order(order))
        logger.info("Order notification sent for %s", order.id)
        return True
