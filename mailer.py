"""Order notification boundary.

Delivery is best-effort: callers go through ``notify_order`` which logs and
absorbs failures, so a broken mail relay never undoes a committed order.
"""
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class Mailer:
    """Default mailer. It records the notification in the log only."""

    def __init__(self, recipient: str = "orders@agency.local"):
        self.recipient = recipient

    def send_order_notification(self, order: dict, invoice: Optional[dict] = None):
        logger.info(
            "Order notification to %s: %s %s (%s) %s",
            self.recipient,
            order.get("order_number"),
            order.get("service_name"),
            order.get("payment_status"),
            invoice.get("invoice_number") if invoice else "no invoice",
        )


def notify_order(mailer: Mailer, order: dict, invoice: Optional[dict] = None) -> bool:
    try:
        mailer.send_order_notification(order, invoice)
    except Exception:
        logger.exception("Failed to send notification for order %s", order.get("order_number"))
        return False
    return True
