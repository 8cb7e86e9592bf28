"""
Email Integration Hooks

Order notifications are best-effort: they run after the order transaction
has committed, with a bounded timeout, and a failure is logged only.
Actual email sending is plugged in through NotificationProvider.
"""

import asyncio
import logging
from typing import Any, Optional, Protocol

from tireledger.core.config import settings

logger = logging.getLogger(__name__)


class NotificationProvider(Protocol):
    """Protocol for email providers."""

    async def send_order_confirmation(self, order: Any) -> bool:
        """Send order confirmation to the customer."""
        ...

    async def send_order_cancellation(self, order: Any, reason: Optional[str]) -> bool:
        """Tell the customer their order was cancelled."""
        ...


class LoggingEmailProvider:
    """Development provider: logs instead of sending email."""

    async def send_order_confirmation(self, order: Any) -> bool:
        logger.info(
            f"[MOCK EMAIL] Order confirmation to {order.customer_email}\n"
            f"  From: {settings.EMAIL_FROM}\n"
            f"  Order: {order.order_number}\n"
            f"  Items: {len(order.items)}\n"
            f"  Total: ${float(order.total):.2f}"
        )
        return True

    async def send_order_cancellation(self, order: Any, reason: Optional[str]) -> bool:
        logger.info(
            f"[MOCK EMAIL] Order cancellation to {order.customer_email}\n"
            f"  Order: {order.order_number}\n"
            f"  Reason: {reason or 'n/a'}"
        )
        return True


class NotificationService:
    """
    Wraps a provider with a timeout and swallows-and-logs its failures.

    Replace LoggingEmailProvider with an actual provider (SendGrid, Postmark, etc.)
    """

    def __init__(self, provider: Optional[NotificationProvider] = None, timeout: Optional[float] = None):
        self.provider = provider or LoggingEmailProvider()
        self.timeout = timeout if timeout is not None else settings.NOTIFICATION_TIMEOUT_SECONDS

    async def order_confirmed(self, order: Any) -> bool:
        if not order.customer_email:
            logger.info(f"No customer email on order {order.order_number}, confirmation skipped")
            return False
        try:
            return await asyncio.wait_for(
                self.provider.send_order_confirmation(order),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(f"Failed to send order confirmation for {order.order_number}: {e!r}")
            return False

    async def order_cancelled(self, order: Any, reason: Optional[str] = None) -> bool:
        if not order.customer_email:
            return False
        try:
            return await asyncio.wait_for(
                self.provider.send_order_cancellation(order, reason),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(f"Failed to send cancellation email for {order.order_number}: {e!r}")
            return False


# Singleton
_service: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    global _service
    if _service is None:
        _service = NotificationService()
    return _service
