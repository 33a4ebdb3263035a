"""
Fulfillment Service - hands paid orders to the fulfillment side.

The lifecycle manager calls `notify_paid` once per order, after the
transition into paid has been committed. Implementations raise on failure;
the caller releases its dispatch claim so the reconciliation worker can try
again.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Optional

from lnpay.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class FulfillmentNotifier:
    """Interface for the fulfillment collaborator."""

    async def notify_paid(self, order_id: str, invoice_id: str, amount: Decimal) -> None:
        raise NotImplementedError


class LoggingFulfillmentNotifier(FulfillmentNotifier):
    """Logs the paid order. Used when no fulfillment backend is configured."""

    async def notify_paid(self, order_id: str, invoice_id: str, amount: Decimal) -> None:
        logger.info(
            f"Order fulfillment triggered: order {order_id}, invoice {invoice_id}, ${amount}",
            extra={"order_id": order_id, "invoice_id": invoice_id, "amount": str(amount)},
        )


class CeleryFulfillmentNotifier(FulfillmentNotifier):
    """
    Enqueue the `fulfill_order` task.

    The broker publish is synchronous, so it runs in a worker thread and is
    bounded by `timeout`. A timeout raises `asyncio.TimeoutError`, which the
    caller treats like any other dispatch failure.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = (
            timeout if timeout is not None else default_settings.fulfillment_enqueue_timeout_seconds
        )

    async def notify_paid(self, order_id: str, invoice_id: str, amount: Decimal) -> None:
        from lnpay.workers.fulfillment import fulfill_order

        await asyncio.wait_for(
            asyncio.to_thread(
                fulfill_order.apply_async,
                args=[order_id, invoice_id, str(amount)],
                retry=True,
                retry_policy={
                    "max_retries": 2,
                    "interval_start": 0.2,
                    "interval_step": 0.5,
                    "interval_max": 1.0,
                },
            ),
            timeout=self.timeout,
        )
        logger.info(f"Fulfillment enqueued for order {order_id}")


def build_fulfillment_notifier(config: Optional[Settings] = None) -> FulfillmentNotifier:
    config = config or default_settings
    if config.fulfillment_backend == "celery":
        return CeleryFulfillmentNotifier(config.fulfillment_enqueue_timeout_seconds)
    return LoggingFulfillmentNotifier()
