"""
Fulfillment Worker.

Receives paid orders. Delivery itself (email, receipt, shipping) is owned
by the merchant's fulfillment system; this task is its entry point.
"""

import logging

from lnpay.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(ignore_result=True)
def fulfill_order(order_id: str, invoice_id: str, amount: str):
    """Record that a paid order is ready for fulfillment."""
    logger.info(
        f"Order fulfillment triggered: order {order_id}, invoice {invoice_id}, ${amount}",
        extra={"order_id": order_id, "invoice_id": invoice_id, "amount": amount},
    )
