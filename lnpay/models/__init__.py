"""Models package for database models."""

from lnpay.models.invoice import Invoice
from lnpay.models.order import Order
from lnpay.models.payment import Payment
from lnpay.models.webhook_delivery import WebhookDelivery

__all__ = [
    "Invoice",
    "Order",
    "Payment",
    "WebhookDelivery",
]
