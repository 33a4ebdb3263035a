"""Services package."""

from lnpay.services.gateway import GatewayClient, build_gateway_client
from lnpay.services.btcpay_service import BTCPayService
from lnpay.services.mock_gateway import MockGatewayService
from lnpay.services.invoice_store import InvoiceStore
from lnpay.services.invoice_service import InvoiceService, build_invoice_service
from lnpay.services.webhook_service import WebhookService
from lnpay.services.fulfillment_service import FulfillmentNotifier, build_fulfillment_notifier

__all__ = [
    "GatewayClient",
    "build_gateway_client",
    "BTCPayService",
    "MockGatewayService",
    "InvoiceStore",
    "InvoiceService",
    "build_invoice_service",
    "WebhookService",
    "FulfillmentNotifier",
    "build_fulfillment_notifier",
]
