"""
Status Mapper - translate gateway vocabulary into local statuses.
Pure functions; unknown values map to None and callers treat that as a no-op.
"""

from typing import Dict, Optional

from lnpay.fsm.states import GatewayInvoiceStatus, InvoiceStatus, WebhookEventType

GATEWAY_STATUS_MAP: Dict[GatewayInvoiceStatus, InvoiceStatus] = {
    GatewayInvoiceStatus.NEW: InvoiceStatus.PENDING,
    GatewayInvoiceStatus.PROCESSING: InvoiceStatus.PROCESSING,
    GatewayInvoiceStatus.SETTLED: InvoiceStatus.PAID,
    GatewayInvoiceStatus.INVALID: InvoiceStatus.FAILED,
    GatewayInvoiceStatus.EXPIRED: InvoiceStatus.EXPIRED,
}

WEBHOOK_EVENT_MAP: Dict[WebhookEventType, InvoiceStatus] = {
    WebhookEventType.PAYMENT_RECEIVED: InvoiceStatus.PROCESSING,
    WebhookEventType.INVOICE_RECEIVED_PAYMENT: InvoiceStatus.PROCESSING,
    WebhookEventType.PAYMENT_SETTLED: InvoiceStatus.PAID,
    WebhookEventType.INVOICE_PAYMENT_SETTLED: InvoiceStatus.PAID,
    WebhookEventType.INVOICE_SETTLED: InvoiceStatus.PAID,
    WebhookEventType.INVOICE_PROCESSING: InvoiceStatus.PROCESSING,
    WebhookEventType.INVOICE_EXPIRED: InvoiceStatus.EXPIRED,
    WebhookEventType.INVOICE_INVALID: InvoiceStatus.FAILED,
}


def map_gateway_status(status: Optional[str]) -> Optional[InvoiceStatus]:
    """Map a gateway invoice status (e.g. "Settled") to a local status."""
    try:
        return GATEWAY_STATUS_MAP[GatewayInvoiceStatus(status)]
    except ValueError:
        return None


def map_webhook_event(event_type: Optional[str]) -> Optional[InvoiceStatus]:
    """Map a webhook event type (e.g. "InvoiceExpired") to a target status."""
    try:
        return WEBHOOK_EVENT_MAP[WebhookEventType(event_type)]
    except ValueError:
        return None
