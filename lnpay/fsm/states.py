"""
FSM State Definitions.
Invoice statuses and the gateway vocabulary they are mapped from.
"""

from enum import Enum


class InvoiceStatus(str, Enum):
    """
    Closed set of local invoice statuses.
    PENDING is initial; PAID, EXPIRED, FAILED and CANCELLED are terminal.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    EXPIRED = "expired"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    InvoiceStatus.PAID,
    InvoiceStatus.EXPIRED,
    InvoiceStatus.FAILED,
    InvoiceStatus.CANCELLED,
})


class GatewayInvoiceStatus(str, Enum):
    """Invoice statuses reported by BTCPay Server (Greenfield API)."""

    NEW = "New"
    PROCESSING = "Processing"
    SETTLED = "Settled"
    INVALID = "Invalid"
    EXPIRED = "Expired"


class WebhookEventType(str, Enum):
    """
    Webhook event types we act on.
    Short names and BTCPay's native names are both accepted.
    """

    PAYMENT_RECEIVED = "PaymentReceived"
    PAYMENT_SETTLED = "PaymentSettled"
    INVOICE_RECEIVED_PAYMENT = "InvoiceReceivedPayment"
    INVOICE_PAYMENT_SETTLED = "InvoicePaymentSettled"
    INVOICE_SETTLED = "InvoiceSettled"
    INVOICE_PROCESSING = "InvoiceProcessing"
    INVOICE_EXPIRED = "InvoiceExpired"
    INVOICE_INVALID = "InvoiceInvalid"


class StatsTimeframe(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
