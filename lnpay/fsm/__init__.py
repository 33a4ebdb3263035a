"""FSM package for invoice status management."""

from lnpay.fsm.states import InvoiceStatus, TERMINAL_STATUSES, WebhookEventType
from lnpay.fsm.machine import can_transition, TransitionResult
from lnpay.fsm.mapper import map_gateway_status, map_webhook_event

__all__ = [
    "InvoiceStatus",
    "TERMINAL_STATUSES",
    "WebhookEventType",
    "can_transition",
    "TransitionResult",
    "map_gateway_status",
    "map_webhook_event",
]
