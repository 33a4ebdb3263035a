"""
Webhook Service - BTCPay webhook ingestion.

Verifies the signature over the raw request bytes, drops redelivered
notifications and feeds everything else into the lifecycle manager's
guarded update. Ordering, duplication and races with the poll path are
absorbed there; this module only decides what an event means.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from lnpay.config import settings
from lnpay.errors import NotFoundError, SignatureError
from lnpay.fsm.mapper import map_webhook_event
from lnpay.fsm.states import InvoiceStatus
from lnpay.models.webhook_delivery import WebhookDelivery
from lnpay.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)

DELIVERY_CACHE_PREFIX = "lnpay:webhook:delivery"


class WebhookOutcome(str, Enum):
    """What happened to an acknowledged delivery."""

    APPLIED = "applied"
    UNCHANGED = "unchanged"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class WebhookEvent:
    type: str
    invoice_id: str
    delivery_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


def parse_event(raw_body: bytes) -> Optional[WebhookEvent]:
    """Decode a webhook body. None if it is not a usable event."""
    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict):
        return None

    event_type = payload.get("type")
    invoice_id = payload.get("invoiceId")
    if not isinstance(event_type, str) or not isinstance(invoice_id, str) or not invoice_id:
        return None

    delivery_id = payload.get("deliveryId")
    data = payload.get("data")
    return WebhookEvent(
        type=event_type,
        invoice_id=invoice_id,
        delivery_id=str(delivery_id) if delivery_id else None,
        data=data if isinstance(data, dict) else {},
    )


class WebhookService:
    """Turns signed gateway notifications into guarded status updates."""

    def __init__(
        self,
        invoice_service: InvoiceService,
        secret: Optional[str] = None,
        cache_ttl: Optional[int] = None,
    ):
        self.invoice_service = invoice_service
        self.store = invoice_service.store
        self.secret = settings.btcpay_webhook_secret if secret is None else secret
        self.cache_ttl = cache_ttl or settings.delivery_cache_ttl_seconds

    async def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Process one delivery.

        Raises SignatureError for a bad signature. Anything else that goes
        wrong propagates so the gateway redelivers; the delivery is only
        recorded once processing succeeded.
        """
        if not self.invoice_service.gateway.verify_signature(raw_body, signature, self.secret):
            logger.error(
                "Invalid BTCPay webhook signature",
                extra={"security_event": "webhook_signature_invalid", "body_length": len(raw_body)},
            )
            raise SignatureError("Invalid signature")

        event = parse_event(raw_body)
        if event is None:
            logger.warning(f"Malformed BTCPay webhook body ({len(raw_body)} bytes) acknowledged")
            return WebhookOutcome.IGNORED

        logger.info(
            f"BTCPay webhook received: {event.type} for invoice {event.invoice_id}",
            extra={"invoice_id": event.invoice_id, "delivery_id": event.delivery_id},
        )

        if event.delivery_id and await self.is_duplicate(event.delivery_id):
            logger.info(f"Duplicate delivery {event.delivery_id} ignored")
            return WebhookOutcome.DUPLICATE

        outcome = await self._dispatch(event)

        if event.delivery_id:
            await self._record_delivery(event, outcome)
        return outcome

    async def _dispatch(self, event: WebhookEvent) -> WebhookOutcome:
        target = map_webhook_event(event.type)
        if target is None:
            logger.info(f"Unhandled BTCPay event: {event.type}")
            return WebhookOutcome.IGNORED

        paid_amount = None
        payment_hash = None
        if target is InvoiceStatus.PAID:
            paid_amount = event.data.get("paidAmount") or event.data.get("amount")
            payment_hash = event.data.get("paymentHash")

        metadata = {
            "type": event.type,
            "deliveryId": event.delivery_id,
            "data": event.data,
        }
        try:
            result = await self.invoice_service.apply_status(
                event.invoice_id,
                target,
                metadata=metadata,
                source="webhook",
                paid_amount=paid_amount,
                payment_hash=payment_hash,
            )
        except NotFoundError:
            logger.warning(f"Webhook for unknown invoice {event.invoice_id} ignored")
            return WebhookOutcome.IGNORED

        return WebhookOutcome.APPLIED if result.changed else WebhookOutcome.UNCHANGED

    # --- Delivery idempotency -----------------------------------------

    async def is_duplicate(self, delivery_id: str) -> bool:
        """Check if a delivery was already processed."""
        cache_key = f"{DELIVERY_CACHE_PREFIX}:{delivery_id}"

        # Redis check (fast path)
        try:
            from lnpay.redis import get_redis
            redis = await get_redis()
            if await redis.exists(cache_key):
                return True
        except Exception as e:
            logger.warning(f"Delivery cache unavailable: {e}")

        # Database is the source of truth
        if await self.store.get_delivery(delivery_id) is None:
            return False

        await self._cache_delivery(delivery_id)
        return True

    async def _record_delivery(self, event: WebhookEvent, outcome: WebhookOutcome) -> None:
        delivery = WebhookDelivery(
            delivery_id=event.delivery_id,
            invoice_id=event.invoice_id,
            event_type=event.type,
            outcome=outcome.value,
            processed_at=self.invoice_service.clock(),
        )
        await self.store.record_delivery(delivery)
        await self._cache_delivery(event.delivery_id)

    async def _cache_delivery(self, delivery_id: str) -> None:
        try:
            from lnpay.redis import get_redis
            redis = await get_redis()
            await redis.setex(f"{DELIVERY_CACHE_PREFIX}:{delivery_id}", self.cache_ttl, "1")
        except Exception as e:
            logger.warning(f"Failed to cache delivery {delivery_id}: {e}")

    async def get_delivery(self, delivery_id: str) -> Dict[str, Any]:
        delivery = await self.store.get_delivery(delivery_id)
        if delivery is None:
            raise NotFoundError(f"Delivery {delivery_id} not found")
        return {
            "delivery_id": delivery.delivery_id,
            "invoice_id": delivery.invoice_id,
            "event_type": delivery.event_type,
            "outcome": delivery.outcome,
            "processed_at": delivery.processed_at,
        }
