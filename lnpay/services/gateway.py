"""
Payment gateway interface.

`GatewayClient` is implemented by `BTCPayService` (real gateway) and
`MockGatewayService` (development and tests). Which one is used is decided
once, by `build_gateway_client()`, from GATEWAY_MODE.
"""

import abc
import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from lnpay.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


@dataclass(frozen=True)
class GatewayInvoice:
    """Invoice as created on the gateway."""

    id: str
    checkout_link: Optional[str]
    payment_request: Optional[str]
    expires_at: Optional[datetime]
    created_at: Optional[datetime]
    status: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayStatusSnapshot:
    """Point-in-time view of an invoice on the gateway."""

    status: Optional[str]
    paid_amount: Optional[Decimal] = None
    settled_at: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LightningDetails:
    payment_request: str
    amount: Optional[Decimal] = None
    total_paid: Optional[Decimal] = None


def compute_signature(raw_payload: bytes, secret: str) -> str:
    """HMAC-SHA256 of the payload, formatted like the BTCPay-Sig header."""
    digest = hmac.new(secret.encode("utf-8"), raw_payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(raw_payload: bytes, signature_header: Optional[str], secret: str) -> bool:
    """
    Verify a webhook signature over the exact bytes received.

    The payload must never be re-serialized before calling this: any change
    in whitespace or key order changes the digest.
    """
    if not secret:
        logger.error("Webhook secret not configured; rejecting signature")
        return False
    if not signature_header:
        return False

    expected = compute_signature(raw_payload, secret)
    return hmac.compare_digest(
        expected.encode("utf-8"),
        signature_header.encode("utf-8", errors="replace"),
    )


class GatewayClient(abc.ABC):
    """Typed wrapper around the gateway's invoice API. Holds no invoice state."""

    name = "gateway"

    @abc.abstractmethod
    async def create_invoice(
        self,
        amount: Decimal,
        description: str,
        order_id: str,
        customer_email: Optional[str] = None,
    ) -> GatewayInvoice:
        """Create an invoice. Raises GatewayError."""

    @abc.abstractmethod
    async def get_invoice(self, invoice_id: str) -> GatewayStatusSnapshot:
        """Fetch current invoice status. Raises GatewayError."""

    @abc.abstractmethod
    async def get_payment_methods(self, invoice_id: str) -> Optional[LightningDetails]:
        """Lightning payment details for an invoice, or None."""

    def verify_signature(
        self,
        raw_payload: bytes,
        signature_header: Optional[str],
        secret: str,
    ) -> bool:
        return verify_signature(raw_payload, signature_header, secret)

    async def close(self) -> None:
        """Release network resources."""


def build_gateway_client(config: Optional[Settings] = None) -> GatewayClient:
    """Select the gateway implementation from configuration."""
    config = config or default_settings

    if config.gateway_mode == "btcpay":
        from lnpay.services.btcpay_service import BTCPayService

        if not (config.btcpay_url and config.btcpay_api_key and config.btcpay_store_id):
            raise RuntimeError(
                "GATEWAY_MODE=btcpay requires BTCPAY_URL, BTCPAY_API_KEY and BTCPAY_STORE_ID"
            )
        logger.info("BTCPay Server gateway configured")
        return BTCPayService(
            base_url=config.btcpay_url,
            api_key=config.btcpay_api_key,
            store_id=config.btcpay_store_id,
            frontend_url=config.frontend_url,
            timeout=config.gateway_timeout_seconds,
            max_retries=config.gateway_max_retries,
            backoff=config.gateway_retry_backoff_seconds,
        )

    from lnpay.services.mock_gateway import MockGatewayService

    logger.warning("Using mock payment gateway (GATEWAY_MODE=mock)")
    return MockGatewayService()
