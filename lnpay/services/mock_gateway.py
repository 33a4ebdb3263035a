"""
Mock gateway - in-memory stand-in for BTCPay, used in development and tests.

Invoices only change status when told to via `set_status`, so a developer
can walk an invoice through settlement by hand.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Optional

from lnpay.errors import GatewayError
from lnpay.fsm.states import GatewayInvoiceStatus
from lnpay.services.gateway import (
    GatewayClient,
    GatewayInvoice,
    GatewayStatusSnapshot,
    LightningDetails,
)

logger = logging.getLogger(__name__)

INVOICE_TTL = timedelta(hours=1)


class MockGatewayService(GatewayClient):
    """Gateway double keeping its invoices in a dict."""

    name = "mock"

    def __init__(self, checkout_base_url: str = "https://mock-gateway.local"):
        self.checkout_base_url = checkout_base_url
        self.invoices: Dict[str, Dict] = {}
        # When set, every call raises GatewayError
        self.unavailable = False
        self._fail_next = 0

    def fail_next(self, count: int = 1) -> None:
        """Make the next `count` calls raise a transient GatewayError."""
        self._fail_next = count

    def set_status(
        self,
        invoice_id: str,
        status: GatewayInvoiceStatus,
        paid_amount: Optional[Decimal] = None,
    ) -> None:
        invoice = self.invoices[invoice_id]
        invoice["status"] = GatewayInvoiceStatus(status).value
        if status == GatewayInvoiceStatus.SETTLED:
            invoice["paidAmount"] = str(paid_amount if paid_amount is not None else invoice["amount"])
            invoice["settledAt"] = datetime.now(timezone.utc)

    def _check_available(self) -> None:
        if self.unavailable:
            raise GatewayError("Mock gateway unavailable", transient=True)
        if self._fail_next:
            self._fail_next -= 1
            raise GatewayError("Mock gateway failure", transient=True)

    async def create_invoice(
        self,
        amount: Decimal,
        description: str,
        order_id: str,
        customer_email: Optional[str] = None,
    ) -> GatewayInvoice:
        self._check_available()

        invoice_id = "inv_" + secrets.token_hex(8)
        now = datetime.now(timezone.utc)
        # Millisatoshi-looking BOLT11 placeholder
        payment_request = f"lnbc{int(amount * 10)}m1p" + secrets.token_hex(20)
        self.invoices[invoice_id] = {
            "id": invoice_id,
            "amount": str(amount),
            "status": GatewayInvoiceStatus.NEW.value,
            "orderId": order_id,
            "description": description,
            "buyerEmail": customer_email,
            "paymentRequest": payment_request,
            "createdTime": int(now.timestamp()),
            "expirationTime": int((now + INVOICE_TTL).timestamp()),
        }

        logger.info(f"Mock invoice created: {invoice_id} for order {order_id}")

        return GatewayInvoice(
            id=invoice_id,
            checkout_link=f"{self.checkout_base_url}/i/{invoice_id}",
            payment_request=payment_request,
            expires_at=now + INVOICE_TTL,
            created_at=now,
            status=GatewayInvoiceStatus.NEW.value,
            raw=dict(self.invoices[invoice_id]),
        )

    async def get_invoice(self, invoice_id: str) -> GatewayStatusSnapshot:
        self._check_available()

        invoice = self.invoices.get(invoice_id)
        if invoice is None:
            raise GatewayError(f"Mock invoice {invoice_id} not found", status=404)

        paid = invoice.get("paidAmount")
        return GatewayStatusSnapshot(
            status=invoice["status"],
            paid_amount=Decimal(paid) if paid is not None else None,
            settled_at=invoice.get("settledAt"),
            raw={k: v for k, v in invoice.items() if k != "settledAt"},
        )

    async def get_payment_methods(self, invoice_id: str) -> Optional[LightningDetails]:
        self._check_available()

        invoice = self.invoices.get(invoice_id)
        if invoice is None:
            return None
        return LightningDetails(
            payment_request=invoice["paymentRequest"],
            amount=Decimal(invoice["amount"]),
            total_paid=Decimal(invoice.get("paidAmount") or "0"),
        )
