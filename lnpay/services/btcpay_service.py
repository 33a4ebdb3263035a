"""
BTCPay Service - Lightning invoices via the BTCPay Server Greenfield API.
"""

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from lnpay.errors import GatewayError
from lnpay.services.gateway import (
    GatewayClient,
    GatewayInvoice,
    GatewayStatusSnapshot,
    LightningDetails,
)

logger = logging.getLogger(__name__)

LIGHTNING_METHOD_IDS = ("BTC-LightningNetwork", "BTC-LN")


def _from_unix(value: Any) -> Optional[datetime]:
    """Greenfield timestamps are unix seconds."""
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class BTCPayService(GatewayClient):
    """Client for one BTCPay store."""

    name = "btcpay"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        store_id: str,
        frontend_url: str = "",
        timeout: float = 3.0,
        max_retries: int = 1,
        backoff: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store_id = store_id
        self.frontend_url = frontend_url.rstrip("/")
        self.max_retries = max_retries
        self.backoff = backoff
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"token {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def create_invoice(
        self,
        amount: Decimal,
        description: str,
        order_id: str,
        customer_email: Optional[str] = None,
    ) -> GatewayInvoice:
        """
        Create a Lightning-only invoice.

        The BOLT11 string is not part of the create response, so it is read
        from the invoice's payment methods right after. If that lookup fails
        the invoice is still usable through its checkout link.
        """
        payload: Dict[str, Any] = {
            "amount": str(amount),
            "currency": "USD",
            "metadata": {
                "orderId": order_id,
                "itemDesc": description,
            },
            "checkout": {
                "speedPolicy": "MediumSpeed",
                "paymentMethods": ["BTC-LightningNetwork"],
                "requiresRefundEmail": False,
            },
        }
        if customer_email:
            payload["metadata"]["buyerEmail"] = customer_email
        if self.frontend_url:
            payload["checkout"]["redirectURL"] = f"{self.frontend_url}/success?order={order_id}"

        data = await self._request("POST", f"/api/v1/stores/{self.store_id}/invoices", json=payload)
        if not isinstance(data, dict) or not data.get("id"):
            raise GatewayError("Malformed invoice response from BTCPay")

        payment_request = None
        try:
            lightning = await self.get_payment_methods(data["id"])
            if lightning:
                payment_request = lightning.payment_request
        except GatewayError as e:
            logger.warning(f"Payment methods unavailable for invoice {data['id']}: {e.message}")

        logger.info(f"BTCPay invoice created: {data['id']} for order {order_id}")

        return GatewayInvoice(
            id=data["id"],
            checkout_link=data.get("checkoutLink"),
            payment_request=payment_request,
            expires_at=_from_unix(data.get("expirationTime")),
            created_at=_from_unix(data.get("createdTime")),
            status=data.get("status"),
            raw=data,
        )

    async def get_invoice(self, invoice_id: str) -> GatewayStatusSnapshot:
        data = await self._request("GET", f"/api/v1/stores/{self.store_id}/invoices/{invoice_id}")
        if not isinstance(data, dict) or "status" not in data:
            raise GatewayError(f"Malformed invoice status for {invoice_id}")

        # Greenfield does not expose a settlement time on the invoice itself
        return GatewayStatusSnapshot(
            status=data.get("status"),
            paid_amount=_decimal(data.get("paidAmount")),
            settled_at=None,
            raw=data,
        )

    async def get_payment_methods(self, invoice_id: str) -> Optional[LightningDetails]:
        data = await self._request(
            "GET",
            f"/api/v1/stores/{self.store_id}/invoices/{invoice_id}/payment-methods",
        )
        if not isinstance(data, list):
            raise GatewayError(f"Malformed payment methods for {invoice_id}")

        lightning = self._find_lightning(data)
        if not lightning or not lightning.get("destination"):
            return None

        return LightningDetails(
            payment_request=lightning["destination"],
            amount=_decimal(lightning.get("amount")),
            total_paid=_decimal(lightning.get("totalPaid")),
        )

    async def close(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _find_lightning(methods: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        for method in methods:
            method_id = method.get("paymentMethodId") or method.get("paymentMethod")
            if method_id in LIGHTNING_METHOD_IDS:
                return method
        return None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """
        Send a request with bounded retries.

        Retried: transport errors, timeouts and 5xx.
        Not retried: 4xx and bodies that are not JSON.
        """
        attempts = self.max_retries + 1
        last_error: Optional[GatewayError] = None

        for attempt in range(attempts):
            if attempt:
                await asyncio.sleep(self.backoff * (2 ** (attempt - 1)))
            try:
                response = await self._client.request(method, path, **kwargs)
            except httpx.TimeoutException as e:
                last_error = GatewayError(f"BTCPay request timeout: {method} {path}", transient=True)
                logger.warning(f"{last_error.message} (attempt {attempt + 1}/{attempts}): {e!r}")
                continue
            except httpx.TransportError as e:
                last_error = GatewayError(f"BTCPay unreachable: {e}", transient=True)
                logger.warning(f"{last_error.message} (attempt {attempt + 1}/{attempts})")
                continue

            if response.status_code >= 500:
                last_error = GatewayError(
                    f"BTCPay HTTP error {response.status_code}",
                    transient=True,
                    status=response.status_code,
                )
                logger.warning(f"{last_error.message} on {method} {path} (attempt {attempt + 1}/{attempts})")
                continue

            if response.status_code >= 400:
                logger.error(f"BTCPay HTTP error: {response.status_code} {response.text[:500]}")
                raise GatewayError(
                    f"BTCPay HTTP error {response.status_code}",
                    status=response.status_code,
                )

            try:
                return response.json()
            except ValueError:
                raise GatewayError(f"BTCPay returned a non-JSON body for {method} {path}")

        logger.error(f"BTCPay request failed after {attempts} attempts: {method} {path}")
        raise last_error
