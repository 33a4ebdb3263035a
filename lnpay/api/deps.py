from functools import lru_cache
from typing import Optional

from fastapi import Header

from lnpay.config import settings
from lnpay.errors import AuthError
from lnpay.services.invoice_service import InvoiceService, build_invoice_service
from lnpay.services.webhook_service import WebhookService


@lru_cache
def get_invoice_service() -> InvoiceService:
    """Process-wide lifecycle manager. Its store holds the per-invoice locks."""
    return build_invoice_service()


@lru_cache
def get_webhook_service() -> WebhookService:
    return WebhookService(get_invoice_service())


async def verify_admin_key(
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
) -> str:
    """
    Validate the Admin Key header.
    Returns the key if valid, raises AuthError otherwise.
    """
    if not x_admin_key:
        raise AuthError("Missing admin key")

    if not settings.admin_api_key or x_admin_key != settings.admin_api_key:
        raise AuthError("Invalid admin key")

    return x_admin_key
