"""
BTCPay Server Webhook Handler.
Verifies signatures and feeds invoice events into the lifecycle manager.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from lnpay.api.deps import get_webhook_service, verify_admin_key
from lnpay.errors import SignatureError
from lnpay.services.webhook_service import WebhookService

router = APIRouter()
logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "BTCPay-Sig"


@router.post("/btcpay")
async def btcpay_webhook(
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
):
    """
    Handle BTCPay webhook events.

    200 acknowledges the delivery (including duplicates and events that
    change nothing). 500 makes BTCPay redeliver, so it is reserved for
    failures a retry can fix.
    """
    # Raw body: the signature covers these exact bytes
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        outcome = await service.handle(body, signature)
    except SignatureError:
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})
    except Exception as e:
        logger.error(f"Error processing BTCPay webhook: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    return {"success": True, "status": outcome.value}


@router.get("/btcpay/deliveries/{delivery_id}")
async def get_delivery(
    delivery_id: str,
    service: WebhookService = Depends(get_webhook_service),
    _: str = Depends(verify_admin_key),
):
    """Processing record of one webhook delivery."""
    return await service.get_delivery(delivery_id)
