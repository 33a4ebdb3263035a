"""
Lightning invoice endpoints.
Create, read, cancel, list and aggregate invoices; order lookup.
"""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from lnpay.api.deps import get_invoice_service, verify_admin_key
from lnpay.services.invoice_service import InvoiceService

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateInvoiceRequest(BaseModel):
    """Request body for creating a Lightning invoice."""
    amount: Decimal
    description: Optional[str] = None
    customer_email: Optional[str] = None


@router.post("/lightning/invoice")
async def create_invoice(
    request: CreateInvoiceRequest,
    service: InvoiceService = Depends(get_invoice_service),
):
    """
    Create a Lightning invoice for $20-$100.

    Returns the BOLT11 payment request and the hosted checkout link.
    """
    return await service.create_invoice(
        amount=request.amount,
        description=request.description,
        customer_email=request.customer_email,
    )


@router.get("/lightning/invoice/{invoice_id}")
async def get_invoice(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    """Invoice status, refreshed from the gateway while it is still open."""
    return await service.get_invoice(invoice_id)


@router.delete("/lightning/invoice/{invoice_id}")
async def cancel_invoice(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.cancel_invoice(invoice_id)


@router.get("/lightning/invoices")
async def list_invoices(
    page: int = Query(1),
    limit: int = Query(10),
    status: Optional[str] = Query(None),
    customer_email: Optional[str] = Query(None),
    service: InvoiceService = Depends(get_invoice_service),
    _: str = Depends(verify_admin_key),
):
    """Newest invoices first, with pagination metadata."""
    return await service.list_invoices(
        page=page,
        limit=limit,
        status=status,
        customer_email=customer_email,
    )


@router.get("/lightning/stats")
async def get_stats(
    timeframe: str = Query("day"),
    service: InvoiceService = Depends(get_invoice_service),
    _: str = Depends(verify_admin_key),
):
    """Counts and totals for invoices created in the last day, week or month."""
    return await service.get_stats(timeframe)


@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.get_order(order_id)
