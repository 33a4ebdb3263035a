"""
Reconciliation Worker.

Polls the gateway for invoices that are still open, in case their webhook
never arrived, and redispatches fulfillment for paid orders whose dispatch
failed.
"""

import asyncio
import logging

from sqlalchemy.pool import NullPool

from lnpay.database import create_session_maker, get_database_url
from lnpay.services.invoice_service import build_invoice_service
from lnpay.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def reconcile_open_invoices(self, limit: int = 100):
    """
    Celery task run by beat every RECONCILE_INTERVAL_SECONDS.
    """
    try:
        result = asyncio.run(_reconcile(limit))
        logger.info(f"Reconciliation finished: {result}")
        return result
    except Exception as e:
        logger.error(f"Reconciliation failed: {e}", exc_info=True)
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))


async def _reconcile(limit: int) -> dict:
    """Async implementation; a fresh event loop per run, so no pooled connections."""
    db_url = get_database_url()
    if not db_url:
        raise RuntimeError("Database not configured. Set DATABASE_URL environment variable.")

    service = build_invoice_service(
        session_maker=create_session_maker(db_url, poolclass=NullPool),
    )
    try:
        changed = await service.reconcile_open_invoices(limit=limit)
        dispatched = await service.redispatch_fulfillment(limit=limit)
    finally:
        await service.gateway.close()

    return {"changed": changed, "dispatched": dispatched}
