"""
Celery application configuration.
"""

from celery import Celery
from celery.signals import setup_logging

from lnpay.config import settings
from lnpay.logging_config import configure_logging

celery_app = Celery(
    "lnpay",
    broker=settings.redis_url,
    include=[
        "lnpay.workers.fulfillment",
        "lnpay.workers.reconcile",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_ignore_result=True,
    task_time_limit=120,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)

# Safety net for lost webhooks and failed fulfillment dispatches
celery_app.conf.beat_schedule = {
    "reconcile-open-invoices": {
        "task": "lnpay.workers.reconcile.reconcile_open_invoices",
        "schedule": float(settings.reconcile_interval_seconds),
    },
}


@setup_logging.connect
def configure_worker_logging(**kwargs):
    configure_logging()
