"""Celery workers: fulfillment and reconciliation."""
