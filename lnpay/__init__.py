"""lnpay - Lightning invoice lifecycle and webhook reconciliation service."""

__version__ = "1.0.0"
