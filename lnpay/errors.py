"""
Domain exceptions.

Services raise these; the HTTP layer maps them to status codes in
`lnpay.main`, and the webhook endpoint maps them to the gateway's
redelivery contract.
"""

from typing import Optional


class LnPayError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(LnPayError):
    """Bad input, e.g. amount outside the accepted range."""

    status_code = 400


class AuthError(LnPayError):
    """Missing or wrong admin credentials."""

    status_code = 401


class NotFoundError(LnPayError):
    status_code = 404


class InvalidStateError(LnPayError):
    """An explicitly requested transition is illegal for the current status."""

    status_code = 409


class GatewayError(LnPayError):
    """
    Upstream payment gateway failure.

    `transient` is True for failures worth retrying (transport errors,
    timeouts, 5xx). Client errors and malformed bodies are not.
    """

    status_code = 502

    def __init__(self, message: str = "", transient: bool = False, status: Optional[int] = None):
        super().__init__(message)
        self.transient = transient
        self.status = status


class SignatureError(LnPayError):
    """Webhook signature did not verify. Never retried."""

    status_code = 401


class DuplicateOrderError(LnPayError):
    """order_id collided with an existing order on insert."""

    status_code = 500


class InternalError(LnPayError):
    status_code = 500
