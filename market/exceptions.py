"""
Domain exceptions for the marketplace.

Views translate these into HTTP responses:
- InvalidTransition -> 400
- PaymentProviderError -> 502
- WebhookSignatureError -> 400
"""

from django.core.exceptions import ValidationError


class InvalidTransition(ValidationError):
    """
    Raised when a state machine refuses a status change.

    Subclasses ValidationError so model-level callers can treat an illegal
    transition like any other validation failure.
    """


class PaymentProviderError(Exception):
    """
    Raised when a call to the payment provider (Stripe) fails.

    Attributes:
        message: Human readable description safe to return to clients
        original: The underlying provider exception, if any
    """

    def __init__(self, message, original=None):
        super().__init__(message)
        self.message = message
        self.original = original

    def __str__(self):
        return self.message


class WebhookSignatureError(Exception):
    """Raised when a Stripe webhook payload or signature cannot be verified."""
