"""External integrations: payment provider and e-mail."""
from .notifier import EmailNotifier, NotificationError
from .stripe_client import (
    CheckoutSession,
    PaymentLineItem,
    StripeClient,
    StripeError,
    StripeErrorType,
)

__all__ = [
    "CheckoutSession",
    "EmailNotifier",
    "NotificationError",
    "PaymentLineItem",
    "StripeClient",
    "StripeError",
    "StripeErrorType",
]
