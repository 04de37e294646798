"""Billing provider module.

Billing provider interface, normalized payload types and adapters.
"""

from textbehind.providers.billing.base import (
    BillingProvider,
    CheckoutSessionInfo,
    CustomerInfo,
    InvoiceInfo,
    SubscriptionSnapshot,
)
from textbehind.providers.billing.mock_adapter import MockBillingProvider
from textbehind.providers.billing.stripe_adapter import StripeBillingAdapter

__all__ = [
    # Base types
    "BillingProvider",
    "CheckoutSessionInfo",
    "CustomerInfo",
    "InvoiceInfo",
    "SubscriptionSnapshot",
    # Adapters
    "MockBillingProvider",
    "StripeBillingAdapter",
]
