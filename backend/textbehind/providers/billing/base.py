"""Abstract base class and types for billing providers.

Billing providers own customers, subscriptions, checkout sessions and
invoices. Adapters normalize provider payloads into the dataclasses below
so nothing downstream touches loosely-typed provider objects.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class CheckoutSessionInfo:
    """A checkout session as seen by the reconciler.

    Attributes:
        id: Provider session id.
        status: Session status (open, complete, expired).
        url: Hosted checkout URL (only for newly created sessions).
        customer_id: Customer created or reused by the session.
        subscription_id: Subscription created by the session, if any.
        customer_email: Email captured at checkout.
        identity_id: External identity id from session metadata.
    """

    id: str
    status: str | None = None
    url: str | None = None
    customer_id: str | None = None
    subscription_id: str | None = None
    customer_email: str | None = None
    identity_id: str | None = None


@dataclass
class SubscriptionSnapshot:
    """Authoritative subscription state at one point in time.

    Attributes:
        id: Provider subscription id.
        customer_id: Owning customer id.
        status: Provider status verbatim.
        price_id: Price id of the first line item.
        period_start: Current billing period start (UTC).
        period_end: Current billing period end (UTC).
        cancel_at_period_end: Whether the subscription ends at period end.
        identity_id: External identity id from subscription metadata.
    """

    id: str
    customer_id: str | None
    status: str
    price_id: str | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
    cancel_at_period_end: bool = False
    identity_id: str | None = None


@dataclass
class InvoiceInfo:
    """Invoice formatted for display.

    Attributes:
        id: Provider invoice id.
        date: Invoice creation time (UTC).
        amount: Amount paid, formatted as ``$x.xx``.
        status: Invoice status.
        invoice_number: Invoice number, or the id when unnumbered.
        invoice_url: Hosted invoice page.
        description: Invoice description.
    """

    id: str
    date: datetime
    amount: str
    status: str | None
    invoice_number: str
    invoice_url: str | None = None
    description: str = "Subscription payment"


@dataclass
class CustomerInfo:
    id: str
    email: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


class BillingProvider(ABC):
    """Abstract base class for billing providers."""

    @abstractmethod
    async def create_checkout_session(
        self,
        *,
        price_id: str,
        identity_id: str,
        customer_email: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionInfo:
        """Create a hosted subscription checkout session.

        The identity id is stored in both session and subscription metadata
        so every later webhook can be mapped back to a UserAccount.

        Raises:
            ProviderError: On API failure.
        """
        ...

    @abstractmethod
    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionInfo:
        """Fetch a checkout session by id.

        Raises:
            ProviderError: On API failure or unknown session.
        """
        ...

    @abstractmethod
    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        """Fetch a subscription by id.

        Raises:
            ProviderError: On API failure or unknown subscription.
        """
        ...

    @abstractmethod
    async def get_latest_subscription(
        self, customer_id: str
    ) -> SubscriptionSnapshot | None:
        """Most recent subscription of a customer, in any status.

        Returns:
            The newest subscription, or None when the customer has none.

        Raises:
            ProviderError: On API failure.
        """
        ...

    @abstractmethod
    async def find_customer_by_email(self, email: str) -> CustomerInfo | None:
        """Look up a customer by email. First match wins."""
        ...

    @abstractmethod
    async def create_portal_session(self, *, customer_id: str, return_url: str) -> str:
        """Create a billing-portal session and return its URL."""
        ...

    @abstractmethod
    async def list_invoices(self, customer_id: str, limit: int = 50) -> list[InvoiceInfo]:
        """List a customer's invoices, newest first."""
        ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, signature: str) -> None:
        """Verify an inbound webhook signature.

        Raises:
            SignatureVerificationError: If the signature or payload is invalid.
            NotConfiguredError: If no webhook secret is configured.
        """
        ...
