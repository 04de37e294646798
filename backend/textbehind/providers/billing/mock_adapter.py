"""Mock billing provider for testing.

Serves checkout sessions, subscriptions, customers and invoices from
in-memory dicts. Failures are injected by setting ``fail_with``.
"""

from typing import Any

from textbehind.providers.billing.base import (
    BillingProvider,
    CheckoutSessionInfo,
    CustomerInfo,
    InvoiceInfo,
    SubscriptionSnapshot,
)
from textbehind.providers.errors import ProviderError, SignatureVerificationError

MOCK_VALID_SIGNATURE = "mock-valid-signature"


class MockBillingProvider(BillingProvider):
    """Mock provider for billing tests.

    Attributes:
        sessions: Checkout sessions by id.
        subscriptions: Subscriptions by id.
        customers: Customers by email.
        invoices: Invoices by customer id.
        created_sessions: Keyword arguments of every created checkout session.
        fail_with: When set, every API method raises this error.
        calls: Record of all method invocations for test assertions.
    """

    def __init__(self) -> None:
        self.sessions: dict[str, CheckoutSessionInfo] = {}
        self.subscriptions: dict[str, SubscriptionSnapshot] = {}
        self.customers: dict[str, CustomerInfo] = {}
        self.invoices: dict[str, list[InvoiceInfo]] = {}
        self.created_sessions: list[dict[str, Any]] = []
        self.fail_with: ProviderError | None = None
        self.calls: list[dict[str, Any]] = []

    def _record(self, method: str, **kwargs: Any) -> None:
        self.calls.append({"method": method, **kwargs})
        if self.fail_with is not None:
            raise self.fail_with

    async def create_checkout_session(
        self,
        *,
        price_id: str,
        identity_id: str,
        customer_email: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionInfo:
        kwargs = {
            "price_id": price_id,
            "identity_id": identity_id,
            "customer_email": customer_email,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        self._record("create_checkout_session", **kwargs)
        self.created_sessions.append(kwargs)
        session_id = f"cs_mock_{len(self.created_sessions)}"
        session = CheckoutSessionInfo(
            id=session_id,
            status="open",
            url=f"https://checkout.mock/{session_id}",
            customer_email=customer_email,
            identity_id=identity_id,
        )
        self.sessions[session_id] = session
        return session

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionInfo:
        self._record("retrieve_checkout_session", session_id=session_id)
        if session_id not in self.sessions:
            raise ProviderError(f"No such checkout.session: '{session_id}'")
        return self.sessions[session_id]

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        self._record("retrieve_subscription", subscription_id=subscription_id)
        if subscription_id not in self.subscriptions:
            raise ProviderError(f"No such subscription: '{subscription_id}'")
        return self.subscriptions[subscription_id]

    async def get_latest_subscription(
        self, customer_id: str
    ) -> SubscriptionSnapshot | None:
        self._record("get_latest_subscription", customer_id=customer_id)
        owned = [s for s in self.subscriptions.values() if s.customer_id == customer_id]
        return owned[-1] if owned else None

    async def find_customer_by_email(self, email: str) -> CustomerInfo | None:
        self._record("find_customer_by_email", email=email)
        return self.customers.get(email)

    async def create_portal_session(self, *, customer_id: str, return_url: str) -> str:
        self._record(
            "create_portal_session", customer_id=customer_id, return_url=return_url
        )
        return f"https://billing.mock/portal/{customer_id}"

    async def list_invoices(self, customer_id: str, limit: int = 50) -> list[InvoiceInfo]:
        self._record("list_invoices", customer_id=customer_id, limit=limit)
        return self.invoices.get(customer_id, [])[:limit]

    def verify_webhook(self, payload: bytes, signature: str) -> None:
        if signature != MOCK_VALID_SIGNATURE:
            raise SignatureVerificationError("Mock signature mismatch")
