"""Stripe billing adapter.

Wraps the stripe SDK's async resource methods and normalizes Stripe
objects into billing dataclasses. The API key is passed per request so
the adapter holds no global SDK state.
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import stripe
import structlog

from textbehind.providers.billing.base import (
    BillingProvider,
    CheckoutSessionInfo,
    CustomerInfo,
    InvoiceInfo,
    SubscriptionSnapshot,
)
from textbehind.providers.errors import (
    AuthenticationError,
    NotConfiguredError,
    ProviderError,
    RateLimitError,
    SignatureVerificationError,
    TransientError,
)

logger = structlog.get_logger()

# Metadata key carrying the external identity id on sessions/subscriptions
IDENTITY_METADATA_KEY = "userId"


def _classify_stripe_error(error: stripe.StripeError) -> ProviderError:
    """Map Stripe exceptions to internal error taxonomy.

    Returns a ProviderError subclass instance (does not raise).
    """
    if isinstance(error, stripe.RateLimitError):
        return RateLimitError(str(error))
    if isinstance(error, stripe.AuthenticationError):
        return AuthenticationError(str(error))
    if isinstance(error, stripe.APIConnectionError | stripe.APIError):
        return TransientError(str(error))
    return ProviderError(str(error))


def _ref_id(value: Any) -> str | None:
    """Id of a Stripe reference that may be a bare id or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id")


def _from_epoch(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=UTC)


def _metadata_identity(obj: Any) -> str | None:
    metadata = obj.get("metadata") or {}
    return metadata.get(IDENTITY_METADATA_KEY) or None


def subscription_snapshot(subscription: Any) -> SubscriptionSnapshot:
    """Normalize a Stripe subscription object.

    Newer API versions moved the billing period onto subscription items,
    so the first item is consulted when the subscription lacks it.
    """
    items = (subscription.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    price = first_item.get("price") or {}

    period_start = subscription.get("current_period_start")
    if period_start is None:
        period_start = first_item.get("current_period_start")
    period_end = subscription.get("current_period_end")
    if period_end is None:
        period_end = first_item.get("current_period_end")

    return SubscriptionSnapshot(
        id=subscription["id"],
        customer_id=_ref_id(subscription.get("customer")),
        status=subscription.get("status") or "inactive",
        price_id=_ref_id(price),
        period_start=_from_epoch(period_start),
        period_end=_from_epoch(period_end),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        identity_id=_metadata_identity(subscription),
    )


def format_invoice(invoice: Any) -> InvoiceInfo:
    """Format a Stripe invoice for display."""
    amount_paid = invoice.get("amount_paid") or 0
    return InvoiceInfo(
        id=invoice["id"],
        date=datetime.fromtimestamp(invoice["created"], tz=UTC),
        amount=f"${amount_paid / 100:.2f}",
        status=invoice.get("status"),
        invoice_number=invoice.get("number") or invoice["id"],
        invoice_url=invoice.get("hosted_invoice_url"),
        description=invoice.get("description") or "Subscription payment",
    )


class StripeBillingAdapter(BillingProvider):
    """Billing provider backed by the Stripe API.

    Args:
        secret_key: Stripe secret API key.
        webhook_secret: Signing secret of the Stripe webhook endpoint.
    """

    def __init__(self, secret_key: str, webhook_secret: str) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret

    async def _call(
        self,
        operation: str,
        method: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        if not self._secret_key:
            raise NotConfiguredError("STRIPE_SECRET_KEY is not configured")
        try:
            return await method(*args, api_key=self._secret_key, **kwargs)
        except stripe.StripeError as e:
            logger.error(
                "billing_request_failed",
                provider="stripe",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise _classify_stripe_error(e) from e

    async def create_checkout_session(
        self,
        *,
        price_id: str,
        identity_id: str,
        customer_email: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionInfo:
        metadata = {IDENTITY_METADATA_KEY: identity_id}
        session = await self._call(
            "create_checkout_session",
            stripe.checkout.Session.create_async,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            customer_email=customer_email,
            metadata=metadata,
            subscription_data={"metadata": metadata},
            allow_promotion_codes=True,
            success_url=success_url,
            cancel_url=cancel_url,
        )
        logger.info(
            "checkout_session_created",
            provider="stripe",
            session_id=session["id"],
            identity_id=identity_id,
        )
        return CheckoutSessionInfo(
            id=session["id"],
            status=session.get("status"),
            url=session.get("url"),
            identity_id=identity_id,
        )

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionInfo:
        session = await self._call(
            "retrieve_checkout_session",
            stripe.checkout.Session.retrieve_async,
            session_id,
            expand=["subscription", "customer"],
        )
        details = session.get("customer_details") or {}
        return CheckoutSessionInfo(
            id=session["id"],
            status=session.get("status"),
            url=session.get("url"),
            customer_id=_ref_id(session.get("customer")),
            subscription_id=_ref_id(session.get("subscription")),
            customer_email=session.get("customer_email") or details.get("email"),
            identity_id=_metadata_identity(session),
        )

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        subscription = await self._call(
            "retrieve_subscription",
            stripe.Subscription.retrieve_async,
            subscription_id,
        )
        return subscription_snapshot(subscription)

    async def get_latest_subscription(
        self, customer_id: str
    ) -> SubscriptionSnapshot | None:
        subscriptions = await self._call(
            "list_subscriptions",
            stripe.Subscription.list_async,
            customer=customer_id,
            status="all",
            limit=1,
        )
        data = subscriptions.get("data") or []
        if not data:
            return None
        return subscription_snapshot(data[0])

    async def find_customer_by_email(self, email: str) -> CustomerInfo | None:
        customers = await self._call(
            "list_customers",
            stripe.Customer.list_async,
            email=email,
            limit=1,
        )
        data = customers.get("data") or []
        if not data:
            return None
        customer = data[0]
        return CustomerInfo(
            id=customer["id"],
            email=customer.get("email"),
            metadata=dict(customer.get("metadata") or {}),
        )

    async def create_portal_session(self, *, customer_id: str, return_url: str) -> str:
        session = await self._call(
            "create_portal_session",
            stripe.billing_portal.Session.create_async,
            customer=customer_id,
            return_url=return_url,
        )
        return session["url"]

    async def list_invoices(self, customer_id: str, limit: int = 50) -> list[InvoiceInfo]:
        invoices = await self._call(
            "list_invoices",
            stripe.Invoice.list_async,
            customer=customer_id,
            limit=limit,
        )
        return [format_invoice(invoice) for invoice in invoices.get("data") or []]

    def verify_webhook(self, payload: bytes, signature: str) -> None:
        if not self._webhook_secret:
            raise NotConfiguredError("STRIPE_WEBHOOK_SECRET is not configured")
        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except (stripe.SignatureVerificationError, ValueError) as e:
            logger.warning(
                "billing_webhook_rejected",
                provider="stripe",
                error_type=type(e).__name__,
            )
            raise SignatureVerificationError(str(e)) from e
