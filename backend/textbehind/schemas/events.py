"""Inbound webhook event models.

Each provider event type we act on has its own model with a ``Literal``
type tag; everything else parses to an ``Unhandled*`` model. Parsing goes
through a small envelope first so unknown types never fail validation.
"""

from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from textbehind.providers.billing.base import SubscriptionSnapshot
from textbehind.providers.billing.stripe_adapter import (
    IDENTITY_METADATA_KEY,
    subscription_snapshot,
)

T = TypeVar("T")


class _ProviderModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class _EventData(_ProviderModel, Generic[T]):
    object: T


# =============================================================================
# Billing provider (Stripe) objects
# =============================================================================


class CheckoutSessionObject(_ProviderModel):
    """Checkout session fields carried by checkout.session.completed."""

    id: str
    customer: str | None = None
    subscription: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def identity_id(self) -> str | None:
        return self.metadata.get(IDENTITY_METADATA_KEY) or None


class SubscriptionObject(_ProviderModel):
    """Subscription fields carried by customer.subscription.* events.

    Kept as the raw mapping so the adapter's normalization (price id,
    period fallback to the first item) applies to webhooks and API reads
    alike.
    """

    id: str
    status: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    raw: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _keep_raw(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {**data, "raw": data}
        return data

    @property
    def identity_id(self) -> str | None:
        return self.metadata.get(IDENTITY_METADATA_KEY) or None

    def snapshot(self) -> SubscriptionSnapshot:
        return subscription_snapshot(self.raw)


class InvoiceObject(_ProviderModel):
    id: str
    customer: str | None = None
    amount_paid: int | None = None
    status: str | None = None


# =============================================================================
# Billing provider events
# =============================================================================


class _BillingEventEnvelope(_ProviderModel):
    id: str
    type: str
    created: int


class CheckoutSessionCompletedEvent(_BillingEventEnvelope):
    type: Literal["checkout.session.completed"]
    data: _EventData[CheckoutSessionObject]


class SubscriptionCreatedEvent(_BillingEventEnvelope):
    type: Literal["customer.subscription.created"]
    data: _EventData[SubscriptionObject]


class SubscriptionUpdatedEvent(_BillingEventEnvelope):
    type: Literal["customer.subscription.updated"]
    data: _EventData[SubscriptionObject]


class SubscriptionDeletedEvent(_BillingEventEnvelope):
    type: Literal["customer.subscription.deleted"]
    data: _EventData[SubscriptionObject]


class InvoicePaymentSucceededEvent(_BillingEventEnvelope):
    type: Literal["invoice.payment_succeeded"]
    data: _EventData[InvoiceObject]


class InvoicePaymentFailedEvent(_BillingEventEnvelope):
    type: Literal["invoice.payment_failed"]
    data: _EventData[InvoiceObject]


class UnhandledBillingEvent(_BillingEventEnvelope):
    pass


BillingEvent = (
    CheckoutSessionCompletedEvent
    | SubscriptionCreatedEvent
    | SubscriptionUpdatedEvent
    | SubscriptionDeletedEvent
    | InvoicePaymentSucceededEvent
    | InvoicePaymentFailedEvent
    | UnhandledBillingEvent
)

_BILLING_EVENT_MODELS: dict[str, type[_BillingEventEnvelope]] = {
    "checkout.session.completed": CheckoutSessionCompletedEvent,
    "customer.subscription.created": SubscriptionCreatedEvent,
    "customer.subscription.updated": SubscriptionUpdatedEvent,
    "customer.subscription.deleted": SubscriptionDeletedEvent,
    "invoice.payment_succeeded": InvoicePaymentSucceededEvent,
    "invoice.payment_failed": InvoicePaymentFailedEvent,
}


def parse_billing_event(payload: bytes | str) -> BillingEvent:
    """Parse a verified billing webhook body into its tagged event model.

    Raises:
        pydantic.ValidationError: If the envelope or a known event's
            object is malformed.
    """
    envelope = _BillingEventEnvelope.model_validate_json(payload)
    model = _BILLING_EVENT_MODELS.get(envelope.type, UnhandledBillingEvent)
    return model.model_validate_json(payload)  # type: ignore[return-value]


# =============================================================================
# Identity provider (Clerk) events
# =============================================================================


class _IdentityEventEnvelope(_ProviderModel):
    type: str
    data: dict[str, Any] = Field(default_factory=dict)


class UserUpsertedEvent(_IdentityEventEnvelope):
    """user.created or user.updated; data is a full Clerk user object."""

    type: Literal["user.created", "user.updated"]


class UserDeletedEvent(_IdentityEventEnvelope):
    type: Literal["user.deleted"]


class UnhandledIdentityEvent(_IdentityEventEnvelope):
    pass


IdentityEvent = UserUpsertedEvent | UserDeletedEvent | UnhandledIdentityEvent

_IDENTITY_EVENT_MODELS: dict[str, type[_IdentityEventEnvelope]] = {
    "user.created": UserUpsertedEvent,
    "user.updated": UserUpsertedEvent,
    "user.deleted": UserDeletedEvent,
}


def parse_identity_event(body: dict[str, Any]) -> IdentityEvent:
    """Parse a verified identity webhook body into its tagged event model."""
    envelope = _IdentityEventEnvelope.model_validate(body)
    model = _IDENTITY_EVENT_MODELS.get(envelope.type, UnhandledIdentityEvent)
    return model.model_validate(body)  # type: ignore[return-value]
