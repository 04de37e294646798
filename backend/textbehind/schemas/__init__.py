"""Pydantic request/response schemas for API endpoints."""

from textbehind.schemas.account import (
    AccountResponse,
    AccountSyncResponse,
    PreferencesResponse,
    PreferencesUpdateRequest,
    UserAccountResponse,
)
from textbehind.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    InvoiceListResponse,
    InvoiceResponse,
    PlanResponse,
    PlansResponse,
    PortalResponse,
)
from textbehind.schemas.subscription import (
    ManualSyncRequest,
    SubscriptionStatus,
    SubscriptionStatusResponse,
    SyncResponse,
    SyncSessionRequest,
)
from textbehind.schemas.usage import (
    UsageCheckResponse,
    UsageIncrementResponse,
    UsageInfo,
    UsageStatusResponse,
)
from textbehind.schemas.webhooks import BillingWebhookAck, IdentityWebhookAck

__all__ = [
    # Account
    "AccountResponse",
    "AccountSyncResponse",
    "PreferencesResponse",
    "PreferencesUpdateRequest",
    "UserAccountResponse",
    # Billing
    "CheckoutRequest",
    "CheckoutResponse",
    "InvoiceListResponse",
    "InvoiceResponse",
    "PlanResponse",
    "PlansResponse",
    "PortalResponse",
    # Subscription
    "ManualSyncRequest",
    "SubscriptionStatus",
    "SubscriptionStatusResponse",
    "SyncResponse",
    "SyncSessionRequest",
    # Usage
    "UsageCheckResponse",
    "UsageIncrementResponse",
    "UsageInfo",
    "UsageStatusResponse",
    # Webhooks
    "BillingWebhookAck",
    "IdentityWebhookAck",
]
