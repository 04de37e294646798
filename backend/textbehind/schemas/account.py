"""UserAccount request/response schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class UserAccountResponse(BaseModel):
    """Persisted account as returned to its owner."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    external_identity_id: str
    email: str | None
    first_name: str | None
    last_name: str | None
    full_name: str | None
    avatar_url: str | None
    billing_customer_id: str | None
    subscription_id: str | None
    subscription_tier: str
    subscription_status: str
    subscription_period_start: datetime | None
    subscription_period_end: datetime | None
    subscription_cancel_at_period_end: bool
    usage_count: int
    preferences: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class AccountSyncResponse(BaseModel):
    success: bool
    user: UserAccountResponse


class AccountResponse(BaseModel):
    """GET /users/me body."""

    user: UserAccountResponse
    plan_name: str
    is_premium: bool


class PreferencesUpdateRequest(BaseModel):
    """Shallow patch merged into the stored preferences."""

    preferences: dict[str, Any] = Field(max_length=100)


class PreferencesResponse(BaseModel):
    success: bool
    preferences: dict[str, Any]
