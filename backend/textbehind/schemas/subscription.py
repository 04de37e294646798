"""Subscription sync request/response schemas.

Request bodies accept the web client's camelCase keys and snake_case.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from textbehind.schemas.account import UserAccountResponse

_CAMEL_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncSessionRequest(BaseModel):
    """POST /subscriptions/sync-session body."""

    model_config = _CAMEL_CONFIG

    session_id: str = Field(min_length=1, max_length=255)


class ManualSyncRequest(BaseModel):
    """Client-asserted billing state.

    Only honored on server-to-server calls carrying the internal token.
    """

    model_config = _CAMEL_CONFIG

    subscription_id: str = Field(min_length=1, max_length=255)
    customer_id: str = Field(min_length=1, max_length=255)
    status: str = Field(min_length=1, max_length=30)
    plan_type: Literal["monthly", "yearly"]
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False


class SyncResponse(BaseModel):
    success: bool
    message: str
    user: UserAccountResponse


class SubscriptionStatus(BaseModel):
    model_config = _CAMEL_CONFIG

    id: str
    customer_id: str | None
    status: str
    plan_type: str
    current_period_start: datetime | None
    current_period_end: datetime | None


class SubscriptionStatusResponse(BaseModel):
    success: bool
    subscription: SubscriptionStatus
