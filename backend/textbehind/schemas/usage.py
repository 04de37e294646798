"""Usage gate request/response schemas.

Field names follow the web client's contract: ``canCreate`` on the POST
check, snake_case everywhere else.
"""

from pydantic import BaseModel, ConfigDict, Field


class UsageInfo(BaseModel):
    """Quota snapshot rendered by the client's usage meter.

    Attributes:
        current_usage: Metered actions consumed.
        limit: Tier limit.
        remaining: max(0, limit - current_usage).
        subscription_tier: free, monthly or yearly.
        is_premium: Paid tier with an active subscription.
    """

    model_config = ConfigDict(extra="forbid")

    current_usage: int
    limit: int
    remaining: int
    subscription_tier: str
    is_premium: bool


class UsageCheckResponse(BaseModel):
    """POST /usage/check body.

    On denial the top level repeats usage, limit and tier next to an
    error message so the paywall can render without reading usage_info.
    """

    model_config = ConfigDict(populate_by_name=True)

    can_create: bool = Field(serialization_alias="canCreate")
    usage_info: UsageInfo
    error: str | None = None
    current_usage: int | None = None
    limit: int | None = None
    subscription_tier: str | None = None


class UsageStatusResponse(BaseModel):
    """GET /usage/check body."""

    usage_info: UsageInfo
    can_create: bool


class UsageIncrementResponse(BaseModel):
    """POST /usage/increment body. remaining is post-increment."""

    success: bool
    usage_count: int
    remaining: int
    limit: int
