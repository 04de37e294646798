"""UserAccount model - one row per end-user.

Mirrors identity (profile), billing (subscription) and usage state for
a single external identity. Columns are grouped by the component that
owns them; writers only touch their own group.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from textbehind.models.base import Base, TimestampMixin

SUBSCRIPTION_TIERS = ("free", "monthly", "yearly")

# Columns grouped by owning component (field-scoped writes)
PROFILE_COLUMNS = frozenset(
    {"email", "first_name", "last_name", "full_name", "avatar_url"}
)
BILLING_COLUMNS = frozenset(
    {
        "subscription_id",
        "subscription_tier",
        "subscription_status",
        "subscription_period_start",
        "subscription_period_end",
        "subscription_cancel_at_period_end",
    }
)


class UserAccount(Base, TimestampMixin):
    """Persisted mirror of one identity's profile, billing and usage state.

    Attributes:
        id: UUID primary key.
        external_identity_id: Stable id issued by the identity provider.
            Unique; the join key for every authenticated request and webhook.
        email: Primary email, mirrored from the identity provider.
        first_name: Given name, mirrored from the identity provider.
        last_name: Family name, mirrored from the identity provider.
        full_name: First and last name joined, or NULL when both are empty.
        avatar_url: Profile image URL from the identity provider.
        billing_customer_id: Billing provider customer id. Never cleared.
        subscription_id: Active or most recent subscription id. NULL after
            deletion.
        subscription_tier: free, monthly or yearly. Derived from the price id.
        subscription_status: Provider status verbatim (active, canceled,
            past_due, trialing, unpaid, ...) or inactive.
        subscription_period_start: Current billing period start.
        subscription_period_end: Current billing period end.
        subscription_cancel_at_period_end: Mirrored provider flag.
        billing_synced_at: Epoch seconds of the newest billing state applied.
            Webhook events older than this are rejected.
        usage_count: Metered actions consumed. Only the usage gate writes it.
        preferences: Opaque key-value bag.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "subscription_tier IN ('free', 'monthly', 'yearly')",
            name="ck_users_subscription_tier",
        ),
        CheckConstraint("usage_count >= 0", name="ck_users_usage_count"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    external_identity_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )

    # Profile (identity provider is the source of truth)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(511), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text(), nullable=True)

    # Billing (subscription reconciler)
    billing_customer_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    subscription_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    subscription_tier: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="free",
        server_default=text("'free'"),
    )
    subscription_status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="inactive",
        server_default=text("'inactive'"),
    )
    subscription_period_start: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    subscription_period_end: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    subscription_cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    billing_synced_at: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )

    # Usage (usage gate)
    usage_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )

    preferences: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

