"""Create the users table.

Revision ID: 001_users
Revises:
Create Date: 2026-10-18

One row per external identity: profile mirror, billing mirror and usage
counter. billing_synced_at carries the newest applied billing state so
out-of-order webhook deliveries can be rejected.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_users"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("external_identity_id", sa.String(255), nullable=False),
        # Profile
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("first_name", sa.String(255), nullable=True),
        sa.Column("last_name", sa.String(255), nullable=True),
        sa.Column("full_name", sa.String(511), nullable=True),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        # Billing
        sa.Column("billing_customer_id", sa.String(255), nullable=True),
        sa.Column("subscription_id", sa.String(255), nullable=True),
        sa.Column(
            "subscription_tier",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'free'"),
        ),
        sa.Column(
            "subscription_status",
            sa.String(30),
            nullable=False,
            server_default=sa.text("'inactive'"),
        ),
        sa.Column(
            "subscription_period_start", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column(
            "subscription_period_end", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column(
            "subscription_cancel_at_period_end",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("billing_synced_at", sa.BigInteger(), nullable=True),
        # Usage
        sa.Column(
            "usage_count", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("preferences", sa.JSON(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "subscription_tier IN ('free', 'monthly', 'yearly')",
            name="ck_users_subscription_tier",
        ),
        sa.CheckConstraint("usage_count >= 0", name="ck_users_usage_count"),
    )
    op.create_index(
        "idx_users_external_identity_id",
        "users",
        ["external_identity_id"],
        unique=True,
    )
    # Portal and webhook lookups by customer
    op.create_index("idx_users_billing_customer_id", "users", ["billing_customer_id"])


def downgrade() -> None:
    op.drop_index("idx_users_billing_customer_id", table_name="users")
    op.drop_index("idx_users_external_identity_id", table_name="users")
    op.drop_table("users")
