"""Repository for UserAccount operations.

Every write is field-scoped: profile, billing and usage columns are
updated by separate statements that name only their own columns, so a
reconciler write never clobbers a concurrent usage increment and vice
versa.
"""

from typing import Any, cast

from sqlalchemy import and_, case, or_, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from textbehind.core.config import Settings, settings
from textbehind.models.user import BILLING_COLUMNS, PROFILE_COLUMNS, UserAccount
from textbehind.services.entitlements import PREMIUM_TIERS

_CREATABLE_FIELDS = PROFILE_COLUMNS | BILLING_COLUMNS | {
    "billing_customer_id",
    "billing_synced_at",
    "preferences",
}


class UserRepository:
    """Stateless repository for UserAccount.

    All methods are static; there is no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_identity_id(
        db: AsyncSession,
        identity_id: str,
        *,
        refresh: bool = False,
    ) -> UserAccount | None:
        """Get an account by external identity id.

        Args:
            db: Async database session.
            identity_id: Identity provider user id.
            refresh: Overwrite any instance already in the session with the
                row as stored (needed after Core UPDATE statements).

        Returns:
            UserAccount if found, None otherwise.
        """
        stmt = select(UserAccount).where(
            UserAccount.external_identity_id == identity_id
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        identity_id: str,
        **fields: Any,
    ) -> UserAccount:
        """Create a new account.

        Args:
            db: Async database session.
            identity_id: Identity provider user id.
            **fields: Initial profile/billing column values.

        Returns:
            Created UserAccount with database-generated fields.

        Raises:
            ValueError: If fields contains a non-creatable column.
            IntegrityError: If an account for identity_id already exists.
        """
        invalid = set(fields) - _CREATABLE_FIELDS
        if invalid:
            raise ValueError(f"Cannot set fields on create: {', '.join(sorted(invalid))}")

        fields.setdefault("preferences", {})
        account = UserAccount(external_identity_id=identity_id, **fields)
        db.add(account)
        await db.flush()
        await db.refresh(account)
        return account

    @staticmethod
    async def get_or_create(
        db: AsyncSession,
        *,
        identity_id: str,
        **fields: Any,
    ) -> tuple[UserAccount, bool]:
        """Get an account, creating it with ``fields`` when missing.

        Loses a creation race gracefully: on a unique violation the
        transaction is rolled back and the winner's row is returned.
        Call this before any other write in the same transaction.

        Returns:
            Tuple of (account, created).
        """
        account = await UserRepository.get_by_identity_id(db, identity_id)
        if account is not None:
            return account, False
        try:
            return await UserRepository.create(db, identity_id=identity_id, **fields), True
        except IntegrityError:
            await db.rollback()
            account = await UserRepository.get_by_identity_id(db, identity_id)
            if account is None:
                raise
            return account, False

    @staticmethod
    async def update_profile(
        db: AsyncSession,
        identity_id: str,
        **fields: Any,
    ) -> bool:
        """Overwrite profile columns.

        Returns:
            True if a row was updated, False if no account exists.

        Raises:
            ValueError: If fields contains a non-profile column.
        """
        invalid = set(fields) - PROFILE_COLUMNS
        if invalid:
            raise ValueError(f"Not profile fields: {', '.join(sorted(invalid))}")
        if not fields:
            return False
        result = cast(
            CursorResult[Any],
            await db.execute(
                update(UserAccount)
                .where(UserAccount.external_identity_id == identity_id)
                .values(**fields)
                .execution_options(synchronize_session=False)
            ),
        )
        return result.rowcount == 1

    @staticmethod
    async def set_billing_customer(
        db: AsyncSession,
        identity_id: str,
        customer_id: str,
    ) -> bool:
        """Record the billing customer id. Never cleared once set.

        Returns:
            True if a row was updated, False if no account exists.
        """
        result = cast(
            CursorResult[Any],
            await db.execute(
                update(UserAccount)
                .where(UserAccount.external_identity_id == identity_id)
                .values(billing_customer_id=customer_id)
                .execution_options(synchronize_session=False)
            ),
        )
        return result.rowcount == 1

    @staticmethod
    async def apply_billing_state(
        db: AsyncSession,
        identity_id: str,
        *,
        synced_at: int,
        advance_version: bool = True,
        **values: Any,
    ) -> bool:
        """Write billing columns unless newer billing state is already stored.

        The version check lives in the WHERE clause, so two concurrent
        deliveries cannot both pass it against the same stale value. Equal
        timestamps are applied, which keeps re-delivery idempotent.

        A partial write (status only) passes advance_version=False: it is
        still checked against the stored version but leaves it unchanged,
        so an older full subscription snapshot delivered later is applied.

        Args:
            db: Async database session.
            identity_id: Identity provider user id.
            synced_at: Epoch seconds of the state being applied.
            advance_version: Store synced_at as the new billing version.
            **values: Billing columns to write.

        Returns:
            True if applied, False if the account is missing or holds
            newer billing state.

        Raises:
            ValueError: If values contains a non-billing column.
        """
        invalid = set(values) - BILLING_COLUMNS
        if invalid:
            raise ValueError(f"Not billing fields: {', '.join(sorted(invalid))}")
        if advance_version:
            values["billing_synced_at"] = synced_at

        result = cast(
            CursorResult[Any],
            await db.execute(
                update(UserAccount)
                .where(
                    UserAccount.external_identity_id == identity_id,
                    or_(
                        UserAccount.billing_synced_at.is_(None),
                        UserAccount.billing_synced_at <= synced_at,
                    ),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            ),
        )
        return result.rowcount == 1

    @staticmethod
    async def increment_usage(
        db: AsyncSession,
        identity_id: str,
        config: Settings = settings,
    ) -> int | None:
        """Atomically consume one unit of usage if the account is entitled.

        Single conditional UPDATE: premium accounts always pass, others
        only while usage_count is below their tier limit. Concurrent calls
        are serialized by the row lock, so no increment is lost and the
        limit is never overshot.

        Returns:
            The post-increment usage count, or None when denied (limit
            reached or no account).
        """
        tier = UserAccount.subscription_tier
        premium = and_(
            tier.in_(sorted(PREMIUM_TIERS)),
            UserAccount.subscription_status == "active",
        )
        limit = case(
            (tier == "yearly", config.usage_limit_yearly),
            (tier == "monthly", config.usage_limit_monthly),
            else_=config.usage_limit_free,
        )
        result = await db.execute(
            update(UserAccount)
            .where(
                UserAccount.external_identity_id == identity_id,
                or_(premium, UserAccount.usage_count < limit),
            )
            .values(usage_count=UserAccount.usage_count + 1)
            .returning(UserAccount.usage_count)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def merge_preferences(
        db: AsyncSession,
        account: UserAccount,
        updates: dict[str, Any],
    ) -> dict[str, Any]:
        """Shallow-merge updates into the account's preferences.

        Returns:
            The merged preferences.
        """
        # New dict so the JSON column is flagged dirty
        merged = {**(account.preferences or {}), **updates}
        account.preferences = merged
        await db.flush()
        return merged
