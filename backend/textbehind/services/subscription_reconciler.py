"""Subscription reconciler.

Keeps UserAccount billing columns an eventually-consistent mirror of the
billing provider, whichever channel delivers an update first: webhook
push, pull sync, or checkout-session sync. Every path is a full-field
write of the billing columns keyed by external identity id.

Staleness: webhook writes carry the event's ``created`` time and are
dropped when the account already holds newer billing state. Pull syncs
read current provider state and stamp the current time.
"""

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from textbehind.core.errors import (
    BillingSyncError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from textbehind.models.user import UserAccount
from textbehind.providers.billing.base import BillingProvider, SubscriptionSnapshot
from textbehind.providers.errors import ProviderError
from textbehind.providers.identity.base import IdentityProfile, IdentityProvider
from textbehind.repositories.user_repository import UserRepository
from textbehind.schemas.events import (
    BillingEvent,
    CheckoutSessionCompletedEvent,
    InvoicePaymentFailedEvent,
    InvoicePaymentSucceededEvent,
    SubscriptionCreatedEvent,
    SubscriptionDeletedEvent,
    SubscriptionUpdatedEvent,
)
from textbehind.schemas.subscription import ManualSyncRequest
from textbehind.services.entitlements import derive_tier

logger = logging.getLogger(__name__)

_CLEARED_SUBSCRIPTION: dict[str, Any] = {
    "subscription_tier": "free",
    "subscription_status": "canceled",
    "subscription_id": None,
    "subscription_period_start": None,
    "subscription_period_end": None,
    "subscription_cancel_at_period_end": False,
}


@dataclass
class SyncResult:
    account: UserAccount
    message: str


def subscription_values(snapshot: SubscriptionSnapshot) -> dict[str, Any]:
    """Billing column values for a subscription snapshot."""
    return {
        "subscription_id": snapshot.id,
        "subscription_status": snapshot.status,
        "subscription_tier": derive_tier(snapshot.price_id),
        "subscription_period_start": snapshot.period_start,
        "subscription_period_end": snapshot.period_end,
        "subscription_cancel_at_period_end": snapshot.cancel_at_period_end,
    }


def _now() -> int:
    return int(time.time())


class SubscriptionReconciler:
    """Applies billing provider state to UserAccount billing columns.

    Args:
        db: Async database session. The caller owns the transaction.
        billing: Billing provider for pull syncs.
        identity: Identity provider, used to populate the profile of
            accounts created during checkout-session sync.
    """

    def __init__(
        self,
        db: AsyncSession,
        billing: BillingProvider,
        identity: IdentityProvider | None = None,
    ) -> None:
        self._db = db
        self._billing = billing
        self._identity = identity

    # -------------------------------------------------------------------------
    # Webhook events
    # -------------------------------------------------------------------------

    async def handle_event(self, event: BillingEvent) -> bool:
        """Reconcile one verified billing event.

        Returns:
            True if billing columns were written, False if the event was
            acknowledged without a write (unmapped type, missing identity
            metadata, or stale).
        """
        if isinstance(event, CheckoutSessionCompletedEvent):
            session = event.data.object
            if session.identity_id is None:
                logger.warning(
                    "Skipping %s %s: no identity id in metadata", event.type, event.id
                )
                return False
            if session.customer is None:
                logger.warning(
                    "Skipping %s %s: session has no customer", event.type, event.id
                )
                return False
            return await self.apply_checkout_completed(
                session.identity_id, session.customer, synced_at=event.created
            )

        if isinstance(event, SubscriptionCreatedEvent | SubscriptionUpdatedEvent):
            subscription = event.data.object
            if subscription.identity_id is None:
                logger.warning(
                    "Skipping %s %s: no identity id in metadata", event.type, event.id
                )
                return False
            return await self.apply_subscription(
                subscription.identity_id,
                subscription.snapshot(),
                synced_at=event.created,
                create_missing=isinstance(event, SubscriptionCreatedEvent),
            )

        if isinstance(event, SubscriptionDeletedEvent):
            subscription = event.data.object
            if subscription.identity_id is None:
                logger.warning(
                    "Skipping %s %s: no identity id in metadata", event.type, event.id
                )
                return False
            return await self.apply_subscription_deleted(
                subscription.identity_id,
                subscription.id,
                synced_at=event.created,
            )

        if isinstance(event, InvoicePaymentSucceededEvent | InvoicePaymentFailedEvent):
            invoice = event.data.object
            logger.info(
                "Invoice event %s for invoice %s (customer %s)",
                event.type,
                invoice.id,
                invoice.customer,
            )
            return False

        logger.info("Unhandled billing event type: %s", event.type)
        return False

    async def apply_checkout_completed(
        self,
        identity_id: str,
        customer_id: str,
        *,
        synced_at: int,
    ) -> bool:
        """Record the customer and mark the subscription provisionally active.

        The tier arrives with a subscription event, which Stripe may deliver
        after this one even though it was created earlier. This partial
        write therefore never advances the billing version; an account
        created here starts on ``monthly`` with no version.
        """
        _, created = await UserRepository.get_or_create(
            self._db,
            identity_id=identity_id,
            billing_customer_id=customer_id,
            subscription_tier="monthly",
            subscription_status="active",
        )
        if created:
            logger.info("Created account %s from completed checkout", identity_id)
            return True

        await UserRepository.set_billing_customer(self._db, identity_id, customer_id)
        return await self._apply(
            identity_id, synced_at, advance_version=False, subscription_status="active"
        )

    async def apply_subscription(
        self,
        identity_id: str,
        snapshot: SubscriptionSnapshot,
        *,
        synced_at: int,
        create_missing: bool = False,
    ) -> bool:
        """Write all billing columns from a subscription snapshot.

        Args:
            identity_id: Account to update.
            snapshot: Authoritative subscription state.
            synced_at: Epoch seconds the snapshot reflects.
            create_missing: Create the account if it does not exist yet.
        """
        values = subscription_values(snapshot)
        if create_missing:
            _, created = await UserRepository.get_or_create(
                self._db,
                identity_id=identity_id,
                billing_customer_id=snapshot.customer_id,
                billing_synced_at=synced_at,
                **values,
            )
            if created:
                logger.info(
                    "Created account %s from subscription %s", identity_id, snapshot.id
                )
                return True

        if snapshot.customer_id:
            await UserRepository.set_billing_customer(
                self._db, identity_id, snapshot.customer_id
            )
        return await self._apply(identity_id, synced_at, **values)

    async def apply_subscription_deleted(
        self,
        identity_id: str,
        subscription_id: str,
        *,
        synced_at: int,
    ) -> bool:
        """Drop the account back to the free tier.

        The customer id is kept. A deletion for a subscription other than
        the one on record (e.g. the old one after a plan switch) is ignored.
        """
        account = await UserRepository.get_by_identity_id(self._db, identity_id)
        if account is None:
            logger.warning("Subscription deleted for unknown account %s", identity_id)
            return False
        if account.subscription_id not in (None, subscription_id):
            logger.info(
                "Ignoring deletion of %s for %s: current subscription is %s",
                subscription_id,
                identity_id,
                account.subscription_id,
            )
            return False
        return await self._apply(identity_id, synced_at, **_CLEARED_SUBSCRIPTION)

    async def _apply(
        self,
        identity_id: str,
        synced_at: int,
        *,
        advance_version: bool = True,
        **values: Any,
    ) -> bool:
        applied = await UserRepository.apply_billing_state(
            self._db,
            identity_id,
            synced_at=synced_at,
            advance_version=advance_version,
            **values,
        )
        if not applied:
            logger.info(
                "Billing update for %s not applied (missing account or newer "
                "state already stored, synced_at=%d)",
                identity_id,
                synced_at,
            )
        return applied

    # -------------------------------------------------------------------------
    # Client-triggered syncs
    # -------------------------------------------------------------------------

    async def _reload(self, identity_id: str) -> UserAccount:
        account = await UserRepository.get_by_identity_id(
            self._db, identity_id, refresh=True
        )
        if account is None:
            raise NotFoundError("User profile")
        return account

    async def pull_sync(self, identity_id: str) -> SyncResult:
        """Re-read the caller's latest subscription from the billing provider.

        Provider failures degrade to the persisted record.

        Raises:
            NotFoundError: If the identity has no account.
        """
        account = await self._reload(identity_id)
        if not account.billing_customer_id:
            return SyncResult(account, "No billing customer on record")

        try:
            snapshot = await self._billing.get_latest_subscription(
                account.billing_customer_id
            )
        except ProviderError:
            logger.warning(
                "Pull sync for %s failed; returning persisted state",
                identity_id,
                exc_info=True,
            )
            return SyncResult(account, "Returned last known subscription state")

        if snapshot is None:
            return SyncResult(account, "No subscription found")

        await self.apply_subscription(identity_id, snapshot, synced_at=_now())
        return SyncResult(
            await self._reload(identity_id), "Subscription synced successfully"
        )

    async def sync_checkout_session(
        self, identity_id: str, session_id: str
    ) -> SyncResult:
        """Reconcile from a completed checkout session.

        Raises:
            ValidationError: If the session is not complete or has no customer.
            ForbiddenError: If the session belongs to another identity.
            BillingSyncError: If the billing provider call fails.
        """
        try:
            session = await self._billing.retrieve_checkout_session(session_id)
        except ProviderError as e:
            raise BillingSyncError("Failed to sync session", str(e)) from e

        if session.status != "complete":
            raise ValidationError(
                "Session not completed", details=[{"status": session.status}]
            )
        if not session.customer_id:
            raise ValidationError("No customer ID found")
        if session.identity_id is not None and session.identity_id != identity_id:
            raise ForbiddenError("Checkout session belongs to another user")

        synced_at = _now()
        profile = await self._current_profile(identity_id)
        _, created = await UserRepository.get_or_create(
            self._db,
            identity_id=identity_id,
            email=profile.email,
            first_name=profile.first_name,
            last_name=profile.last_name,
            full_name=profile.full_name,
            avatar_url=profile.image_url,
            billing_customer_id=session.customer_id,
            subscription_tier="monthly",
            subscription_status="active",
        )
        if not created:
            await UserRepository.set_billing_customer(
                self._db, identity_id, session.customer_id
            )
            await self._apply(
                identity_id,
                synced_at,
                advance_version=False,
                subscription_status="active",
            )

        if not session.subscription_id:
            return SyncResult(
                await self._reload(identity_id), "Session synced successfully"
            )

        try:
            snapshot = await self._billing.retrieve_subscription(session.subscription_id)
        except ProviderError as e:
            raise BillingSyncError("Failed to sync subscription", str(e)) from e

        await self.apply_subscription(identity_id, snapshot, synced_at=synced_at)
        return SyncResult(
            await self._reload(identity_id),
            "Session and subscription synced successfully",
        )

    async def _current_profile(self, identity_id: str) -> IdentityProfile:
        if self._identity is None:
            return IdentityProfile(identity_id=identity_id)
        try:
            return await self._identity.get_user(identity_id)
        except ProviderError:
            # Profile columns are a mirror; the next profile sync fills them.
            logger.warning(
                "Profile lookup for %s failed during session sync",
                identity_id,
                exc_info=True,
            )
            return IdentityProfile(identity_id=identity_id)

    async def manual_sync(self, identity_id: str, body: ManualSyncRequest) -> SyncResult:
        """Apply caller-asserted billing state.

        Only reachable from server-to-server calls; the boundary verifies
        the internal token before calling this.

        Raises:
            NotFoundError: If the identity has no account.
        """
        await self._reload(identity_id)
        await UserRepository.set_billing_customer(
            self._db, identity_id, body.customer_id
        )
        await self._apply(
            identity_id,
            _now(),
            subscription_id=body.subscription_id,
            subscription_status=body.status,
            subscription_tier=body.plan_type,
            subscription_period_start=_as_aware(body.current_period_start),
            subscription_period_end=_as_aware(body.current_period_end),
            subscription_cancel_at_period_end=body.cancel_at_period_end,
        )
        logger.info("Manual subscription sync applied for %s", identity_id)
        return SyncResult(await self._reload(identity_id), "Subscription synced successfully")


def _as_aware(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)
