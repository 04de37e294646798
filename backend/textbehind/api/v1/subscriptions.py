"""Subscriptions API router.

Client-triggered reconciliation against the billing provider and the
persisted subscription status.
"""

import hmac
import logging
from typing import Annotated

from fastapi import APIRouter, Body, Header

from textbehind.api.deps import (
    Billing,
    CurrentAccount,
    CurrentIdentityId,
    DbSession,
    Identity,
)
from textbehind.core.config import settings
from textbehind.core.errors import ForbiddenError, NotFoundError
from textbehind.schemas.account import UserAccountResponse
from textbehind.schemas.subscription import (
    ManualSyncRequest,
    SubscriptionStatus,
    SubscriptionStatusResponse,
    SyncResponse,
    SyncSessionRequest,
)
from textbehind.services.subscription_reconciler import SubscriptionReconciler, SyncResult

logger = logging.getLogger(__name__)

router = APIRouter()


def _sync_response(result: SyncResult) -> SyncResponse:
    return SyncResponse(
        success=True,
        message=result.message,
        user=UserAccountResponse.model_validate(result.account),
    )


def _internal_token_valid(token: str | None) -> bool:
    expected = settings.internal_api_token.get_secret_value()
    if not expected or not token:
        return False
    return hmac.compare_digest(token, expected)


# =============================================================================
# POST /sync
# =============================================================================


@router.post("/sync")
async def sync_subscription(
    identity_id: CurrentIdentityId,
    db: DbSession,
    billing: Billing,
    body: Annotated[ManualSyncRequest | None, Body()] = None,
    x_internal_token: Annotated[str | None, Header()] = None,
) -> SyncResponse:
    """Re-read the caller's subscription from the billing provider.

    Without a body this is a pull sync that degrades to the persisted
    record when the provider is unavailable. A body asserting billing
    state is only accepted from server-to-server callers presenting the
    internal token.
    """
    reconciler = SubscriptionReconciler(db, billing)
    if body is None:
        return _sync_response(await reconciler.pull_sync(identity_id))

    if not _internal_token_valid(x_internal_token):
        logger.warning("Rejected client-asserted subscription sync for %s", identity_id)
        raise ForbiddenError(
            "Subscription state can only be synced from the billing provider"
        )
    return _sync_response(await reconciler.manual_sync(identity_id, body))


# =============================================================================
# POST /sync-session
# =============================================================================


@router.post("/sync-session")
async def sync_checkout_session(
    body: SyncSessionRequest,
    identity_id: CurrentIdentityId,
    db: DbSession,
    billing: Billing,
    identity: Identity,
) -> SyncResponse:
    """Reconcile the caller's account from a completed checkout session."""
    reconciler = SubscriptionReconciler(db, billing, identity)
    return _sync_response(
        await reconciler.sync_checkout_session(identity_id, body.session_id)
    )


# =============================================================================
# GET /status
# =============================================================================


@router.get("/status")
async def get_subscription_status(account: CurrentAccount) -> SubscriptionStatusResponse:
    """Return the persisted subscription of the caller."""
    if not account.subscription_id:
        raise NotFoundError("Subscription")
    return SubscriptionStatusResponse(
        success=True,
        subscription=SubscriptionStatus(
            id=account.subscription_id,
            customer_id=account.billing_customer_id,
            status=account.subscription_status,
            plan_type=account.subscription_tier,
            current_period_start=account.subscription_period_start,
            current_period_end=account.subscription_period_end,
        ),
    )
