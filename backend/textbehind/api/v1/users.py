"""Users API router.

The caller's account mirror: profile sync from the identity provider,
the account with its plan, and UI preferences.
"""

import logging

from fastapi import APIRouter

from textbehind.api.deps import CurrentAccount, CurrentIdentityId, DbSession, Identity
from textbehind.core.errors import APIError, NotFoundError
from textbehind.providers.errors import ProviderError
from textbehind.repositories.user_repository import UserRepository
from textbehind.schemas.account import (
    AccountResponse,
    AccountSyncResponse,
    PreferencesResponse,
    PreferencesUpdateRequest,
    UserAccountResponse,
)
from textbehind.services.entitlements import is_premium, plan_display_name
from textbehind.services.profile_sync import sync_profile

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/sync")
async def sync_user(
    identity_id: CurrentIdentityId,
    db: DbSession,
    identity: Identity,
) -> AccountSyncResponse:
    """Upsert the caller's account from their identity provider profile.

    Raises:
        APIError: 502 if the identity provider cannot be reached.
    """
    try:
        profile = await identity.get_user(identity_id)
    except ProviderError as e:
        logger.warning("Profile lookup failed for %s: %s", identity_id, e)
        raise APIError(
            code="IDENTITY_PROVIDER_ERROR",
            message="Failed to load user profile",
            status_code=502,
        ) from e

    account = await sync_profile(db, profile)
    return AccountSyncResponse(
        success=True, user=UserAccountResponse.model_validate(account)
    )


@router.get("/me")
async def get_me(account: CurrentAccount) -> AccountResponse:
    tier = account.subscription_tier
    premium = is_premium(tier, account.subscription_status)
    return AccountResponse(
        user=UserAccountResponse.model_validate(account),
        plan_name=plan_display_name(tier),
        is_premium=premium,
    )


@router.patch("/me/preferences")
async def update_preferences(
    body: PreferencesUpdateRequest,
    identity_id: CurrentIdentityId,
    db: DbSession,
) -> PreferencesResponse:
    """Shallow-merge the given keys into the caller's preferences."""
    account = await UserRepository.get_by_identity_id(db, identity_id)
    if account is None:
        raise NotFoundError("User profile")
    merged = await UserRepository.merge_preferences(db, account, body.preferences)
    return PreferencesResponse(success=True, preferences=merged)
