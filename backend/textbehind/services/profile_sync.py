"""Profile sync from the identity provider.

Mirrors email, names and avatar onto the UserAccount, creating the
account on first sight. Only profile columns are written for existing
accounts.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from textbehind.models.user import UserAccount
from textbehind.providers.identity.base import IdentityProfile
from textbehind.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


def _profile_fields(profile: IdentityProfile) -> dict[str, str | None]:
    return {
        "email": profile.email,
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "full_name": profile.full_name,
        "avatar_url": profile.image_url,
    }


async def sync_profile(db: AsyncSession, profile: IdentityProfile) -> UserAccount:
    """Upsert the account for a profile.

    New accounts start on the free tier with no usage and empty
    preferences.

    Args:
        db: Async database session.
        profile: Current identity provider profile.

    Returns:
        The account as stored after the sync.
    """
    fields = _profile_fields(profile)
    account, created = await UserRepository.get_or_create(
        db,
        identity_id=profile.identity_id,
        subscription_tier="free",
        subscription_status="inactive",
        **fields,
    )
    if created:
        logger.info("Created account for %s", profile.identity_id)
        return account

    await UserRepository.update_profile(db, profile.identity_id, **fields)
    refreshed = await UserRepository.get_by_identity_id(
        db, profile.identity_id, refresh=True
    )
    return refreshed or account


async def sync_profile_in_background(
    session_factory: async_sessionmaker[AsyncSession],
    profile: IdentityProfile,
) -> None:
    """Run sync_profile in its own session, logging any failure.

    Dispatched after the identity webhook is acknowledged; the request's
    session is closed by then.
    """
    try:
        async with session_factory() as session:
            await sync_profile(session, profile)
            await session.commit()
    except Exception:
        logger.exception("Background profile sync failed for %s", profile.identity_id)
