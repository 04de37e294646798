"""Shared dependencies for API endpoints.

Authentication resolves the caller to an external identity id by
verifying the identity provider's session token. Providers are injected
through dependencies so tests can override them.
"""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from textbehind.core.config import settings
from textbehind.core.database import get_db, get_session_factory
from textbehind.core.errors import NotFoundError
from textbehind.core.rate_limiting import session_token_from_request
from textbehind.core.request_security import validate_request_security
from textbehind.models import UserAccount
from textbehind.providers.billing.base import BillingProvider
from textbehind.providers.errors import InvalidTokenError, NotConfiguredError
from textbehind.providers.factory import get_billing_provider, get_identity_provider
from textbehind.providers.identity.base import IdentityProvider
from textbehind.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

# Same 401 detail for every authentication failure
_UNAUTHORIZED_DETAIL = {
    "code": "UNAUTHORIZED",
    "message": "Authentication required",
}


def get_identity() -> IdentityProvider:
    """Identity provider dependency (overridable in tests)."""
    return get_identity_provider()


def get_billing() -> BillingProvider:
    """Billing provider dependency (overridable in tests)."""
    return get_billing_provider()


Identity = Annotated[IdentityProvider, Depends(get_identity)]
Billing = Annotated[BillingProvider, Depends(get_billing)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
SessionFactory = Annotated[
    async_sessionmaker[AsyncSession], Depends(get_session_factory)
]


def get_current_identity_id(request: Request, identity: Identity) -> str:
    """Get the caller's external identity id from the session token.

    Args:
        request: HTTP request (injected by FastAPI).
        identity: Identity provider (injected).

    Returns:
        Identity provider user id of the caller.

    Raises:
        HTTPException: 401 for any auth failure.
    """
    token = session_token_from_request(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_UNAUTHORIZED_DETAIL,
        )

    try:
        return identity.verify_session_token(token)
    except NotConfiguredError as exc:
        logger.error("Session verification is not configured: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_UNAUTHORIZED_DETAIL,
        ) from exc
    except InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_UNAUTHORIZED_DETAIL,
        ) from exc


CurrentIdentityId = Annotated[str, Depends(get_current_identity_id)]


async def get_current_account(
    identity_id: CurrentIdentityId,
    db: DbSession,
) -> UserAccount:
    """Get the caller's UserAccount.

    Raises:
        NotFoundError: 404 if the identity has no account yet.
    """
    account = await UserRepository.get_by_identity_id(db, identity_id)
    if account is None:
        raise NotFoundError("User profile")
    return account


CurrentAccount = Annotated[UserAccount, Depends(get_current_account)]


def require_request_security(request: Request) -> None:
    """Boundary precondition for usage endpoints (403 on failure)."""
    validate_request_security(request, settings)
