"""Clerk identity adapter.

Session tokens are RS256 JWTs verified with PyJWT, either against a PEM
public key (networkless) or keys fetched from the instance JWKS. Profiles
come from the Clerk Backend API over httpx. Webhooks are signed with svix.
"""

from collections.abc import Mapping
from typing import Any

import httpx
import jwt
import structlog
from svix.webhooks import Webhook, WebhookVerificationError

from textbehind.providers.errors import (
    AuthenticationError,
    InvalidTokenError,
    NotConfiguredError,
    ProviderError,
    RateLimitError,
    SignatureVerificationError,
    TransientError,
)
from textbehind.providers.identity.base import IdentityProfile, IdentityProvider

logger = structlog.get_logger()

# HTTP client timeout for Backend API calls
_CLERK_HTTP_TIMEOUT = 10.0

# Tolerated clock skew between Clerk and this server
_LEEWAY_SECONDS = 5

_REQUIRED_CLAIMS = ["sub", "exp", "iat", "nbf"]


def profile_from_clerk_user(data: Mapping[str, Any]) -> IdentityProfile:
    """Build a profile from a Clerk user object.

    The primary email is the address whose id matches
    ``primary_email_address_id``; otherwise the first address.
    """
    addresses = data.get("email_addresses") or []
    primary_id = data.get("primary_email_address_id")
    email = None
    for address in addresses:
        if address.get("id") == primary_id:
            email = address.get("email_address")
            break
    if email is None and addresses:
        email = addresses[0].get("email_address")

    return IdentityProfile(
        identity_id=data["id"],
        email=email,
        first_name=data.get("first_name") or None,
        last_name=data.get("last_name") or None,
        image_url=data.get("image_url") or None,
    )


def _classify_http_error(error: httpx.HTTPError) -> ProviderError:
    """Map httpx exceptions to internal error taxonomy."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 429:
            retry_after = error.response.headers.get("retry-after")
            return RateLimitError(
                str(error),
                retry_after_seconds=float(retry_after) if retry_after else None,
            )
        if status in (401, 403):
            return AuthenticationError(str(error))
        if status >= 500:
            return TransientError(str(error))
        return ProviderError(str(error))
    return TransientError(str(error))


class ClerkIdentityAdapter(IdentityProvider):
    """Identity provider backed by Clerk.

    Args:
        secret_key: Clerk secret key for Backend API calls.
        jwt_key: PEM public key for session token verification.
        jwks_url: JWKS endpoint used when no PEM key is configured.
        authorized_parties: Accepted ``azp`` claims. Empty accepts any.
        webhook_secret: svix signing secret of the Clerk webhook endpoint.
        api_url: Clerk Backend API base URL.
    """

    def __init__(
        self,
        *,
        secret_key: str,
        jwt_key: str = "",
        jwks_url: str = "",
        authorized_parties: list[str] | None = None,
        webhook_secret: str = "",
        api_url: str = "https://api.clerk.com/v1",
    ) -> None:
        self._secret_key = secret_key
        self._jwt_key = jwt_key
        self._jwks_client = jwt.PyJWKClient(jwks_url) if jwks_url else None
        self._authorized_parties = authorized_parties or []
        self._webhook_secret = webhook_secret
        self._api_url = api_url.rstrip("/")

    def _signing_key(self, token: str) -> Any:
        if self._jwt_key:
            return self._jwt_key
        if self._jwks_client is not None:
            try:
                return self._jwks_client.get_signing_key_from_jwt(token).key
            except jwt.PyJWKClientError as e:
                raise InvalidTokenError(str(e)) from e
        raise NotConfiguredError("CLERK_JWT_KEY or CLERK_JWKS_URL must be configured")

    def verify_session_token(self, token: str) -> str:
        key = self._signing_key(token)
        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=["RS256"],
                leeway=_LEEWAY_SECONDS,
                options={"require": _REQUIRED_CLAIMS},
            )
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(str(e)) from e

        azp = payload.get("azp")
        if self._authorized_parties and azp not in self._authorized_parties:
            raise InvalidTokenError(f"Unauthorized party: {azp!r}")

        subject = payload["sub"]
        if not isinstance(subject, str) or not subject:
            raise InvalidTokenError("Token subject is empty")
        return subject

    async def get_user(self, identity_id: str) -> IdentityProfile:
        if not self._secret_key:
            raise NotConfiguredError("CLERK_SECRET_KEY is not configured")
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(
                    f"{self._api_url}/users/{identity_id}",
                    headers={"Authorization": f"Bearer {self._secret_key}"},
                    timeout=_CLERK_HTTP_TIMEOUT,
                )
                resp.raise_for_status()
                data: dict[str, Any] = resp.json()
        except httpx.HTTPError as e:
            logger.error(
                "identity_request_failed",
                provider="clerk",
                operation="get_user",
                identity_id=identity_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise _classify_http_error(e) from e
        return profile_from_clerk_user(data)

    def verify_webhook(self, payload: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        if not self._webhook_secret:
            raise NotConfiguredError("CLERK_WEBHOOK_SECRET is not configured")
        try:
            body: dict[str, Any] = Webhook(self._webhook_secret).verify(
                payload, dict(headers)
            )
        except WebhookVerificationError as e:
            logger.warning(
                "identity_webhook_rejected",
                provider="clerk",
                error=str(e),
            )
            raise SignatureVerificationError(str(e)) from e
        return body
