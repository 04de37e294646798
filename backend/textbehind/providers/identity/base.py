"""Abstract base class and types for identity providers.

The identity provider issues user sessions and owns profile data. The
service only ever needs three things from it: who is calling, what their
profile looks like, and whether an inbound webhook is authentic.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


@dataclass
class IdentityProfile:
    """Profile of one external identity.

    Attributes:
        identity_id: Stable user id issued by the identity provider.
        email: Primary email address.
        first_name: Given name.
        last_name: Family name.
        image_url: Avatar URL.
    """

    identity_id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    image_url: str | None = None

    @property
    def full_name(self) -> str | None:
        """First and last name joined by a space, or None when both are empty."""
        joined = " ".join(part for part in (self.first_name, self.last_name) if part)
        return joined or None


class IdentityProvider(ABC):
    """Abstract base class for identity providers."""

    @abstractmethod
    def verify_session_token(self, token: str) -> str:
        """Verify a session token and return the identity id it was issued to.

        Raises:
            InvalidTokenError: If the token is malformed, expired or forged.
            NotConfiguredError: If no verification key is configured.
        """
        ...

    @abstractmethod
    async def get_user(self, identity_id: str) -> IdentityProfile:
        """Fetch the current profile of an identity.

        Raises:
            ProviderError: On API failure or unknown identity.
        """
        ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        """Verify an inbound webhook and return its decoded body.

        Raises:
            SignatureVerificationError: If verification fails.
            NotConfiguredError: If no webhook secret is configured.
        """
        ...
