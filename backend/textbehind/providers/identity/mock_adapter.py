"""Mock identity provider for testing.

Accepts tokens of the form ``mock-token:<identity_id>`` and serves
profiles from an in-memory dict.
"""

import json
from collections.abc import Mapping
from typing import Any

from textbehind.providers.errors import (
    InvalidTokenError,
    ProviderError,
    SignatureVerificationError,
)
from textbehind.providers.identity.base import IdentityProfile, IdentityProvider

MOCK_TOKEN_PREFIX = "mock-token:"
MOCK_WEBHOOK_SIGNATURE = "v1,mock-signature"


class MockIdentityProvider(IdentityProvider):
    """Mock provider for identity tests.

    Attributes:
        profiles: Profiles served by get_user, keyed by identity id.
        fail_with: When set, get_user raises this error.
        calls: Record of get_user invocations for test assertions.
    """

    def __init__(self, profiles: list[IdentityProfile] | None = None) -> None:
        self.profiles = {p.identity_id: p for p in profiles or []}
        self.fail_with: ProviderError | None = None
        self.calls: list[str] = []

    def verify_session_token(self, token: str) -> str:
        if not token.startswith(MOCK_TOKEN_PREFIX):
            raise InvalidTokenError("Not a mock token")
        return token.removeprefix(MOCK_TOKEN_PREFIX)

    async def get_user(self, identity_id: str) -> IdentityProfile:
        self.calls.append(identity_id)
        if self.fail_with is not None:
            raise self.fail_with
        if identity_id not in self.profiles:
            raise ProviderError(f"User not found: {identity_id}")
        return self.profiles[identity_id]

    def verify_webhook(self, payload: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        if headers.get("svix-signature") != MOCK_WEBHOOK_SIGNATURE:
            raise SignatureVerificationError("Mock signature mismatch")
        body: dict[str, Any] = json.loads(payload)
        return body
