"""Identity provider module.

Identity provider interface, profile type and adapters.
"""

from textbehind.providers.identity.base import IdentityProfile, IdentityProvider
from textbehind.providers.identity.clerk_adapter import ClerkIdentityAdapter
from textbehind.providers.identity.mock_adapter import MockIdentityProvider

__all__ = [
    # Base types
    "IdentityProfile",
    "IdentityProvider",
    # Adapters
    "ClerkIdentityAdapter",
    "MockIdentityProvider",
]
