"""Provider abstraction layer.

Exports:
    Error classes for provider error handling
    Factory functions for provider instances
"""

from textbehind.providers.errors import (
    AuthenticationError,
    InvalidTokenError,
    NotConfiguredError,
    ProviderError,
    RateLimitError,
    SignatureVerificationError,
    TransientError,
)
from textbehind.providers.factory import (
    get_billing_provider,
    get_identity_provider,
    reset_providers,
)

__all__ = [
    # Errors
    "ProviderError",
    "RateLimitError",
    "AuthenticationError",
    "NotConfiguredError",
    "InvalidTokenError",
    "SignatureVerificationError",
    "TransientError",
    # Factory
    "get_billing_provider",
    "get_identity_provider",
    "reset_providers",
]
