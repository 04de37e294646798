"""Provider error taxonomy.

Error classes for the identity and billing provider adapters. Adapters
map vendor SDK exceptions (stripe, httpx, svix, PyJWT) to these so
services can handle failures without importing vendor packages.
"""


__all__ = [
    "ProviderError",
    "RateLimitError",
    "AuthenticationError",
    "NotConfiguredError",
    "InvalidTokenError",
    "SignatureVerificationError",
    "TransientError",
]


class ProviderError(Exception):
    """Base class for all provider errors.

    All provider-specific exceptions should inherit from this class,
    allowing callers to catch all provider errors with a single handler.
    """

    pass


class RateLimitError(ProviderError):
    """Rate limit exceeded at the provider."""

    def __init__(self, message: str, retry_after_seconds: float | None = None):
        """Initialize RateLimitError.

        Args:
            message: Error description from the provider.
            retry_after_seconds: Optional hint from provider on when to retry.
        """
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class AuthenticationError(ProviderError):
    """Invalid or revoked provider API key. Not retryable."""

    pass


class NotConfiguredError(ProviderError):
    """Provider credentials or identifiers are missing from configuration."""

    pass


class InvalidTokenError(ProviderError):
    """Session token failed verification (signature, expiry, claims)."""

    pass


class SignatureVerificationError(ProviderError):
    """Inbound webhook payload failed signature verification."""

    pass


class TransientError(ProviderError):
    """Temporary failure (network, server overload, 5xx)."""

    pass
