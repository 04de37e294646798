"""Provider factory functions.

Singleton pattern for provider instances, built from application settings.
"""

from textbehind.core.config import Settings, settings
from textbehind.providers.billing.base import BillingProvider
from textbehind.providers.billing.stripe_adapter import StripeBillingAdapter
from textbehind.providers.identity.base import IdentityProvider
from textbehind.providers.identity.clerk_adapter import ClerkIdentityAdapter

_identity_provider: IdentityProvider | None = None
_billing_provider: BillingProvider | None = None


def get_identity_provider(config: Settings | None = None) -> IdentityProvider:
    """Get or create the identity provider singleton.

    Args:
        config: Optional settings. First call with a config wins; later
            calls reuse the instance.

    Returns:
        IdentityProvider instance.
    """
    global _identity_provider

    if _identity_provider is None:
        config = config or settings
        _identity_provider = ClerkIdentityAdapter(
            secret_key=config.clerk_secret_key.get_secret_value(),
            jwt_key=config.clerk_jwt_key,
            jwks_url=config.clerk_jwks_url,
            authorized_parties=config.clerk_authorized_parties,
            webhook_secret=config.clerk_webhook_secret.get_secret_value(),
            api_url=config.clerk_api_url,
        )

    return _identity_provider


def get_billing_provider(config: Settings | None = None) -> BillingProvider:
    """Get or create the billing provider singleton.

    Args:
        config: Optional settings. First call with a config wins; later
            calls reuse the instance.

    Returns:
        BillingProvider instance.
    """
    global _billing_provider

    if _billing_provider is None:
        config = config or settings
        _billing_provider = StripeBillingAdapter(
            secret_key=config.stripe_secret_key.get_secret_value(),
            webhook_secret=config.stripe_webhook_secret.get_secret_value(),
        )

    return _billing_provider


def reset_providers() -> None:
    """Reset provider singletons.

    Used in tests to ensure isolation between test cases.
    """
    global _identity_provider, _billing_provider
    _identity_provider = None
    _billing_provider = None
