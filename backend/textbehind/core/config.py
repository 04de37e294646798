"""Application configuration loaded from environment variables.

Settings for the record store, identity provider (Clerk), billing provider
(Stripe), usage limits and request security. Uses pydantic-settings for
validation and .env file support.
"""

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url

# In-memory record store used when DATABASE_URL is unset
_IN_MEMORY_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Values shipped in .env.example files that must never reach the billing API
_PLACEHOLDER_MARKERS = ("your_", "placeholder", "xxx", "changeme")

_DEFAULT_BLOCKED_USER_AGENTS = [
    "curl",
    "wget",
    "python-requests",
    "postman",
    "insomnia",
    "httpie",
    "bot",
    "crawler",
    "spider",
]


def _is_placeholder(value: str) -> bool:
    lowered = value.lower()
    return any(marker in lowered for marker in _PLACEHOLDER_MARKERS)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Public URL of the web app (checkout/portal return URLs, origin check)
    app_base_url: str = "http://localhost:3000"

    # CORS (Security)
    # CRITICAL: Never set to ["*"] when allow_credentials=True
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Record store
    # Empty URL runs the service against an in-memory SQLite database.
    database_url: str = ""
    database_service_key: SecretStr = SecretStr("")
    database_echo: bool = False

    # Identity provider (Clerk)
    clerk_publishable_key: str = ""
    clerk_secret_key: SecretStr = SecretStr("")
    clerk_jwt_key: str = ""  # PEM public key for networkless verification
    clerk_jwks_url: str = ""
    clerk_authorized_parties: list[str] = []
    clerk_webhook_secret: SecretStr = SecretStr("")
    clerk_api_url: str = "https://api.clerk.com/v1"

    # Billing provider (Stripe)
    stripe_secret_key: SecretStr = SecretStr("")
    stripe_webhook_secret: SecretStr = SecretStr("")
    stripe_monthly_price_id: str = ""
    stripe_yearly_price_id: str = ""

    # Usage limits per tier (single authoritative table)
    usage_limit_free: int = 6
    usage_limit_monthly: int = 1000
    usage_limit_yearly: int = 10000

    # Request security for usage endpoints
    usage_blocked_user_agents: list[str] = _DEFAULT_BLOCKED_USER_AGENTS

    # Server-to-server credential for the manual subscription sync path
    internal_api_token: SecretStr = SecretStr("")

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_usage: str = "30/minute"  # /usage/increment
    rate_limit_billing: str = "10/minute"  # checkout + portal creation
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def is_in_memory_database(self) -> bool:
        """True when no record store URL is configured."""
        return not self.database_url

    @property
    def effective_database_url(self) -> str:
        """Async database URL for SQLAlchemy.

        DATABASE_SERVICE_KEY is used as the password when the URL has none.
        """
        if not self.database_url:
            return _IN_MEMORY_DATABASE_URL
        service_key = self.database_service_key.get_secret_value()
        url = make_url(self.database_url)
        if service_key and not url.password:
            url = url.set(password=service_key)
        return url.render_as_string(hide_password=False)

    @property
    def billing_configured(self) -> bool:
        """Whether checkout can be offered with the current billing config.

        False when the secret key is missing or a placeholder, or when a
        price id is missing, a placeholder, or a product id (``prod_``).
        """
        key = self.stripe_secret_key.get_secret_value()
        if not key or _is_placeholder(key) or not key.startswith("sk_"):
            return False
        for price_id in (self.stripe_monthly_price_id, self.stripe_yearly_price_id):
            if not price_id or _is_placeholder(price_id):
                return False
            if price_id.startswith("prod_"):
                return False
        return True

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate configuration invariants.

        Checks:
        - CORS must not use wildcard origin (incompatible with credentials)
        - Usage limits must be positive (all environments)
        - In-memory record store is not allowed in production
        - A passwordless DATABASE_URL requires DATABASE_SERVICE_KEY in production
        - A configured Stripe key requires a webhook secret in production
        """
        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "This application uses credentials which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        for name in ("usage_limit_free", "usage_limit_monthly", "usage_limit_yearly"):
            if getattr(self, name) <= 0:
                msg = f"{name.upper()} must be positive. Got: {getattr(self, name)}"
                raise ValueError(msg)

        if self.environment == "production":
            if self.is_in_memory_database:
                msg = (
                    "DATABASE_URL must be set in production. "
                    "The in-memory record store loses all data on restart."
                )
                raise ValueError(msg)
            if (
                not make_url(self.database_url).password
                and not self.database_service_key.get_secret_value()
            ):
                msg = (
                    "DATABASE_SERVICE_KEY must be set in production when "
                    "DATABASE_URL carries no password."
                )
                raise ValueError(msg)
            if (
                self.stripe_secret_key.get_secret_value()
                and not self.stripe_webhook_secret.get_secret_value()
            ):
                msg = (
                    "STRIPE_WEBHOOK_SECRET must be set when STRIPE_SECRET_KEY "
                    "is configured in production."
                )
                raise ValueError(msg)

        return self


settings = Settings()
