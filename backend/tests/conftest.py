import uuid
from collections.abc import AsyncGenerator, Callable, Iterator
from datetime import UTC, datetime, timedelta

import jwt
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from textbehind.core.rate_limiting import limiter
from textbehind.models.base import Base
from textbehind.models.user import UserAccount
from textbehind.providers import factory
from textbehind.providers.billing.mock_adapter import MockBillingProvider
from textbehind.providers.identity.base import IdentityProfile
from textbehind.providers.identity.mock_adapter import (
    MOCK_TOKEN_PREFIX,
    MockIdentityProvider,
)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Identity of the authenticated caller in API tests
TEST_IDENTITY_ID = "user_2test000000000000000001"
TEST_EMAIL = "test@example.com"

# Browser user agent; automated agents are rejected by the usage endpoints
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_5) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.5 Safari/605.1.15"
)


def mock_session_token(identity_id: str = TEST_IDENTITY_ID) -> str:
    """Bearer token accepted by MockIdentityProvider."""
    return f"{MOCK_TOKEN_PREFIX}{identity_id}"


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Fresh in-memory SQLite engine with the schema created."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def test_account(db_session: AsyncSession) -> UserAccount:
    """Free-tier account for the authenticated test identity."""
    account = UserAccount(
        external_identity_id=TEST_IDENTITY_ID,
        email=TEST_EMAIL,
        first_name="Test",
        last_name="User",
        full_name="Test User",
        subscription_tier="free",
        subscription_status="inactive",
        usage_count=0,
        preferences={},
    )
    db_session.add(account)
    await db_session.commit()
    await db_session.refresh(account)
    return account


# =============================================================================
# Providers
# =============================================================================


@pytest.fixture
def mock_billing() -> MockBillingProvider:
    return MockBillingProvider()


@pytest.fixture
def mock_identity() -> MockIdentityProvider:
    """Mock identity provider serving the test identity's profile."""
    return MockIdentityProvider(
        [
            IdentityProfile(
                identity_id=TEST_IDENTITY_ID,
                email=TEST_EMAIL,
                first_name="Test",
                last_name="User",
                image_url="https://img.example.com/test.png",
            )
        ]
    )


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    """Signing key standing in for the identity provider's instance key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_public_pem(rsa_private_key: rsa.RSAPrivateKey) -> str:
    return (
        rsa_private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode()
    )


@pytest.fixture
def make_session_token(
    rsa_private_key: rsa.RSAPrivateKey,
) -> Callable[..., str]:
    """Factory minting RS256 session tokens like the identity provider's.

    Returns:
        Callable(identity_id, *, expires_delta, azp, omit) -> token.
    """

    def _make(
        identity_id: str = TEST_IDENTITY_ID,
        *,
        expires_delta: timedelta = timedelta(minutes=1),
        azp: str | None = "http://localhost:3000",
        omit: tuple[str, ...] = (),
    ) -> str:
        now = datetime.now(UTC)
        claims = {
            "sub": identity_id,
            "iat": now,
            "nbf": now,
            "exp": now + expires_delta,
            "sid": f"sess_{uuid.uuid4().hex[:12]}",
        }
        if azp is not None:
            claims["azp"] = azp
        for name in omit:
            claims.pop(name, None)
        return jwt.encode(claims, rsa_private_key, algorithm="RS256")

    return _make


# =============================================================================
# API Test Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    mock_billing: MockBillingProvider,
    mock_identity: MockIdentityProvider,
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client authenticated as TEST_IDENTITY_ID.

    Sets up:
    - Test database via get_db and get_session_factory overrides
    - Mock billing and identity providers via dependency overrides
    - Browser user agent and bearer session token

    No account exists until a test creates one (see test_account).
    """
    from textbehind.api.deps import get_billing, get_identity
    from textbehind.core.database import get_db, get_session_factory
    from textbehind.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_billing] = lambda: mock_billing
    app.dependency_overrides[get_identity] = lambda: mock_identity

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={
            "User-Agent": BROWSER_USER_AGENT,
            "Authorization": f"Bearer {mock_session_token()}",
        },
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def unauthenticated_client(client: AsyncClient) -> AsyncGenerator[AsyncClient, None]:
    """Same app and overrides as ``client`` but without a session token."""
    from textbehind.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"User-Agent": BROWSER_USER_AGENT},
    ) as ac:
        yield ac


# =============================================================================
# Autouse Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Turn the slowapi limiter off; rate limits are tested explicitly."""
    original = limiter.enabled
    limiter.enabled = False
    yield
    limiter.enabled = original


@pytest.fixture(autouse=True)
def reset_provider_singletons() -> Iterator[None]:
    yield
    factory.reset_providers()
