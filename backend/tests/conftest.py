import uuid
from collections.abc import AsyncGenerator, Callable, Iterator
from datetime import UTC, datetime, timedelta
from http.cookies import SimpleCookie

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient, Response
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from passwordless.core.config import settings
from passwordless.core.email import EmailSender
from passwordless.core.errors import EmailDeliveryError
from passwordless.models.base import Base
from passwordless.models.user import User, new_security_stamp

# In-memory SQLite shared by every session of one test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Test user ID (consistent across tests for predictable auth)
TEST_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
TEST_EMAIL = "magicuser@example.com"

# Security: This is a test-only secret. Production uses a real secret from env.
TEST_AUTH_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105  # gitleaks:allow


def create_test_jwt(
    user_id: uuid.UUID = TEST_USER_ID,
    *,
    secret: str = TEST_AUTH_SECRET,
    expires_delta: timedelta | None = None,
    audience: str | None = None,
) -> str:
    """Create a signed session JWT for test authentication.

    Args:
        user_id: User UUID to encode in the sub claim.
        secret: Signing secret (must match settings.auth_secret in tests).
        expires_delta: Time until expiration. Defaults to 1 hour.
        audience: aud claim. Defaults to the session audience.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "aud": audience or settings.auth_issuer,
        "iss": settings.auth_issuer,
        "exp": now + (expires_delta or timedelta(hours=1)),
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def get_set_cookie(response: Response, name: str) -> SimpleCookie | None:
    """Return the parsed Set-Cookie header for one cookie name, or None."""
    for header in response.headers.get_list("set-cookie"):
        cookie = SimpleCookie()
        cookie.load(header)
        if name in cookie:
            return cookie
    return None


class FixedClock:
    """Controllable UTC clock for time-dependent tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingEmailSender(EmailSender):
    """Email sender that records messages instead of delivering them.

    Set `fail = True` to simulate a transport outage.
    """

    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []
        self.fail = False

    async def send(self, recipient: str, subject: str, html_body: str) -> None:
        if self.fail:
            raise EmailDeliveryError()
        self.sent.append(
            {"recipient": recipient, "subject": subject, "html_body": html_body}
        )


# =============================================================================
# Global state resets
# =============================================================================


@pytest.fixture(autouse=True)
def use_test_auth_secret() -> Iterator[None]:
    """Sign sessions and link tokens with the test secret."""
    original_auth_secret = settings.auth_secret
    settings.auth_secret = SecretStr(TEST_AUTH_SECRET)
    yield
    settings.auth_secret = original_auth_secret


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable per-client rate limiting during tests.

    Security: Rate limiting is tested separately; disable for other tests
    to avoid flaky failures from rate limit triggers.

    Yields:
        None (autouse fixture).
    """
    from passwordless.core.rate_limiting import limiter

    original_enabled = limiter.enabled
    limiter.enabled = False
    yield
    limiter.enabled = original_enabled


@pytest.fixture(autouse=True)
def reset_singletons() -> Iterator[None]:
    """Reset the counter store and email sender singletons around each test."""
    from passwordless.core.email import reset_email_sender
    from passwordless.core.rate_limiting import reset_counter_store

    reset_counter_store()
    reset_email_sender()
    yield
    reset_counter_store()
    reset_email_sender()


# =============================================================================
# Database fixtures
# =============================================================================


@pytest_asyncio.fixture
async def db_engine():
    """Create an in-memory SQLite engine with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable:
    """Factory fixture that inserts a user with the given account state."""

    async def _make_user(
        *,
        user_id: uuid.UUID = TEST_USER_ID,
        email: str = TEST_EMAIL,
        confirmed: bool = True,
        two_factor_enabled: bool = False,
        lockout_end: datetime | None = None,
        lockout_enabled: bool = True,
    ) -> User:
        user = User(
            id=user_id,
            email=email,
            email_verified=datetime.now(UTC) if confirmed else None,
            security_stamp=new_security_stamp(),
            two_factor_enabled=two_factor_enabled,
            lockout_end=lockout_end,
            lockout_enabled=lockout_enabled,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


# =============================================================================
# API Test Fixtures
# =============================================================================


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    email_sender: RecordingEmailSender,
) -> AsyncGenerator[AsyncClient, None]:
    """Anonymous HTTP client over the app.

    Sets up:
    - get_db override yielding the test session (shared with the test)
    - get_email_sender override returning the recording sender
    - redirects are not followed so tests can inspect them

    Yields:
        AsyncClient without a session cookie.
    """
    from passwordless.core.database import get_db
    from passwordless.core.email import get_email_sender
    from passwordless.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_sender] = lambda: email_sender

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        follow_redirects=False,
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
