"""Pytest configuration and fixtures for otpgate tests.

Every test gets its own SQLite database file (aiosqlite, NullPool) so
concurrent sessions behave like separate connections to a real server.
"""

import os
import tempfile
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set test environment variables before importing app modules
_TEST_DIR = tempfile.mkdtemp(prefix="otpgate-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/app.db"
os.environ["JWT_ACCESS_SECRET"] = "test-access-secret-" + "a" * 32
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret-" + "r" * 32
os.environ["OTP_FALLBACK_PATH"] = f"{_TEST_DIR}/otps.json"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["EMAIL_API_KEY"] = ""

from otpgate.core.config import Settings  # noqa: E402
from otpgate.core.database import Base, build_session_factory  # noqa: E402
from otpgate.models import Account  # noqa: E402
from otpgate.services import Services, build_services  # noqa: E402
from otpgate.services.auth import hash_password  # noqa: E402
from otpgate.services.notifier import DeliveryResult  # noqa: E402

TEST_ACCESS_SECRET = "test-access-secret-" + "a" * 32
TEST_REFRESH_SECRET = "test-refresh-secret-" + "r" * 32
TEST_PASSWORD = "correct horse battery"


class FrozenClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime.now(UTC).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    """Notifier that remembers what it was asked to send."""

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    async def send(self, identifier: str, code: str, purpose: str) -> DeliveryResult:
        if self.fail:
            return DeliveryResult(False, "Failed to send OTP: HTTP 500")
        self.sent.append((identifier, code, purpose))
        return DeliveryResult(True, "OTP sent successfully")

    def last_code(self) -> str:
        return self.sent[-1][1]


# --- Settings and clock ---


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path}/test.db",
        jwt_access_secret=TEST_ACCESS_SECRET,
        jwt_refresh_secret=TEST_REFRESH_SECRET,
        otp_fallback_path=str(tmp_path / "otps.json"),
        sweeper_enabled=False,
        email_api_key="",
    )


# --- Database Fixtures ---


@pytest_asyncio.fixture(scope="function")
async def db_engine(test_settings: Settings):
    """Create a fresh SQLite database with all tables."""
    engine = create_async_engine(test_settings.database_url, poolclass=NullPool, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(db_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# --- Services ---


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def services(session_factory, test_settings, notifier, clock) -> Services:
    return build_services(session_factory, test_settings, notifier=notifier, clock=clock)


@pytest_asyncio.fixture(scope="function")
async def async_client(services: Services) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client wired to the test services."""
    from otpgate.main import create_app

    app = create_app(services=services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# --- Test Factories ---


@pytest.fixture
def account_factory(session_factory):
    """Factory for creating test Account rows."""

    async def _create_account(
        email: str = "user@example.com",
        password: str | None = TEST_PASSWORD,
        is_active: bool = True,
        **kwargs,
    ) -> Account:
        account = Account(
            email=email,
            password_hash=hash_password(password) if password else None,
            is_active=is_active,
            is_verified=True,
            **kwargs,
        )
        async with session_factory() as session:
            session.add(account)
            await session.commit()
            await session.refresh(account)
        return account

    return _create_account
