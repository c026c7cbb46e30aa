"""
tests/conftest.py

Test fixtures for API integration and unit tests.
Includes async clients, fake users, dependency overrides and a per-test SQLite
database. Test doubles live in tests/helpers.py.
"""

import os
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_app.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("PAYMENT_PROVIDER_SECRET_KEY", "sk_test_provider")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "whsec_test")
os.environ["REDIS_URL"] = ""
os.environ["RATE_LIMIT_ENABLED"] = "false"

# --- Imports ---
from collections.abc import AsyncGenerator, Generator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from main import app
from app.core.dependencies import get_current_user, get_notifier, get_payment_gateway
from app.database.base import Base
from app.database.enums import UserRole
from app.database.models import User
from app.database.session import get_db
from app.job import models as job_models  # noqa: F401
from app.notification import models as notification_models  # noqa: F401
from tests.helpers import FakeGateway, RecordingNotifier, make_user


# --- Core Test Fixtures ---


@pytest.fixture(scope="session")
def transport() -> ASGITransport:
    """Fixture for ASGI transport."""
    return ASGITransport(app=app)


@pytest_asyncio.fixture(scope="function")
async def async_client(transport: ASGITransport) -> AsyncGenerator[AsyncClient, None]:
    """Fixture for HTTP async client."""
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# --- Fake User Fixtures ---


@pytest.fixture
def fake_customer_user() -> User:
    return make_user(UserRole.CUSTOMER, "Customer", "0712000001")


@pytest.fixture
def fake_fundi_user() -> User:
    return make_user(UserRole.FUNDI, "Fundi", "0712000002")


@pytest.fixture
def fake_other_fundi_user() -> User:
    return make_user(UserRole.FUNDI, "Otherfundi", "0712000003")


@pytest.fixture
def fake_admin_user() -> User:
    return make_user(UserRole.ADMIN, "Admin", "0712000004")


# --- Dependency Override Fixtures ---


@pytest_asyncio.fixture
async def override_get_db() -> AsyncGenerator[None, None]:
    """Override for the database dependency."""

    async def _override() -> AsyncGenerator[AsyncMock, None]:
        yield AsyncMock()

    app.dependency_overrides[get_db] = _override
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def override_collaborators(
    fake_gateway: FakeGateway, notifier: RecordingNotifier
) -> Generator[None, None, None]:
    """Route the gateway and notifier dependencies to the in-memory doubles."""
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield
    app.dependency_overrides.pop(get_payment_gateway, None)
    app.dependency_overrides.pop(get_notifier, None)


def _as_current_user(user: User) -> Generator[User, None, None]:
    app.dependency_overrides[get_current_user] = lambda: user
    yield user
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture
def mock_current_customer_user(fake_customer_user: User) -> Generator[User, None, None]:
    """Mock the current user as a customer."""
    yield from _as_current_user(fake_customer_user)


@pytest.fixture
def mock_current_fundi_user(fake_fundi_user: User) -> Generator[User, None, None]:
    """Mock the current user as a fundi."""
    yield from _as_current_user(fake_fundi_user)


@pytest.fixture
def mock_current_admin_user(fake_admin_user: User) -> Generator[User, None, None]:
    """Mock the current user as an admin."""
    yield from _as_current_user(fake_admin_user)


# --- Database Fixtures (per-test SQLite file) ---


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(
        bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
    )
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def db_users(
    db_session: AsyncSession,
    fake_customer_user: User,
    fake_fundi_user: User,
    fake_other_fundi_user: User,
    fake_admin_user: User,
) -> dict[str, User]:
    """Persist the fake users so foreign keys and the user directory resolve."""
    users = {
        "customer": fake_customer_user,
        "fundi": fake_fundi_user,
        "other_fundi": fake_other_fundi_user,
        "admin": fake_admin_user,
    }
    db_session.add_all(users.values())
    await db_session.commit()
    return users



@pytest.fixture
def override_get_db_with_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> Generator[None, None, None]:
    """Serve the per-test SQLite database to the routes."""

    async def _override() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override
    yield
    app.dependency_overrides.pop(get_db, None)
