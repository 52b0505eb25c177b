"""
Pytest configuration and fixtures.

WHY: Fixtures provide reusable test setup/teardown logic, reducing
duplication and ensuring consistent test environments.
"""

import pytest
import pytest_asyncio
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from billing.main import app
from billing.models.base import Base
from billing.db.session import get_db
from billing.core.auth import create_access_token
from billing.core.deps import Actor
from billing.services import email as email_module


# Test database URL
# WHY: Using SQLite for tests eliminates external database dependencies
# and makes tests faster. StaticPool keeps one in-memory database per engine.
TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """
    Create a test database engine.

    WHY: Function scope ensures each test gets a fresh database state.
    """
    engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        echo=False,
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
    """
    Create a test database session.

    Yields:
        AsyncSession: Database session for the test
    """
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    Create a test HTTP client.

    WHY: All requests of a test share the test session, so data created
    through factories is visible to the API and vice versa.
    """

    async def override_get_db():
        """Override database dependency with test session."""
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def admin_actor() -> Actor:
    return Actor(id="admin-1", name="Ada Admin", email="ada@example.com", role="ADMIN")


@pytest.fixture
def admin_headers(admin_actor: Actor) -> dict:
    """Bearer token for an ADMIN actor."""
    token = create_access_token(
        {
            "sub": admin_actor.id,
            "name": admin_actor.name,
            "email": admin_actor.email,
            "role": admin_actor.role,
        }
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client_role_headers() -> dict:
    """Bearer token for a non-admin caller."""
    token = create_access_token({"sub": "client-7", "name": "Carl Client", "role": "CLIENT"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(autouse=True)
def use_mock_email_provider(monkeypatch):
    """
    Use mock email provider for all tests.

    WHY: Tests should not send real emails. The mock provider tracks sent
    emails for verification and can be switched to fail.
    """
    email_module.MockEmailProvider.clear_sent_emails()

    from billing.core import config

    # Set RESEND_API_KEY to None to force mock provider
    monkeypatch.setattr(config.settings, "RESEND_API_KEY", None)
    # Rebuild the cached service so it picks the mock provider
    monkeypatch.setattr(email_module, "_email_service", None)

    yield

    email_module.MockEmailProvider.clear_sent_emails()
