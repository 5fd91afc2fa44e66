"""Test fixtures for the Tenantry backend.

Sets up a temporary SQLite database, overrides the async engine and
session factory, and provides a FastAPI app and AsyncClient for tests.
Redis is never configured here, so rate limiting runs in-process.
"""

import os
import tempfile
import uuid as _uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# Configure the app before it is imported: throwaway DB, plain-HTTP cookies,
# and budgets high enough that ordinary tests never trip the limiter.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="tenantry-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DB_DIR}/test.db")
os.environ.setdefault("SESSION_COOKIE_SECURE", "false")
os.environ.setdefault("SESSION_SECRET", "test-session-secret-0123456789")
os.environ.setdefault("RATE_LIMIT_MAX_REGISTER", "1000")
os.environ.setdefault("RATE_LIMIT_MAX_LOGIN", "1000")
os.environ.pop("REDIS_URL", None)

from app.db import engine as db_engine  # noqa: E402
from app.db.models import Base  # noqa: E402
from app.main import create_app  # noqa: E402
from app.services.auth import register_user  # noqa: E402
from app.services.redis_client import RedisConnection  # noqa: E402

DEFAULT_PASSWORD = "Secur3Pass!"


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{_uuid.uuid4().hex[:10]}@example.com"


@pytest.fixture(scope="session")
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Session-scoped async SQLite engine with all tables created."""
    test_engine = db_engine.build_engine(os.environ["DATABASE_URL"])
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture(scope="session")
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return db_engine.build_session_factory(engine)


@pytest.fixture(scope="session", autouse=True)
def override_db_engine(engine: AsyncEngine, session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Override global engine and async_session_factory used by app code."""
    db_engine.engine = engine
    db_engine.async_session_factory = session_factory


@pytest.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """A session for service-level tests. Uncommitted work is rolled back."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def app() -> Any:
    """FastAPI application instance for tests, without Redis."""
    return create_app(redis=RedisConnection())


@pytest.fixture
async def client(app: Any) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX AsyncClient bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def make_client(app: Any) -> Callable[[], AsyncClient]:
    """Build extra clients (separate cookie jars) against the same app."""
    return lambda: AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")


@pytest.fixture
def seed_user(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Register a user (with their own organization) directly in the DB."""

    async def _seed(
        email: str | None = None,
        password: str = DEFAULT_PASSWORD,
        organization_name: str = "Acme",
        name: str = "Test User",
    ) -> dict[str, Any]:
        email = email or unique_email()
        async with session_factory() as session:
            user, membership = await register_user(
                session,
                email=email,
                password=password,
                name=name,
                organization_name=organization_name,
            )
            await session.commit()
        return {
            "user": user,
            "membership": membership,
            "org_id": membership.organization_id,
            "email": email,
            "password": password,
        }

    return _seed


@pytest.fixture
def login() -> Callable[..., Awaitable[dict[str, Any]]]:
    """Log a client in; its cookie jar then carries the session."""

    async def _login(client: AsyncClient, email: str, password: str = DEFAULT_PASSWORD) -> dict[str, Any]:
        resp = await client.post("/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _login
