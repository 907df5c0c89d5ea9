"""Global pytest fixtures for the tournament engine.

Provides:
- A temporary SQLite database (file-backed so concurrent sessions see each other)
- Session fixtures and a session factory for concurrency tests
- An httpx client wired to the FastAPI app with ``get_db`` overridden
- Deterministic random sources
"""

import random
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from chant.config import get_settings
from chant.database import create_tables, get_db, make_session_factory


# ===========================================
# SETTINGS
# ===========================================


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch: pytest.MonkeyPatch):
    """Drop cached settings so each test sees its own environment."""
    monkeypatch.delenv("CHANT_GRACE_PERIOD_SECONDS", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ===========================================
# DATABASE FIXTURES
# ===========================================


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Async engine over a throwaway SQLite file."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'chant_test.db'}"
    # Writers wait on each other instead of failing with "database is locked".
    test_engine = create_async_engine(url, connect_args={"timeout": 30})
    await create_tables(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A real database session for integration tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


# ===========================================
# HTTP CLIENT FIXTURES
# ===========================================


@pytest_asyncio.fixture
async def async_client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the app, bypassing its lifespan."""
    from chant.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
