"""
Test Configuration and Fixtures

Every test gets its own SQLite file, the app wired to it through a
get_db override, and the default catalogue (permissions, roles, IT
department, admin@company.com) when it asks for `seeded`.
"""
import os

os.environ["RATE_LIMIT_ENABLED"] = "0"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SESSION_CHECK_INTERVAL_SECONDS"] = "0"
os.environ["SEED_DEFAULTS"] = "0"
os.environ["SESSION_TIMEOUT_MINUTES"] = "30"

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.database.base import Base
from app.core.database.engine import get_db, import_models
from app.features.permissions.defaults import seed_defaults
from app.main import app as fastapi_app


ADMIN_EMAIL = "admin@company.com"
ADMIN_PASSWORD = "admin123"


# ==================== Database Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path):
    """Create a file backed async SQLite engine for one test."""
    import_models()
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine):
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for service level tests. Do not combine with `client` in one test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def seeded(session_factory) -> dict:
    """Seed the default catalogue and return the admin's id."""
    async with session_factory() as session:
        admin = await seed_defaults(session)
        await session.commit()
        return {"admin_id": admin.id}


# ==================== Application Fixtures ====================


@pytest.fixture(scope="function")
def app(session_factory):
    """FastAPI app with one transaction per request on the test database."""
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_db] = override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture(scope="function")
async def admin_headers(client, seeded) -> dict:
    """Authorization header of a fresh admin session."""
    response = await client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}
