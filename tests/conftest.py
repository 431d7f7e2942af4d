"""Shared test fixtures.

Every test gets a fresh in-memory SQLite database. Redis is never
initialized, so event publishing is skipped.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from datetime import date

os.environ["SKILLIFY_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SKILLIFY_REDIS_URL"] = ""
os.environ["SKILLIFY_JWT_SECRET"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["SKILLIFY_LOG_FORMAT"] = "console"
os.environ["SKILLIFY_ORACLE_MAX_ATTEMPTS"] = "2"
os.environ["SKILLIFY_PROVIDER_TIMEOUT_SECONDS"] = "1.0"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from skillify.config import get_settings  # noqa: E402

get_settings.cache_clear()

from skillify.database import close_db, create_schema, get_engine, init_db  # noqa: E402
from skillify.db.models import Certificate, User  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Settings are cached; tests that monkeypatch env vars get a clean cache."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[object, None]:
    """Fresh in-memory database with the full schema."""
    await init_db(get_settings().database_url)
    await create_schema()
    yield get_engine()
    await close_db()


@pytest_asyncio.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session for service-level tests."""
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


@pytest_asyncio.fixture
async def session_factory(engine):
    """Open short-lived sessions; use for setup/assertions around HTTP calls."""

    def _open() -> AsyncSession:
        return AsyncSession(engine, expire_on_commit=False)

    return _open


async def make_user(db: AsyncSession, name: str = "Ada Lovelace", **fields) -> User:
    """Insert a user and flush so it has an id."""
    user = User(name=name, email=fields.pop("email", None), **fields)
    db.add(user)
    await db.flush()
    return user


async def make_certificate(db: AsyncSession, user: User, **fields) -> Certificate:
    """Insert a bare certificate row, bypassing awards."""
    defaults = {
        "title": "Machine Learning",
        "issuer": "Coursera",
        "issue_date": date(2024, 5, 1),
        "evidence_url": "https://files.example.com/cert.png",
        "file_type": "image",
    }
    defaults.update(fields)
    cert = Certificate(user_id=user.id, **defaults)
    db.add(cert)
    await db.flush()
    return cert


def auth_headers(user_id: int, *, is_admin: bool = False) -> dict[str, str]:
    from skillify.auth.jwt import create_access_token

    return {"Authorization": f"Bearer {create_access_token(user_id, is_admin=is_admin)}"}


@pytest_asyncio.fixture
async def app(engine):
    """Application wired to the test database. Lifespan is not run."""
    from skillify.main import create_app

    return create_app()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
