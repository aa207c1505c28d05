"""Shared test fixtures.

Every test gets its own SQLite database file (aiosqlite) with the ORM schema
created from metadata, and an app whose ``get_session`` dependency is bound to
it. Redis is never initialized, so rate limiting passes through and the
readiness check reports it as degraded.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from easyearn.auth.jwt import create_access_token
from easyearn.config import PROVIDER_SECRET_FIELDS, PROVIDER_TOKEN_FIELDS, get_settings
from easyearn.database import get_session
from easyearn.db.base import Base
from easyearn.db.models import Transaction, User
from easyearn.email.service import reset_email_service
from easyearn.main import create_app

TEST_JWT_SECRET = "test-secret-key-with-enough-length-for-hs256"


def _provider_env_names() -> list[str]:
    names: list[str] = []
    for fields in (*PROVIDER_SECRET_FIELDS.values(), *PROVIDER_TOKEN_FIELDS.values()):
        for field in fields:
            names.extend([field.upper(), f"EASYEARN_{field.upper()}"])
    return names


@pytest.fixture(autouse=True)
def test_settings(monkeypatch: pytest.MonkeyPatch) -> Any:  # noqa: ANN401
    """Deterministic settings: console email, no offerwall secrets, non-production."""
    monkeypatch.setenv("EASYEARN_JWT_SECRET_KEY", TEST_JWT_SECRET)
    monkeypatch.setenv("EASYEARN_ENVIRONMENT", "test")
    monkeypatch.setenv("EASYEARN_EMAIL_PROVIDER", "console")
    monkeypatch.setenv("EASYEARN_LOG_FORMAT", "console")
    for name in _provider_env_names():
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    reset_email_service()
    yield get_settings()
    get_settings.cache_clear()
    reset_email_service()


@pytest.fixture
def configure(monkeypatch: pytest.MonkeyPatch) -> Callable[..., None]:
    """Set environment values for this test and reload settings."""

    def _configure(**values: str) -> None:
        for name, value in values.items():
            monkeypatch.setenv(name.upper(), value)
        get_settings.cache_clear()

    return _configure


@pytest_asyncio.fixture
async def engine(tmp_path: Any) -> AsyncGenerator[AsyncEngine, None]:  # noqa: ANN401
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session for service-level tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def app(session_factory: async_sessionmaker[AsyncSession]) -> FastAPI:
    application = create_app()

    async def _session_override() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_session] = _session_override
    return application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_user(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Awaitable[User]]:
    """Insert a user and return the detached row."""
    counter = {"n": 0}

    async def _make_user(**fields: Any) -> User:  # noqa: ANN401
        counter["n"] += 1
        fields.setdefault("email", f"user{counter['n']}@example.com")
        fields.setdefault("display_name", f"User {counter['n']}")
        async with session_factory() as session:
            user = User(**fields)
            session.add(user)
            await session.commit()
            return user

    return _make_user


@pytest.fixture
def fetch_user(session_factory: async_sessionmaker[AsyncSession]) -> Callable[[str], Awaitable[User]]:
    """Re-read a user row in a fresh session."""

    async def _fetch_user(user_id: str) -> User:
        async with session_factory() as session:
            user = await session.get(User, user_id)
            assert user is not None
            return user

    return _fetch_user


@pytest.fixture
def fetch_transactions(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[str], Awaitable[list[Transaction]]]:
    """All ledger rows for a user, oldest first."""

    async def _fetch(user_id: str) -> list[Transaction]:
        async with session_factory() as session:
            result = await session.execute(
                select(Transaction).where(Transaction.user_id == user_id).order_by(Transaction.id.asc())
            )
            return list(result.scalars().all())

    return _fetch


@pytest.fixture
def auth_headers() -> Callable[[User], dict[str, str]]:
    """Bearer header for a user, signed with the test secret."""

    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}

    return _headers
