"""
Test fixtures for the Bank Cards API test suite.

This module provides shared fixtures used across all test files:

  - db_engine / session_factory: Fresh in-memory SQLite database per test
  - db_session: A session for driving the services directly
  - client: Async HTTP test client (unauthenticated)
  - user_headers / second_user_headers: Bearer headers for two card holders
  - admin_headers: Bearer headers for an administrator
  - card_factory: Issues a card through the admin API, optionally activating
    it and loading a balance

Key design decisions:
  - In-memory SQLite (sqlite+aiosqlite://) on a single shared connection
    (StaticPool). Each test gets a completely fresh database.
  - The engine gets the same SAVEPOINT fix as production
    (configure_sqlite_transactions), so retry and transfer rollback paths
    behave exactly as they do against the real database.
  - Because every session shares one connection, a test never keeps a
    session open across HTTP calls: direct database tweaks use short-lived
    sessions that commit and close.
  - We override FastAPI's get_db dependency to inject sessions bound to the
    test engine, so the application code works exactly as in production.
  - Card holders are created through the real register endpoint. The admin
    is provisioned directly through user_service, the way an operator would.
"""

import os
import uuid
from datetime import date
from decimal import Decimal

from cryptography.fernet import Fernet

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("CARD_ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from bankcards.database import Base, configure_sqlite_transactions, get_db
from bankcards.main import app
from bankcards.models.card import Card
from bankcards.models.user import Role
from bankcards.services import user_service


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"

USER_PASSWORD = "Secure#Pass1"
SECOND_USER_PASSWORD = "Secure#Pass2"
ADMIN_PASSWORD = "Admin#Pass1"


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = configure_sqlite_transactions(
        create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide an async session bound to the test engine (service-level tests)."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory):
    """
    Async HTTP test client with the test database injected.

    This overrides the get_db dependency so all requests hit the
    in-memory test database instead of the real one.
    """
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


async def login_headers(client: AsyncClient, username: str, password: str) -> dict[str, str]:
    response = await client.post(
        "/api/auth/login",
        json={"username": username, "password": password},
    )
    assert response.status_code == 200, f"Login failed: {response.text}"
    return {"Authorization": f"Bearer {response.json()['token']}"}


async def register_and_login(client: AsyncClient, username: str, password: str) -> dict[str, str]:
    response = await client.post(
        "/api/auth/register",
        json={"username": username, "password": password},
    )
    assert response.status_code == 201, f"Register failed: {response.text}"
    return await login_headers(client, username, password)


@pytest_asyncio.fixture
async def user_headers(client):
    """Bearer headers for the card holder "alice"."""
    return await register_and_login(client, "alice", USER_PASSWORD)


@pytest_asyncio.fixture
async def second_user_headers(client):
    """Bearer headers for a second card holder "bob", for cross-user tests."""
    return await register_and_login(client, "bob", SECOND_USER_PASSWORD)


@pytest_asyncio.fixture
async def admin_headers(client, session_factory):
    """
    Bearer headers for an administrator.

    The admin is created directly through user_service, which simulates an
    operator provisioning admin accounts (not self-service).
    """
    async with session_factory() as session:
        await user_service.create_user(session, "admin", ADMIN_PASSWORD, roles=(Role.ADMIN,))
        await session.commit()
    return await login_headers(client, "admin", ADMIN_PASSWORD)


@pytest.fixture
def set_card_columns(session_factory):
    """
    Write card columns behind the services' back (test setup only).

    Usage:
        await set_card_columns(card_id, expiry_date=date(2000, 1, 1))
    """
    async def write(card_id, **values) -> None:
        async with session_factory() as session:
            await session.execute(
                update(Card).where(Card.id == uuid.UUID(str(card_id))).values(**values)
            )
            await session.commit()

    return write


@pytest.fixture
def card_factory(client, admin_headers, set_card_columns):
    """
    Issue a card for a user through the admin API.

    Usage:
        card = await card_factory("alice", activate=True, balance="100.00")

    Returns the card JSON as the admin API reports it after setup.
    """
    async def make(
        username: str,
        activate: bool = False,
        balance: str | None = None,
        expiry_date: date | None = None,
    ) -> dict:
        owner = await client.get(f"/api/admin/users/by-username/{username}", headers=admin_headers)
        assert owner.status_code == 200, owner.text

        body = {"owner_id": owner.json()["id"]}
        if expiry_date is not None:
            body["expiry_date"] = expiry_date.isoformat()
        created = await client.post("/api/admin/cards", json=body, headers=admin_headers)
        assert created.status_code == 201, created.text
        card_id = created.json()["id"]

        if activate:
            activated = await client.patch(f"/api/admin/cards/{card_id}/activate", headers=admin_headers)
            assert activated.status_code == 200, activated.text
        if balance is not None:
            await set_card_columns(card_id, balance=Decimal(balance))

        current = await client.get(f"/api/admin/cards/{card_id}", headers=admin_headers)
        assert current.status_code == 200, current.text
        return current.json()

    return make
