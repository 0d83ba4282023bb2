"""
Shared test configuration and fixtures.
"""

import asyncio
import os
from unittest.mock import patch

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import func, insert, select
from sqlalchemy.pool import NullPool

# Set environment variables before importing app
with patch.dict(
    os.environ,
    {
        "JWT_SECRET": "test-access-secret",
        "JWT_REFRESH_SECRET": "test-refresh-secret",
        "DB_CREATE_SCHEMA": "false",
    },
):
    from federated_login.main import app
    from federated_login.infrastructure.passwords import BcryptPasswordHasher
    from federated_login.infrastructure.sql_store import SqlStore
    from federated_login.oauth.config import OAuthSettings, get_oauth_settings
    from federated_login.oauth.dependencies import get_password_hasher, get_store


ACCESS_SECRET = "test-access-secret"
REFRESH_SECRET = "test-refresh-secret"

GOOGLE_PROVIDER = {
    "name": "Google",
    "slug": "google",
    "client_id": "TEST_GOOGLE_CLIENT_ID",
    "secret_env_key": "TEST_GOOGLE_CLIENT_SECRET",
    "scope": ["email", "profile"],
    "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
    "token_url": "https://oauth2.googleapis.com/token",
    "user_info_url": "https://openidconnect.googleapis.com/v1/userinfo",
    "redirect_uri": "http://localhost:8080/oauth/google/callback",
    "active": True,
    "response_params": {},
}

GITHUB_PROVIDER = {
    "name": "GitHub",
    "slug": "github",
    "client_id": "TEST_GITHUB_CLIENT_ID",
    "secret_env_key": "TEST_GITHUB_CLIENT_SECRET",
    "scope": ["read:user", "user:email"],
    "auth_url": "https://github.com/login/oauth/authorize",
    "token_url": "https://github.com/login/oauth/access_token",
    "user_info_url": "https://api.github.com/user",
    "redirect_uri": "http://localhost:8080/oauth/github/callback",
    "active": False,
    "response_params": {"accept": "json"},
}

PROVIDER_ENV = {
    "TEST_GOOGLE_CLIENT_ID": "google-client-id",
    "TEST_GOOGLE_CLIENT_SECRET": "google-client-secret",
}


def make_settings(**overrides) -> OAuthSettings:
    """Settings with test signing secrets; schema is created by fixtures."""
    values = {
        "jwt_secret": ACCESS_SECRET,
        "jwt_refresh_secret": REFRESH_SECRET,
        "create_schema": False,
    }
    values.update(overrides)
    return OAuthSettings(**values)


async def prepare_store(store: SqlStore) -> SqlStore:
    await store.create_tables()
    await store.seed_providers([GOOGLE_PROVIDER, GITHUB_PROVIDER])
    return store


async def count_rows(store: SqlStore, table) -> int:
    async with store.engine.connect() as conn:
        result = await conn.execute(select(func.count()).select_from(table))
        return result.scalar_one()


async def fetch_rows(store: SqlStore, table) -> list:
    async with store.engine.connect() as conn:
        result = await conn.execute(select(table))
        return result.all()


async def insert_rows(store: SqlStore, table, rows: list[dict]) -> None:
    async with store.engine.begin() as conn:
        for row in rows:
            await conn.execute(insert(table).values(**row))


@pytest.fixture
def database_url(tmp_path):
    """File-backed SQLite database, unique per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'login.db'}"


@pytest.fixture(autouse=True)
def provider_env():
    """Client credentials referenced by the test provider rows."""
    with patch.dict(os.environ, PROVIDER_ENV):
        yield


@pytest_asyncio.fixture
async def store(database_url):
    """Migrated and seeded store for async tests."""
    sql_store = SqlStore.from_url(database_url, poolclass=NullPool)
    await prepare_store(sql_store)
    yield sql_store
    await sql_store.close()


@pytest.fixture
def app_store(database_url):
    """
    Migrated and seeded store for TestClient tests.

    NullPool keeps no connection bound to the setup event loop, so the
    store can be shared with the app's request loop.
    """
    sql_store = SqlStore.from_url(database_url, poolclass=NullPool)
    asyncio.run(prepare_store(sql_store))
    yield sql_store
    asyncio.run(sql_store.close())


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def client(app_store, settings):
    """Test client wired to the test store, settings and a fast hasher."""
    app.dependency_overrides[get_store] = lambda: app_store
    app.dependency_overrides[get_oauth_settings] = lambda: settings
    app.dependency_overrides[get_password_hasher] = lambda: BcryptPasswordHasher(rounds=4)

    yield TestClient(app)

    app.dependency_overrides.clear()
