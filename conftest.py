"""
conftest.py  – Test fixtures for the workspace access backend.

Key points
----------
* Service and API tests run against `tests.fakes.InMemoryStore`, which is
  monkeypatched over the `crud_*` modules; no database needed.
* httpx.AsyncClient with dependency overrides for DB, notifier and document
  store. Auth goes through the real dependency using stub (dot-less) bearer
  tokens, which resolve to the user's `firebase_uid`.
* Postgres integration tests use `pg_pool` / `pg_conn` against TEST_DATABASE_URL
  or, when unset, a disposable testcontainers Postgres.
"""
import os
from pathlib import Path

# Must happen before anything imports app.core.config
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DOTENV_PATH", str(Path(__file__).resolve().parent / ".env.test"))

from typing import Any, Callable, Dict

import asyncpg
import pytest
import pytest_asyncio
import sentry_sdk
from httpx import ASGITransport, AsyncClient

from main import app as fastapi_app
from app.db import schema
from tests.fakes import FakeDocumentStore, FakeNotifier, InMemoryStore


# --------------------------------------------------------------------------
# In-memory persistence
# --------------------------------------------------------------------------
@pytest.fixture()
def store(monkeypatch) -> InMemoryStore:
    s = InMemoryStore()
    s.install(monkeypatch)
    return s


@pytest.fixture()
def db(store: InMemoryStore):
    return store.connection()


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def documents() -> FakeDocumentStore:
    return FakeDocumentStore()


# --------------------------------------------------------------------------
# Helper fixtures for common test data
# --------------------------------------------------------------------------
@pytest.fixture()
def owner(store: InMemoryStore) -> Dict[str, Any]:
    return store.add_user("owner@example.com", "Olivia Owner")


@pytest.fixture()
def alice(store: InMemoryStore) -> Dict[str, Any]:
    return store.add_user("alice@example.com", "Alice")


@pytest.fixture()
def bob(store: InMemoryStore) -> Dict[str, Any]:
    return store.add_user("bob@example.com", "Bob")


@pytest.fixture()
def sysadmin(store: InMemoryStore) -> Dict[str, Any]:
    return store.add_user("root@example.com", "Root", role="admin")


# --------------------------------------------------------------------------
# httpx.AsyncClient with dependency overrides
# --------------------------------------------------------------------------
@pytest_asyncio.fixture()
async def client(db, notifier, documents):
    from app.api import deps

    async def override_get_db():
        yield db

    fastapi_app.dependency_overrides[deps.get_db] = override_get_db
    fastapi_app.dependency_overrides[deps.get_notifier] = lambda: notifier
    fastapi_app.dependency_overrides[deps.get_document_store] = lambda: documents

    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    fastapi_app.dependency_overrides.clear()


# ---------- helper: build an Authorization header for a given user ----------
@pytest.fixture
def make_auth_header() -> Callable[..., Dict[str, str]]:
    """
    Tests call:  headers = make_auth_header(test_user)
    """
    def _make(user: Dict[str, Any], token_type: str = "Bearer") -> Dict[str, str]:
        return {"Authorization": f"{token_type} {user['firebase_uid']}"}

    return _make


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """
    Ensure SlowAPI’s in-memory storage is empty for every test.
    """
    limiter = getattr(fastapi_app.state, "limiter", None)
    if limiter:
        limiter.reset()
    yield
    if limiter:
        limiter.reset()


# --------------------------------------------------------------------------
# Postgres fixtures
# --------------------------------------------------------------------------
@pytest.fixture(scope="session")
def postgres_dsn():
    """
    TEST_DATABASE_URL when set, otherwise a throwaway container for the
    session. Skips only when neither is available.
    """
    dsn = os.getenv("TEST_DATABASE_URL")
    if dsn:
        yield dsn
        return

    postgres = pytest.importorskip("testcontainers.postgres")
    docker_errors = pytest.importorskip("docker.errors")
    container = postgres.PostgresContainer("postgres:16-alpine", driver=None)
    try:
        container.start()
    except (docker_errors.DockerException, ConnectionError) as exc:
        pytest.skip(f"TEST_DATABASE_URL not set and Docker is unavailable: {exc}")
    try:
        yield container.get_connection_url()
    finally:
        container.stop()


@pytest_asyncio.fixture()
async def pg_pool(postgres_dsn):
    pool = await asyncpg.create_pool(dsn=postgres_dsn, min_size=2, max_size=6)
    async with pool.acquire() as conn:
        for statement in schema.CREATE_STATEMENTS:
            await conn.execute(statement)
        await _wipe_db(conn)
    try:
        yield pool
    finally:
        async with pool.acquire() as conn:
            await _wipe_db(conn)
        await pool.close()


@pytest_asyncio.fixture()
async def pg_conn(pg_pool):
    async with pg_pool.acquire() as conn:
        yield conn


async def _wipe_db(conn: asyncpg.Connection) -> None:
    """TRUNCATE all data-bearing tables."""
    await conn.execute(f"TRUNCATE {', '.join(schema.TABLES)} RESTART IDENTITY CASCADE")


@pytest.fixture(scope="session", autouse=True)
def _close_sentry():
    """
    Flush the event queue and disable the client after the test
    session ends, if a client was initialised.
    """
    yield

    sentry_sdk.flush()

    client = sentry_sdk.get_client()
    if client is not None:
        client.close(timeout=2.0)
