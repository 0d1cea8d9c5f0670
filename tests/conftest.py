"""
Shared test configuration and fixtures for Scribe tests.

Provides database setup, session management, Redis clients, and fakes for the
HTTP and database collaborators of the resolution pipeline.
"""

import os
import uuid
from typing import Any, List
import pytest
import pytest_asyncio
import redis.asyncio as redis
import fakeredis.aioredis
from sqlalchemy import text
from sqlalchemy.sql.dml import UpdateBase
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from social.graze.scribe.model.base import Base


# Test database configuration
TEST_DB_HOST = os.getenv("TEST_DB_HOST", "postgres")
TEST_DB_PORT = os.getenv("TEST_DB_PORT", "5432")
TEST_DB_USER = os.getenv("TEST_DB_USER", "postgres")
TEST_DB_PASSWORD = os.getenv("TEST_DB_PASSWORD", "password")

# Admin URL for database creation/deletion (connects to postgres database)
ADMIN_DATABASE_URL = f"postgresql+asyncpg://{TEST_DB_USER}:{TEST_DB_PASSWORD}@{TEST_DB_HOST}:{TEST_DB_PORT}/postgres"


async def check_postgres_available():
    """Check if PostgreSQL is available for testing."""
    try:
        admin_engine = create_async_engine(ADMIN_DATABASE_URL, echo=False)
        async with admin_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        await admin_engine.dispose()
        return True
    except Exception:
        return False


@pytest_asyncio.fixture(scope="function")
async def test_database():
    """Create and clean up test database for each test function."""
    if not await check_postgres_available():
        pytest.skip("PostgreSQL database not available for testing")

    # Use a unique database name for each test to avoid conflicts
    unique_db_name = f"scribe_test_{uuid.uuid4().hex[:8]}"
    unique_db_url = (
        f"postgresql+asyncpg://{TEST_DB_USER}:{TEST_DB_PASSWORD}@"
        f"{TEST_DB_HOST}:{TEST_DB_PORT}/{unique_db_name}"
    )

    admin_engine = create_async_engine(
        ADMIN_DATABASE_URL, echo=False, isolation_level="AUTOCOMMIT"
    )

    try:
        async with admin_engine.connect() as conn:
            await conn.execute(text(f"CREATE DATABASE {unique_db_name}"))

        yield unique_db_url

    finally:
        async with admin_engine.connect() as conn:
            await conn.execute(text(f"DROP DATABASE IF EXISTS {unique_db_name}"))
        await admin_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def engine(test_database):
    """Create async SQLAlchemy engine for testing with PostgreSQL."""
    engine = create_async_engine(test_database, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(engine):
    """Create the async session factory the application components expect."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(session_maker):
    """Create async database session for testing."""
    async with session_maker() as session:
        yield session


# Redis test configuration and fixtures
TEST_REDIS_HOST = os.getenv("TEST_REDIS_HOST", "valkey")
TEST_REDIS_PORT = int(os.getenv("TEST_REDIS_PORT", "6379"))
TEST_REDIS_DB = int(os.getenv("TEST_REDIS_DB", "15"))  # Use a separate test DB


async def check_redis_available():
    """Check if Redis is available for testing."""
    try:
        redis_client = redis.Redis(
            host=TEST_REDIS_HOST,
            port=TEST_REDIS_PORT,
            db=TEST_REDIS_DB,
            decode_responses=False,
        )
        await redis_client.ping()
        await redis_client.aclose()
        return True
    except Exception:
        return False


@pytest_asyncio.fixture
async def redis_client():
    """Provide real Redis client for integration tests."""
    if not await check_redis_available():
        pytest.skip("Redis server not available for testing")

    client = redis.Redis(
        host=TEST_REDIS_HOST,
        port=TEST_REDIS_PORT,
        db=TEST_REDIS_DB,
        decode_responses=False,
    )

    await client.flushdb()

    yield client

    await client.flushdb()
    await client.aclose()


@pytest_asyncio.fixture
async def fake_redis_client():
    """Provide fake Redis client for unit tests."""
    client = fakeredis.aioredis.FakeRedis(decode_responses=False)
    yield client
    await client.flushall()
    await client.aclose()


class FakeDatabaseSession:
    """Records every statement executed through it."""

    def __init__(self, statements: List[Any], scalar_result: Any = None):
        self.statements = statements
        self.scalar_result = scalar_result

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def begin(self):
        return self

    async def execute(self, statement):
        self.statements.append(statement)

    async def scalars(self, statement):
        self.statements.append(statement)
        return FakeScalarResult(self.scalar_result)


class FakeScalarResult:
    def __init__(self, value: Any):
        self.value = value

    def one_or_none(self):
        return self.value

    def all(self):
        return list(self.value or [])


class FakeSessionMaker:
    """Stands in for an async_sessionmaker, sharing one statement log."""

    def __init__(self, scalar_result: Any = None):
        self.statements: List[Any] = []
        self.scalar_result = scalar_result

    def __call__(self):
        return FakeDatabaseSession(self.statements, self.scalar_result)

    def tables_written(self) -> List[str]:
        return [
            statement.table.name
            for statement in self.statements
            if isinstance(statement, UpdateBase)
        ]


@pytest.fixture
def fake_session_maker():
    return FakeSessionMaker()
