"""Pytest fixtures for PostgreSQL integration tests.

Fixtures connect to the database named by the POSTGRES_* settings, apply the
schema through the store itself and wipe candidate data around every test.
Everything here is skipped when the database is not reachable.
"""

from typing import AsyncGenerator

import psycopg2
import pytest
import pytest_asyncio
from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT

from tally_api.config import settings
from tally_api.database import Database


def pytest_collection_modifyitems(items):
    """Mark every test in this package as needing PostgreSQL."""
    for item in items:
        if "integration" in str(item.path):
            item.add_marker(pytest.mark.postgres)


@pytest.fixture(scope="session")
def postgres_connection():
    """PostgreSQL connection for direct database operations.

    Yields a psycopg2 connection for test assertions and setup.
    """
    try:
        conn = psycopg2.connect(
            host=settings.POSTGRES_HOST,
            port=settings.POSTGRES_PORT,
            dbname=settings.POSTGRES_DB,
            user=settings.POSTGRES_USER,
            password=settings.POSTGRES_PASSWORD,
            connect_timeout=3
        )
    except psycopg2.OperationalError as e:
        pytest.skip(f"PostgreSQL not available: {e}")

    conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)

    yield conn

    conn.close()


@pytest.fixture
def postgres_client(postgres_connection):
    """PostgreSQL cursor for executing queries."""
    cursor = postgres_connection.cursor()
    yield cursor
    cursor.close()


@pytest_asyncio.fixture
async def database(postgres_client) -> AsyncGenerator[Database, None]:
    """Initialized store with seeded positions and no candidates."""
    db = Database(dsn=settings.postgres_dsn)
    await db.initialize()

    postgres_client.execute("TRUNCATE TABLE tallies, candidates RESTART IDENTITY CASCADE")

    yield db

    postgres_client.execute("TRUNCATE TABLE tallies, candidates RESTART IDENTITY CASCADE")
    await db.close()


@pytest.fixture
def count_of(postgres_client):
    """Read a candidate's stored count directly."""
    def _count(candidate_id: int):
        postgres_client.execute(
            "SELECT count FROM tallies WHERE candidate_id = %s", (candidate_id,)
        )
        row = postgres_client.fetchone()
        return row[0] if row else None

    return _count


@pytest.fixture
def candidate_triples(postgres_client):
    """Read the stored (name, class, position_key) set directly."""
    def _triples() -> set:
        postgres_client.execute("SELECT name, class, position_key FROM candidates")
        return set(postgres_client.fetchall())

    return _triples
