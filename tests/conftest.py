"""Pytest configuration and fixtures."""

import os

import pytest
import pytest_asyncio

from recordkit import Settings, create_engine, get_settings, query_stats, set_default_pool


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are cached per process; tests that touch the environment need a clean slate."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def sqlite_pool():
    """Create an in-memory SQLite connection pool, installed as the default."""
    pool = await create_engine("sqlite::memory:", settings=Settings(stats=True))
    query_stats.reset()
    yield pool
    await pool.close()
    set_default_pool(None)
    query_stats.reset()


@pytest_asyncio.fixture
async def db(sqlite_pool):
    """SQLite pool with the catalog schema created."""
    from catalog_models import create_schema

    await create_schema(sqlite_pool)
    query_stats.reset()
    return sqlite_pool


@pytest_asyncio.fixture
async def postgres_pool():
    """Create a PostgreSQL connection pool.

    Set DATABASE_URL environment variable to use a real PostgreSQL database.
    Otherwise, this fixture is skipped.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL not set")

    pool = await create_engine(url, settings=Settings(stats=True))
    yield pool
    await pool.close()
    set_default_pool(None)
