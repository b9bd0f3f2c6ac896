"""Common test fixtures and configuration for pytest.

This module contains fixtures that can be used across all types of tests:
- Unit tests run against in-memory billing adapters
- Integration tests run against an in-memory SQLite database
"""

from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tollgate.models._base import Base

# Import all fixtures so they are automatically available for all tests
from tests.fixtures.billing import (  # noqa
    database,
    declared_plans,
    events,
    payment_options,
    provider,
    synced_provider,
    vendor,
)
from tests.fixtures.models import Export  # noqa: F401  registers the export table


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh in-memory database with all tables for each test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker:
    """Session factory bound to the test database."""
    return async_sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=db_engine
    )
