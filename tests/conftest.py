"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import typing as typ

import dramatiq
import pytest_asyncio
from dramatiq.brokers.stub import StubBroker
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from steward.store import init_store

if typ.TYPE_CHECKING:
    from pathlib import Path

# Actor modules bind to the global broker at import time.
dramatiq.set_broker(StubBroker())


async def _setup_sqlite(tmp_path: Path) -> AsyncEngine:
    """Create a SQLite engine and initialise the store tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'steward_test.db'}")
    try:
        await init_store(engine)
    except Exception:
        await engine.dispose()
        raise
    return engine


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> typ.AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Yield a fresh async session factory backed by sqlite."""
    engine = await _setup_sqlite(tmp_path)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()
