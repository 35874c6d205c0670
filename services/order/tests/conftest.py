"""
Order Service テストの共通フィクスチャ

- 固定時刻の clock
- Redis の代わりの AsyncMock
- SQLite(aiosqlite)上の event_store テーブル
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from factories import fixed_clock, make_member
from ordering.entities import Member
from ordering.event_store import InMemoryEventStore

EVENT_STORE_DDL = """
    CREATE TABLE event_store (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        aggregate_id TEXT NOT NULL,
        aggregate_type TEXT NOT NULL,
        event_type TEXT NOT NULL,
        event_data TEXT NOT NULL,
        version INTEGER NOT NULL,
        created_at TIMESTAMP NOT NULL,
        UNIQUE (aggregate_id, version)
    )
"""


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def member() -> Member:
    return make_member()


@pytest.fixture
def redis() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'events.db'}")
    async with engine.begin() as conn:
        await conn.execute(text(EVENT_STORE_DDL))
    yield sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
