import asyncio
import os
import sys
from pathlib import Path

import pytest

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./metchi_test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("REDIS_URL", "redis://localhost:6399/0")

sys.path.append(str(Path(__file__).resolve().parents[1]))

from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.models import Base


@pytest.fixture
def session_factory(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'metchi.db'}",
        poolclass=NullPool,
    )

    async def init_models():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())

    yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    asyncio.run(engine.dispose())


@pytest.fixture
def serialized_session_factory(tmp_path):
    """Sessions whose transactions take SQLite's write lock at BEGIN

    Lets tests run services concurrently on separate sessions: a second
    writer waits for the first to commit instead of failing a lock upgrade.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'metchi_serialized.db'}",
        poolclass=NullPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async def init_models():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())

    yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    asyncio.run(engine.dispose())
