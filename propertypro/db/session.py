"""
db/session.py
-------------
Async SQLAlchemy engine and session factory for the SQL storage backend.

Nothing is created at import time: the in-memory backend and the test suite
never open a connection pool. build_engine() is called once per process,
either by storage/provider.py at startup or by create_tables.py.

Pool settings:
  - pool_size=10, max_overflow=20 → max 30 concurrent DB connections.
    An audit write opens its own session after the response, so budget
    roughly two connections per in-flight mutating request.
  - pool_pre_ping=True: validates connections before checkout.
  - expire_on_commit=False: rows handed back by SqlStorage stay readable
    after the unit of work commits.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from propertypro.core.config import settings


def build_engine(database_url: Optional[str] = None) -> AsyncEngine:
    return create_async_engine(
        database_url or settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
