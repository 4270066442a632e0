"""
Database engine, session management, and base model class.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - engine: The async database engine (connection pool for production DBs)
  - AsyncSessionLocal: Factory for creating async database sessions
  - Base: Declarative base class that all ORM models inherit from
  - get_db(): FastAPI dependency that provides a session per request
  - configure_sqlite_transactions(): makes SAVEPOINT work on SQLite

Session lifecycle:
  Each API request gets its own session via get_db(). The session commits
  on success and rolls back on ANY exception, including domain errors, so a
  rejected transfer or lifecycle change never leaves partial writes behind.

SAVEPOINTs on SQLite:
  The card engines retry optimistic-lock conflicts inside begin_nested()
  (SAVEPOINT). The sqlite3/aiosqlite drivers defer BEGIN until the first DML
  statement, which breaks SAVEPOINT semantics. configure_sqlite_transactions()
  applies SQLAlchemy's documented fix: disable the driver's own transaction
  handling and emit BEGIN ourselves when SQLAlchemy starts a transaction.
  It is a no-op for other dialects.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from bankcards.config import settings


def configure_sqlite_transactions(async_engine: AsyncEngine) -> AsyncEngine:
    """Let SQLAlchemy own BEGIN on SQLite so nested transactions are real SAVEPOINTs."""
    if async_engine.dialect.name != "sqlite":
        return async_engine

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return async_engine


# echo=True in debug mode logs all SQL statements.
engine = configure_sqlite_transactions(
    create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
    )
)

# expire_on_commit=False prevents lazy-load errors after commit: accessing
# attributes on a committed object would otherwise trigger a synchronous DB
# call, which fails in async context.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Provides metadata tracking (used by create_all on startup and in tests)
    and the common declarative mapping features.
    """
    pass


async def get_db():
    """
    FastAPI dependency that provides a database session.

    Usage in a route:
        @router.get("/items")
        async def list_items(db: AsyncSession = Depends(get_db)):
            ...

    The session is committed on success and rolled back on any exception,
    then closed when the request completes.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
