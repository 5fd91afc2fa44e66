"""Async SQLAlchemy engine, session factory, and FastAPI dependency."""

from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.pool import StaticPool
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import get_settings


def _enable_sqlite_transactions(engine: AsyncEngine) -> None:
    """Let SQLAlchemy own BEGIN/SAVEPOINT on SQLite and turn on foreign keys.

    The sqlite3 driver otherwise issues its own BEGIN lazily, which breaks
    SAVEPOINT-based atomic units and leaves ON DELETE clauses inert.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine with per-dialect pool settings."""
    kwargs: dict = {"echo": echo}
    if database_url.startswith("postgresql"):
        kwargs.update(pool_size=20, max_overflow=10, pool_pre_ping=True)
    elif database_url.startswith("sqlite"):
        kwargs.update(connect_args={"check_same_thread": False})
        if ":memory:" in database_url or database_url.endswith("://"):
            # StaticPool ensures all connections share the same in-memory database
            kwargs.update(poolclass=StaticPool)

    new_engine = create_async_engine(database_url, **kwargs)
    if new_engine.dialect.name == "sqlite":
        _enable_sqlite_transactions(new_engine)
    return new_engine


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


settings = get_settings()

engine = build_engine(settings.database_url, echo=settings.debug)

async_session_factory = build_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async DB session.

    Commits when the route returns normally, rolls back if it raises.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
