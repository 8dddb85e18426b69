"""Async database engine, session factory and schema bootstrap."""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings


def enable_sqlite_savepoints(eng: AsyncEngine) -> AsyncEngine:
    """Let SQLAlchemy own BEGIN on SQLite so SAVEPOINT / ROLLBACK TO behave."""
    if eng.dialect.name != "sqlite":
        return eng

    @event.listens_for(eng.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return eng


engine = enable_sqlite_savepoints(
    create_async_engine(settings.database_url, echo=settings.echo_sql)
)
async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency that yields an async session."""
    async with async_session_factory() as session:
        yield session


async def create_all(bind: AsyncEngine | None = None) -> None:
    """Create every sync table directly (SQLite dev/test; PostgreSQL uses Alembic)."""
    from .models import Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
