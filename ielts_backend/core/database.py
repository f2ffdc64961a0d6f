# ielts_backend/core/database.py
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from ielts_backend.core.config import get_database_url


def build_engine(db_url: str) -> AsyncEngine:
    """Create an async engine configured for the target database."""
    if "sqlite" in db_url:
        eng = create_async_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False},
        )

        # pysqlite's implicit transaction handling breaks SAVEPOINT;
        # let SQLAlchemy emit BEGIN itself.
        @event.listens_for(eng.sync_engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(eng.sync_engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return eng

    return create_async_engine(
        db_url,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


engine = build_engine(get_database_url())

SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

class Base(DeclarativeBase):
    pass

async def get_db():
    async with SessionLocal() as session:
        yield session


@asynccontextmanager
async def unit_of_work(session_factory: Optional[async_sessionmaker] = None) -> AsyncIterator[AsyncSession]:
    """Open a session with one transaction around the block.

    Commits when the block exits normally and rolls back on any exception,
    so every credit mutation and its ledger entry land together or not at all.
    """
    factory = session_factory or SessionLocal
    async with factory() as session:
        async with session.begin():
            yield session


async def init_models(target: Optional[AsyncEngine] = None) -> None:
    # registers every table on Base.metadata
    import ielts_backend.models  # noqa: F401

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
