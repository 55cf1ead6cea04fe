from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator
import logging

from sqlalchemy import event, Engine, Result, CursorResult
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine

import config
from models.base import Base
"""
Imports of these models are needed to correctly create tables in the database.
For more information see https://stackoverflow.com/questions/7478403/sqlalchemy-classes-across-files
"""
from models.order import Order
from models.payment import Payment

logger = logging.getLogger(__name__)

# SQL echo stays off; SQLAlchemy logger levels are set in utils/logging_config.py
sql_echo = False

engine: AsyncEngine | None = None
session_maker: async_sessionmaker[AsyncSession] | None = None


def init_engine(url: str | None = None, **engine_kwargs) -> AsyncEngine:
    """
    (Re)create the async engine and session factory.

    Called once at import with config.DB_URL. Tests call it again with a
    throwaway sqlite file per test.
    """
    global engine, session_maker
    url = url or config.DB_URL
    engine = create_async_engine(url, echo=sql_echo, **engine_kwargs)
    if engine.url.get_backend_name() == "sqlite" and engine.url.database and engine.url.database != ":memory:":
        data_folder = Path(engine.url.database).parent
        if data_folder.exists() is False:
            data_folder.mkdir(parents=True)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    logger.debug(f"Database engine initialized for {engine.url.drivername}")
    return engine


init_engine()


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    session = None
    try:
        async with session_maker() as async_session:
            session = async_session
            yield session
    finally:
        if session is not None:
            await session.close()


async def session_execute(stmt, session: AsyncSession) -> Result[Any] | CursorResult[Any]:
    query_result = await session.execute(stmt)
    return query_result


async def session_flush(session: AsyncSession) -> None:
    await session.flush()


async def session_commit(session: AsyncSession) -> None:
    await session.commit()


async def session_rollback(session: AsyncSession) -> None:
    await session.rollback()


async def session_refresh(session: AsyncSession, instance) -> None:
    await session.refresh(instance)


@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


async def create_db_and_tables():
    # Creates missing tables only; existing rows are final records and are never dropped
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
