import asyncio
import logging

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

Base = declarative_base()

CHECKPOINT_MODES = ("PASSIVE", "FULL", "RESTART", "TRUNCATE")


def is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def make_engine(database_url: str) -> AsyncEngine:
    engine = create_async_engine(database_url)

    # SQLite: WAL journal, enforced foreign keys, fsync only at checkpoints
    if is_sqlite(database_url):
        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    return engine


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    # imported for its side effect of registering the tables on Base
    from . import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def checkpoint(engine: AsyncEngine, mode: str = "TRUNCATE") -> None:
    """Fold the write-ahead log back into the main database file."""
    if mode not in CHECKPOINT_MODES:
        raise ValueError(f"unknown checkpoint mode: {mode}")
    if not is_sqlite(str(engine.url)):
        return
    async with engine.connect() as conn:
        await conn.exec_driver_sql(f"PRAGMA wal_checkpoint({mode})")


async def checkpoint_periodically(engine: AsyncEngine, interval: float) -> None:
    """Run until cancelled, checkpointing the WAL every `interval` seconds."""
    while True:
        await asyncio.sleep(interval)
        try:
            await checkpoint(engine, "TRUNCATE")
        except SQLAlchemyError:
            logger.exception("periodic WAL checkpoint failed")


async def close_db(engine: AsyncEngine) -> None:
    """Final checkpoint, then release every pooled connection."""
    try:
        await checkpoint(engine, "FULL")
    except SQLAlchemyError:
        logger.exception("final WAL checkpoint failed")
    await engine.dispose()
    logger.info("database closed")
