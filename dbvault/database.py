"""Metadata store engine, sessions and schema bootstrap.

One lazily created async engine backs the job ledger, audit log, webhook
registrations and backup schedules. On SQLite the journal and sync
PRAGMAs come from configuration.
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import DbVaultConfig
from .models.base import Base

logger = logging.getLogger("dbvault.database")

_engine = None
_session_factory = None


def get_engine(config: DbVaultConfig):
    """Get or create the async engine for the metadata store."""
    global _engine
    if _engine is None:
        connect_args = {}
        if config.database_url.startswith("sqlite"):
            connect_args["timeout"] = config.db_busy_timeout_ms / 1000
        _engine = create_async_engine(
            config.database_url,
            echo=config.debug,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
    return _engine


def get_session_factory(config: DbVaultConfig) -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(config), expire_on_commit=False)
    return _session_factory


def sqlite_pragmas(config: DbVaultConfig) -> list[str]:
    """PRAGMA statements applied to a SQLite metadata store."""
    pragmas = [
        f"PRAGMA busy_timeout={int(config.db_busy_timeout_ms)}",
        f"PRAGMA synchronous={config.db_synchronous}",
    ]
    if config.db_wal_mode:
        pragmas.insert(0, "PRAGMA journal_mode=WAL")
    return pragmas


async def _apply_sqlite_pragmas(engine: AsyncEngine, config: DbVaultConfig) -> None:
    if engine.dialect.name != "sqlite":
        return
    async with engine.begin() as conn:
        for pragma in sqlite_pragmas(config):
            await conn.execute(text(pragma))
    logger.info(
        "SQLite PRAGMAs applied: wal=%s, busy_timeout=%d, synchronous=%s",
        config.db_wal_mode,
        config.db_busy_timeout_ms,
        config.db_synchronous,
    )


async def create_tables(config: DbVaultConfig) -> None:
    """Create any missing metadata tables, then tune SQLite."""
    engine = get_engine(config)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await _apply_sqlite_pragmas(engine, config)


async def get_session(config: DbVaultConfig) -> AsyncSession:
    factory = get_session_factory(config)
    async with factory() as session:
        yield session


async def close_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
