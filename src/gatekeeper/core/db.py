"""
Database manager (async SQLAlchemy).

A shared manager owns the engine and sessionmaker. Repositories open one
short transaction per store operation through `transaction()`.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import sqlalchemy as sa  # type: ignore[import-not-found]
from sqlalchemy.ext.asyncio import (  # type: ignore[import-not-found]
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from gatekeeper.commons.exceptions import BaseCoreException
from gatekeeper.commons.logging import logger
from gatekeeper.core.settings import Settings, settings


class DatabaseException(BaseCoreException):
    pass


def build_dsn(cfg: Settings) -> str:
    # psycopg async driver
    return (
        "postgresql+psycopg://"
        f"{cfg.GATEKEEPER_DB_USER}:{cfg.GATEKEEPER_DB_PASSWORD}"
        f"@{cfg.GATEKEEPER_DB_HOST}:{cfg.GATEKEEPER_DB_PORT}"
        f"/{cfg.GATEKEEPER_DB_NAME}"
    )


class DatabaseManager:
    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.engine: AsyncEngine | None = None
        self.sessionmaker: async_sessionmaker[AsyncSession] | None = None

    async def initialize(self) -> None:
        if self.engine is not None:
            return
        try:
            self.engine = create_async_engine(self.dsn, echo=False, pool_pre_ping=True)
            self.sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)
            logger.info("Database initialized")
        except Exception as exc:
            raise DatabaseException("Failed to initialize database", str(exc)) from exc

    async def shutdown(self) -> None:
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self.sessionmaker = None
        logger.info("Database shut down")

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """One session, one transaction: committed on success, rolled back on error."""
        await self.initialize()
        if self.sessionmaker is None:
            raise DatabaseException("Database is not initialized")
        async with self.sessionmaker() as session:
            async with session.begin():
                yield session

    async def ping(self) -> tuple[bool, str | None]:
        try:
            async with self.transaction() as session:
                await session.execute(sa.text("SELECT 1"))
            return True, None
        except Exception as exc:
            return False, str(exc)


database_manager = DatabaseManager(build_dsn(settings))
