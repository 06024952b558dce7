"""
Database handle.

One Database object is constructed per process (FastAPI lifespan or Celery
task run) and passed to every service that needs persistence. Nothing in the
codebase looks an engine up from module state.

Flow:
  1. Database(url) builds the async engine and the session factory.
  2. Services open a unit of work with `async with db.session() as session:`.
     The transaction commits when the block exits normally and rolls back
     when it raises.
  3. dispose() closes the connection pool at shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from careify.core.config import Settings, settings as default_settings
from careify.models import cases as _case_models  # noqa: F401  registers cases + sequences
from careify.models.documents import Base

logger = logging.getLogger(__name__)


class Database:
    """Owns the engine and session factory for one process."""

    def __init__(self, url: str, *, engine: AsyncEngine | None = None, **engine_kwargs) -> None:
        self.url = url
        self.engine: AsyncEngine = engine or create_async_engine(url, **engine_kwargs)

        # expire_on_commit=False keeps ORM objects usable after commit
        self._sessionmaker = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> "Database":
        cfg = cfg or default_settings
        return cls(
            cfg.database_url,
            pool_size=cfg.db_pool_size,
            max_overflow=cfg.db_max_overflow,
            pool_pre_ping=True,          # detect stale connections before use
            pool_recycle=3600,
            echo=cfg.db_echo_sql,
        )

    # ------------------------------------------------------------------
    # Units of work
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session inside a transaction; commit on exit, rollback on error."""
        async with self._sessionmaker() as session:
            async with session.begin():
                yield session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_all(self) -> None:
        """Create the intake schema and tables (local dev / first boot)."""
        async with self.engine.begin() as conn:
            await conn.execute(text("CREATE SCHEMA IF NOT EXISTS intake"))
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured | url=%s", self.engine.url.render_as_string(hide_password=True))

    async def check_health(self) -> dict:
        """Ping the database; used by the /ready endpoint."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "ok"}
        except Exception as exc:
            logger.error("DB health check failed: %s", exc)
            return {"status": "error", "detail": str(exc)}

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("Database pool disposed")
