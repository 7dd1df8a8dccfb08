"""Async engine and session helper for the journey store."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from . import models  # noqa: F401  registers tables on SQLModel.metadata


class JourneyDB:
    """Async database helper owning the engine for the journey tables."""

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.database_url = database_url
        self.engine: AsyncEngine = create_async_engine(
            database_url, echo=echo, future=True, **_engine_options(database_url)
        )

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Session whose writes commit together or roll back on any error."""
        async with self.session() as session:
            async with session.begin():
                yield session


def _engine_options(database_url: str) -> dict:
    if not database_url.startswith("sqlite"):
        return {}
    options: dict = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in database_url or database_url.rstrip("/") == "sqlite+aiosqlite:":
        # a single shared connection keeps the in-memory database alive
        options["poolclass"] = StaticPool
    return options
