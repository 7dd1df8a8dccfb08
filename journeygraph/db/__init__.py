"""Persistence layer for journey graphs."""

from __future__ import annotations

from typing import Optional

from ..config import JourneyGraphConfig, load_config
from .journey_db import JourneyDB
from .models import (
    ENTRANCE_TYPE,
    Journey,
    JourneyStep,
    JourneyStepChild,
    JourneyUserStep,
)

_db_instance: JourneyDB | None = None


def normalize_database_url(database_url: str) -> str:
    """Map plain database URLs onto the async drivers used by the engine."""
    if database_url.startswith(("sqlite+aiosqlite://", "postgresql+asyncpg://")):
        return database_url
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_journey_db(
    database_url: Optional[str] = None, config: Optional[JourneyGraphConfig] = None
) -> JourneyDB:
    """Factory function to obtain the journey database.

    The URL can be provided explicitly, via environment variable
    ``JOURNEYGRAPH_DATABASE_URL`` or ``DATABASE_URL``, or from loaded
    configuration. Without any of these ``journeys.db`` in the working
    directory is used.
    Calls without arguments reuse the previously created instance.
    """

    global _db_instance
    if _db_instance is not None and database_url is None and config is None:
        return _db_instance

    config = config or load_config()
    url = normalize_database_url(database_url or config.database.url)
    _db_instance = JourneyDB(url, echo=config.database.echo)
    return _db_instance


__all__ = [
    "ENTRANCE_TYPE",
    "Journey",
    "JourneyDB",
    "JourneyStep",
    "JourneyStepChild",
    "JourneyUserStep",
    "get_journey_db",
    "normalize_database_url",
]
