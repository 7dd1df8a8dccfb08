from __future__ import annotations

import logging
import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///journeys.db"


class DatabaseConfig(BaseModel):
    """Connection settings for the journey store."""

    url: str = DEFAULT_DATABASE_URL
    echo: bool = False


class PagingConfig(BaseModel):
    """Defaults applied to paginated journey listings."""

    default_limit: int = Field(default=25, ge=1)
    max_limit: int = Field(default=100, ge=1)


class JourneyGraphConfig(BaseModel):
    """Top-level configuration model."""

    database: DatabaseConfig = DatabaseConfig()
    paging: PagingConfig = PagingConfig()
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> JourneyGraphConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to JOURNEYGRAPH_CONFIG
            env variable or 'journeygraph.yaml' in the current directory.
    """

    config_path = path or os.getenv("JOURNEYGRAPH_CONFIG", "journeygraph.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = JourneyGraphConfig(**data)
    else:
        config = JourneyGraphConfig()

    env_db_url = os.getenv("JOURNEYGRAPH_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database.url = env_db_url
    return config


def configure_logging(level: str | int = "INFO") -> None:
    """Apply a basic logging setup for command line use."""
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
