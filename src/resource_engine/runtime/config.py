"""
Engine configuration from environment variables.

Single source of truth for the database URL, pool sizing, logging and HTTP
settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import cache

DEFAULT_DATABASE_URL = "sqlite:///.resource_engine/data.db"


def normalize_database_url(url: str) -> str:
    """Normalize a database URL to a SQLAlchemy URL.

    Heroku-style ``postgres://`` and bare ``postgresql://`` URLs are pointed at
    the psycopg (v3) driver.
    """
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _bool_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineConfig:
    """Engine configuration.

    Attributes:
        database_url: SQLAlchemy database URL
        pool_size: Connections kept in the pool
        max_overflow: Extra connections allowed beyond pool_size
        pool_timeout: Seconds to wait for a free connection
        echo_sql: Log every statement SQLAlchemy emits
        log_level: Logging level name
        log_dir: Directory for the JSONL log file
        api_prefix: Mount prefix for the HTTP adapter
        default_page_size: Default ``limit`` for list queries
    """

    database_url: str = DEFAULT_DATABASE_URL
    pool_size: int = 5
    max_overflow: int = 5
    pool_timeout: int = 30
    echo_sql: bool = False
    log_level: str = "INFO"
    log_dir: str = ".resource_engine/logs"
    api_prefix: str = "/api"
    default_page_size: int = 50

    @property
    def sqlalchemy_url(self) -> str:
        return normalize_database_url(self.database_url)


def load_config() -> EngineConfig:
    """Read configuration from the environment (uncached).

    Environment variables:
        - DATABASE_URL
        - RESOURCE_ENGINE_POOL_SIZE / _MAX_OVERFLOW / _POOL_TIMEOUT
        - RESOURCE_ENGINE_ECHO_SQL
        - RESOURCE_ENGINE_LOG_LEVEL / _LOG_DIR
        - RESOURCE_ENGINE_API_PREFIX
        - RESOURCE_ENGINE_DEFAULT_PAGE_SIZE
    """
    return EngineConfig(
        database_url=os.environ.get("DATABASE_URL") or DEFAULT_DATABASE_URL,
        pool_size=_int_env("RESOURCE_ENGINE_POOL_SIZE", 5, minimum=1),
        max_overflow=_int_env("RESOURCE_ENGINE_MAX_OVERFLOW", 5),
        pool_timeout=_int_env("RESOURCE_ENGINE_POOL_TIMEOUT", 30, minimum=1),
        echo_sql=_bool_env("RESOURCE_ENGINE_ECHO_SQL", False),
        log_level=os.environ.get("RESOURCE_ENGINE_LOG_LEVEL", "INFO").upper(),
        log_dir=os.environ.get("RESOURCE_ENGINE_LOG_DIR", ".resource_engine/logs"),
        api_prefix=os.environ.get("RESOURCE_ENGINE_API_PREFIX", "/api").rstrip("/"),
        default_page_size=_int_env("RESOURCE_ENGINE_DEFAULT_PAGE_SIZE", 50, minimum=1),
    )


@cache
def get_config() -> EngineConfig:
    """Load configuration once per process."""
    return load_config()
