"""
Database manager - the shared store handle.

Owns a bounded SQLAlchemy connection pool for SQLite (development and tests)
or PostgreSQL (production, psycopg v3 driver). The manager is passed
explicitly to every component; nothing reaches for a global engine.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.pool import StaticPool

from resource_engine.runtime.config import (
    DEFAULT_DATABASE_URL,
    EngineConfig,
    normalize_database_url,
)

logger = logging.getLogger(__name__)


def _is_memory_sqlite(database: str | None) -> bool:
    return not database or database == ":memory:" or database.startswith("file::memory:")


class DatabaseManager:
    """
    Manages the connection pool and schema introspection.

    SQLite connections are switched to explicit ``BEGIN`` handling so DDL
    joins the surrounding transaction instead of autocommitting; this is what
    lets a catalog write and its table change commit or roll back together.
    """

    def __init__(
        self,
        database_url: str = DEFAULT_DATABASE_URL,
        *,
        pool_size: int = 5,
        max_overflow: int = 5,
        pool_timeout: int = 30,
        echo: bool = False,
    ):
        """
        Initialize the database manager.

        Args:
            database_url: SQLAlchemy URL (postgres:// URLs are normalized)
            pool_size: Connections kept open in the pool
            max_overflow: Extra connections allowed under load
            pool_timeout: Seconds to wait for a free connection
            echo: Log every emitted statement
        """
        self.url = make_url(normalize_database_url(database_url))
        self.engine: Engine = self._create_engine(pool_size, max_overflow, pool_timeout, echo)

    @classmethod
    def from_config(cls, config: EngineConfig) -> DatabaseManager:
        return cls(
            config.database_url,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            echo=config.echo_sql,
        )

    def _create_engine(
        self, pool_size: int, max_overflow: int, pool_timeout: int, echo: bool
    ) -> Engine:
        if self.url.get_backend_name() != "sqlite":
            return sa.create_engine(
                self.url,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_pre_ping=True,
                echo=echo,
            )

        connect_args: dict[str, Any] = {"check_same_thread": False, "timeout": pool_timeout}
        if _is_memory_sqlite(self.url.database):
            # One shared connection, otherwise every checkout sees a fresh empty database
            engine = sa.create_engine(
                self.url, connect_args=connect_args, poolclass=StaticPool, echo=echo
            )
        else:
            self._ensure_directory()
            engine = sa.create_engine(
                self.url,
                connect_args=connect_args,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                echo=echo,
            )
        self._install_sqlite_transaction_hooks(engine)
        return engine

    def _ensure_directory(self) -> None:
        """Ensure the SQLite database directory exists."""
        if self.url.database:
            Path(self.url.database).parent.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _install_sqlite_transaction_hooks(engine: Engine) -> None:
        @sa.event.listens_for(engine, "connect")
        def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
            # Disable pysqlite's implicit transaction handling
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @sa.event.listens_for(engine, "begin")
        def _on_begin(conn: Connection) -> None:
            conn.exec_driver_sql("BEGIN")

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """
        Get a pooled connection for reads.

        Anything left uncommitted is rolled back when the block exits.
        """
        with self.engine.connect() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """
        Get a pooled connection inside a transaction.

        Commits when the block exits normally, rolls back on any exception.
        """
        with self.engine.begin() as conn:
            yield conn

    def dispose(self) -> None:
        """Close all pooled connections."""
        self.engine.dispose()

    @property
    def backend_type(self) -> str:
        """Dialect name: ``sqlite`` or ``postgresql``."""
        return self.engine.dialect.name

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def table_exists(self, table_name: str, conn: Connection | None = None) -> bool:
        """Check if a table exists."""
        if conn is not None:
            return sa.inspect(conn).has_table(table_name)
        with self.connection() as own:
            return sa.inspect(own).has_table(table_name)

    def get_table_columns(self, table_name: str, conn: Connection | None = None) -> list[str]:
        """Get column names for a table in physical order (empty if absent)."""
        if conn is None:
            with self.connection() as own:
                return self.get_table_columns(table_name, own)
        inspector = sa.inspect(conn)
        if not inspector.has_table(table_name):
            return []
        return [column["name"] for column in inspector.get_columns(table_name)]

    def get_column_info(self, table_name: str, conn: Connection | None = None) -> list[dict[str, Any]]:
        """Get detailed column information for a table."""
        if conn is None:
            with self.connection() as own:
                return self.get_column_info(table_name, own)
        inspector = sa.inspect(conn)
        if not inspector.has_table(table_name):
            return []
        return [
            {
                "name": column["name"],
                "type": str(column["type"]),
                "nullable": column["nullable"],
                "default": column.get("default"),
            }
            for column in inspector.get_columns(table_name)
        ]

    def get_table_indexes(self, table_name: str, conn: Connection | None = None) -> dict[str, bool]:
        """Get index names for a table mapped to their uniqueness."""
        if conn is None:
            with self.connection() as own:
                return self.get_table_indexes(table_name, own)
        inspector = sa.inspect(conn)
        if not inspector.has_table(table_name):
            return {}
        return {
            index["name"]: bool(index.get("unique"))
            for index in inspector.get_indexes(table_name)
            if index.get("name")
        }
