"""Tests for configuration loading and logging setup."""

import json
import logging

import pytest

from resource_engine.runtime.config import (
    DEFAULT_DATABASE_URL,
    load_config,
    normalize_database_url,
)
from resource_engine.runtime.errors import StorageError, storage_error_from
from resource_engine.runtime.logging import ROOT_LOGGER, log_with_context, setup_logging


class TestConfig:
    def test_defaults(self, monkeypatch):
        for name in ("DATABASE_URL", "RESOURCE_ENGINE_API_PREFIX", "RESOURCE_ENGINE_POOL_SIZE"):
            monkeypatch.delenv(name, raising=False)
        config = load_config()
        assert config.database_url == DEFAULT_DATABASE_URL
        assert config.api_prefix == "/api"
        assert config.default_page_size == 50

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db/app")
        monkeypatch.setenv("RESOURCE_ENGINE_POOL_SIZE", "12")
        monkeypatch.setenv("RESOURCE_ENGINE_API_PREFIX", "/v2/")
        monkeypatch.setenv("RESOURCE_ENGINE_ECHO_SQL", "yes")
        config = load_config()
        assert config.sqlalchemy_url == "postgresql+psycopg://u:p@db/app"
        assert config.pool_size == 12
        assert config.api_prefix == "/v2"
        assert config.echo_sql is True

    def test_bad_integer(self, monkeypatch):
        monkeypatch.setenv("RESOURCE_ENGINE_POOL_SIZE", "lots")
        with pytest.raises(ValueError, match="RESOURCE_ENGINE_POOL_SIZE"):
            load_config()

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("postgresql://h/db", "postgresql+psycopg://h/db"),
            ("postgresql+psycopg://h/db", "postgresql+psycopg://h/db"),
            ("sqlite:///x.db", "sqlite:///x.db"),
        ],
    )
    def test_normalize(self, url, expected):
        assert normalize_database_url(url) == expected


class TestStoreErrors:
    def test_sqlite_unique_message(self):
        error = storage_error_from(
            Exception("UNIQUE constraint failed: dyn_person.email"), "create data"
        )
        assert isinstance(error, StorageError)
        assert (error.constraint_type, error.field) == ("unique", "email")
        assert error.message.startswith("Failed to create data: value for field 'email'")

    def test_postgres_not_null_message(self):
        error = storage_error_from(
            Exception('null value in column "title" violates not-null constraint'),
            "update data",
        )
        assert (error.constraint_type, error.field) == ("not_null", "title")

    def test_other_failures(self):
        error = storage_error_from(Exception("database is locked"), "fetch data")
        assert error.constraint_type is None
        assert error.message == "Failed to fetch data: database is locked"


class TestLogging:
    @pytest.fixture(autouse=True)
    def reset_handlers(self):
        yield
        logging.getLogger(ROOT_LOGGER).handlers.clear()

    def test_jsonl_file_with_context(self, tmp_path):
        log_file = setup_logging(tmp_path / "logs", "DEBUG")
        logger = logging.getLogger(f"{ROOT_LOGGER}.runtime.catalog")

        log_with_context(logger, logging.INFO, "Defined resource 'book'", table="dyn_book")
        for handler in logging.getLogger(ROOT_LOGGER).handlers:
            handler.flush()

        entries = [json.loads(line) for line in log_file.read_text().splitlines()]
        entry = entries[-1]
        assert entry["level"] == "INFO"
        assert entry["component"] == "catalog"
        assert entry["message"] == "Defined resource 'book'"
        assert entry["context"] == {"table": "dyn_book"}

    def test_console_only(self):
        assert setup_logging(None) is None
        assert len(logging.getLogger(ROOT_LOGGER).handlers) == 1
