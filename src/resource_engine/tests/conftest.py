"""Shared fixtures for resource engine tests."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from resource_engine.runtime.catalog import ResourceCatalog
from resource_engine.runtime.data_service import DynamicDataService
from resource_engine.runtime.database import DatabaseManager
from resource_engine.runtime.engine import ResourceEngine


@pytest.fixture
def db(tmp_path: Path) -> Iterator[DatabaseManager]:
    """A database manager on an isolated SQLite file."""
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'engine.db'}")
    yield manager
    manager.dispose()


@pytest.fixture
def catalog(db: DatabaseManager) -> ResourceCatalog:
    return ResourceCatalog(db)


@pytest.fixture
def data_service(catalog: ResourceCatalog) -> DynamicDataService:
    return DynamicDataService(catalog)


@pytest.fixture
def engine(db: DatabaseManager) -> ResourceEngine:
    return ResourceEngine(db)


@pytest.fixture
def book_declaration() -> dict[str, Any]:
    """The canonical book resource: a required title and optional page count."""
    return {
        "name": "book",
        "displayName": "Book",
        "fields": [
            {"name": "title", "type": "STRING", "required": True},
            {"name": "pages", "type": "INTEGER"},
        ],
    }


@pytest.fixture
def person_declaration() -> dict[str, Any]:
    return {
        "name": "person",
        "fields": [
            {"name": "name", "type": "STRING", "required": True},
            {"name": "age", "type": "INTEGER", "validationRules": {"min": 0, "max": 150}},
            {"name": "email", "type": "STRING", "unique": True},
        ],
    }
