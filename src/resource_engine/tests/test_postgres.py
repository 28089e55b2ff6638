"""
PostgreSQL integration tests.

Run only when DATABASE_URL points at a PostgreSQL database, e.g.:

    DATABASE_URL=postgresql://postgres@localhost/resource_engine_test pytest -m postgres

Each test works in its own resource names and drops them afterwards.
"""

import os
import uuid

import pytest

from resource_engine.runtime.database import DatabaseManager
from resource_engine.runtime.engine import ResourceEngine
from resource_engine.runtime.errors import ErrorKind

DATABASE_URL = os.environ.get("DATABASE_URL", "")

pytestmark = [
    pytest.mark.postgres,
    pytest.mark.skipif(
        not DATABASE_URL.startswith(("postgres://", "postgresql")),
        reason="DATABASE_URL is not a PostgreSQL URL",
    ),
]


@pytest.fixture
def pg_engine():
    engine = ResourceEngine(DatabaseManager(DATABASE_URL))
    yield engine
    engine.close()


@pytest.fixture
def resource_name(pg_engine):
    """A fresh resource name, dropped again after the test."""
    name = f"pg_{uuid.uuid4().hex[:12]}"
    yield name
    pg_engine.delete_resource(name)


@pytest.mark.asyncio
async def test_record_lifecycle(pg_engine, resource_name):
    defined = pg_engine.define_resource(
        {
            "name": resource_name,
            "fields": [
                {"name": "title", "type": "STRING", "required": True},
                {"name": "pages", "type": "INTEGER"},
                {"name": "meta", "type": "JSON", "defaultValue": {}},
                {"name": "isbn", "type": "STRING", "unique": True},
            ],
        }
    )
    assert defined.success, defined.message

    created = await pg_engine.create_record(resource_name, {"title": "Dune", "isbn": "1"})
    assert created.data["meta"] == {}
    assert created.data["pages"] is None

    conflict = await pg_engine.create_record(resource_name, {"title": "Emma", "isbn": "1"})
    assert conflict.constraint == "unique"
    assert conflict.field == "isbn"

    updated = await pg_engine.update_record(resource_name, created.data["id"], {"pages": 412})
    assert updated.data["pages"] == 412
    assert updated.data["updated_at"] >= created.data["updated_at"]


@pytest.mark.asyncio
async def test_alter_column_type_keeps_data(pg_engine, resource_name):
    fields = [{"name": "score", "type": "INTEGER", "defaultValue": 0}]
    pg_engine.define_resource({"name": resource_name, "fields": fields})
    await pg_engine.create_record(resource_name, {"score": 7})

    changed = pg_engine.update_resource(
        resource_name,
        {"fields": [{"name": "score", "type": "FLOAT", "required": True, "defaultValue": 0}]},
    )
    assert changed.success, changed.message

    listed = await pg_engine.list_records(resource_name)
    assert listed.data["items"][0]["score"] == 7.0


@pytest.mark.asyncio
async def test_failed_alter_rolls_back(pg_engine, resource_name):
    pg_engine.define_resource(
        {"name": resource_name, "fields": [{"name": "title", "type": "STRING"}]}
    )
    await pg_engine.create_record(resource_name, {})

    failed = pg_engine.update_resource(
        resource_name, {"fields": [{"name": "title", "type": "STRING", "required": True}]}
    )
    assert failed.kind == ErrorKind.STORAGE_ERROR
    assert pg_engine.get_resource(resource_name).data["fields"][0]["required"] is False
