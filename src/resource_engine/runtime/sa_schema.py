"""
SQLAlchemy MetaData for the catalog tables.

The catalog persists resource declarations in two tables on the shared
store: ``resources`` (one row per resource) and ``resource_fields`` (one row
per declared field). Dynamic resource tables are NOT described here; their
DDL is generated from declarations by ``ddl.py``.

SQLAlchemy Core only, no ORM.
"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine

metadata = sa.MetaData()

resources_table = sa.Table(
    "resources",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("name", sa.String(50), nullable=False, unique=True),
    sa.Column("display_name", sa.String(100), nullable=True),
    sa.Column("description", sa.String(500), nullable=True),
    sa.Column("table_name", sa.String(63), nullable=False, unique=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
)

fields_table = sa.Table(
    "resource_fields",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column(
        "resource_id",
        sa.Integer,
        sa.ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    sa.Column("name", sa.String(50), nullable=False),
    sa.Column("display_name", sa.String(100), nullable=True),
    sa.Column("type", sa.String(16), nullable=False),
    sa.Column("is_required", sa.Boolean, nullable=False, default=False),
    sa.Column("is_unique", sa.Boolean, nullable=False, default=False),
    sa.Column("default_value", sa.JSON(none_as_null=True), nullable=True),
    sa.Column("validation_rules", sa.JSON(none_as_null=True), nullable=True),
    sa.Column("position", sa.Integer, nullable=False, default=0),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.UniqueConstraint("resource_id", "name", name="uq_resource_fields_resource_name"),
)


def create_catalog_tables(bind: Engine | Connection) -> None:
    """Create the catalog tables if they do not exist yet."""
    metadata.create_all(bind, checkfirst=True)
