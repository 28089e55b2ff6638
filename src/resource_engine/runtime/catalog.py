"""
Resource catalog - the persistent registry of resource declarations.

Every mutation writes the catalog rows and applies the matching table change
inside one transaction, serialized per resource name, so the catalog and the
physical schema never disagree after a failure.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from pydantic import ValidationError
from sqlalchemy.engine import Connection, Row
from sqlalchemy.exc import SQLAlchemyError

from resource_engine.runtime.database import DatabaseManager
from resource_engine.runtime.errors import (
    AlreadyExistsError,
    InvalidDeclarationError,
    NotFoundError,
    ResourceEngineError,
    storage_error_from,
)
from resource_engine.runtime.locks import ResourceLockRegistry, acquire_advisory_lock
from resource_engine.runtime.logging import log_with_context
from resource_engine.runtime.sa_schema import create_catalog_tables, fields_table, resources_table
from resource_engine.runtime.schema_sync import SchemaSynchronizer
from resource_engine.specs.field_types import FieldType
from resource_engine.specs.resource import (
    FieldSpec,
    ResourceDefinition,
    ResourceSpec,
    ValidationRules,
    table_name_for,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def format_validation_error(error: ValidationError) -> str:
    """Flatten a pydantic error into one ``path: message`` line per problem."""
    parts = []
    for item in error.errors():
        path = ".".join(str(part) for part in item["loc"])
        message = item["msg"].removeprefix("Value error, ")
        parts.append(f"{path}: {message}" if path else message)
    return "; ".join(parts)


def coerce_declaration(declaration: Any, name: str | None = None) -> ResourceSpec:
    """
    Turn a raw declaration into a validated ``ResourceSpec``.

    Args:
        declaration: A ResourceSpec or a mapping in wire form
        name: Expected resource name (updates); filled in when absent

    Raises:
        InvalidDeclarationError: If the declaration is malformed or renames the resource
    """
    if isinstance(declaration, ResourceSpec):
        spec = declaration
    elif isinstance(declaration, Mapping):
        data = dict(declaration)
        if name is not None and data.get("name") is None:
            data["name"] = name
        try:
            spec = ResourceSpec.model_validate(data)
        except ValidationError as e:
            raise InvalidDeclarationError(format_validation_error(e)) from e
    else:
        raise InvalidDeclarationError("Resource declaration must be an object")

    if name is not None and spec.name != name:
        raise InvalidDeclarationError(
            f"Resource name cannot be changed (expected '{name}', got '{spec.name}')"
        )
    return spec


def _field_to_row(spec: FieldSpec, resource_id: int, now: datetime) -> dict[str, Any]:
    rules = spec.validation_rules
    return {
        "resource_id": resource_id,
        "name": spec.name,
        "display_name": spec.display_name,
        "type": spec.type.value,
        "is_required": spec.required,
        "is_unique": spec.unique,
        "default_value": spec.default_value,
        "validation_rules": rules.model_dump(exclude_none=True) if rules is not None else None,
        "position": spec.order or 0,
        "updated_at": now,
    }


def _row_to_field(row: Row) -> FieldSpec:
    rules = row.validation_rules
    return FieldSpec(
        name=row.name,
        display_name=row.display_name,
        type=FieldType(row.type),
        required=row.is_required,
        unique=row.is_unique,
        default_value=row.default_value,
        validation_rules=ValidationRules.model_validate(rules) if rules else None,
        order=row.position,
    )


class ResourceCatalog:
    """
    CRUD over resource declarations.

    Example:
        catalog = ResourceCatalog(db)
        book = catalog.define({"name": "book", "fields": [{"name": "title", "type": "STRING"}]})
        catalog.get("book").table_name  # "dyn_book"
    """

    def __init__(
        self,
        db: DatabaseManager,
        synchronizer: SchemaSynchronizer | None = None,
        locks: ResourceLockRegistry | None = None,
    ):
        self.db = db
        self.synchronizer = synchronizer or SchemaSynchronizer(db)
        self.locks = locks if locks is not None else ResourceLockRegistry()
        self._ensure_tables()

    def _ensure_tables(self) -> None:
        try:
            with self.db.transaction() as conn:
                create_catalog_tables(conn)
        except SQLAlchemyError as e:
            raise storage_error_from(e, "initialize resource catalog") from e

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, name: str) -> ResourceDefinition:
        """
        Get a resource declaration by name.

        Raises:
            NotFoundError: If no resource has this name
        """
        try:
            with self.db.connection() as conn:
                definition = self._load(conn, name)
        except SQLAlchemyError as e:
            raise storage_error_from(e, "fetch resource") from e
        if definition is None:
            raise NotFoundError.resource(name)
        return definition

    def list_all(self) -> list[ResourceDefinition]:
        """All resource declarations, oldest first."""
        try:
            with self.db.connection() as conn:
                resource_rows = conn.execute(
                    sa.select(resources_table).order_by(
                        resources_table.c.created_at, resources_table.c.id
                    )
                ).all()
                field_rows = conn.execute(
                    sa.select(fields_table).order_by(
                        fields_table.c.resource_id, fields_table.c.position, fields_table.c.id
                    )
                ).all()
        except SQLAlchemyError as e:
            raise storage_error_from(e, "fetch resources") from e

        fields_by_resource: dict[int, list[Row]] = {}
        for row in field_rows:
            fields_by_resource.setdefault(row.resource_id, []).append(row)
        return [
            self._to_definition(row, fields_by_resource.get(row.id, []))
            for row in resource_rows
        ]

    def exists(self, name: str) -> bool:
        try:
            with self.db.connection() as conn:
                return self._find_row(conn, name) is not None
        except SQLAlchemyError as e:
            raise storage_error_from(e, "fetch resource") from e

    def _find_row(self, conn: Connection, name: str) -> Row | None:
        return conn.execute(
            sa.select(resources_table).where(resources_table.c.name == name)
        ).first()

    def _load(self, conn: Connection, name: str) -> ResourceDefinition | None:
        row = self._find_row(conn, name)
        if row is None:
            return None
        field_rows = conn.execute(
            sa.select(fields_table)
            .where(fields_table.c.resource_id == row.id)
            .order_by(fields_table.c.position, fields_table.c.id)
        ).all()
        return self._to_definition(row, field_rows)

    @staticmethod
    def _to_definition(row: Row, field_rows: list[Row]) -> ResourceDefinition:
        return ResourceDefinition(
            id=row.id,
            name=row.name,
            display_name=row.display_name,
            description=row.description,
            table_name=row.table_name,
            fields=[_row_to_field(field_row) for field_row in field_rows],
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def define(self, declaration: ResourceSpec | Mapping[str, Any]) -> ResourceDefinition:
        """
        Register a new resource and create its table.

        Raises:
            InvalidDeclarationError: If the declaration is malformed
            AlreadyExistsError: If the name or its table is taken
            StorageError: If the store rejects the change (nothing is kept)
        """
        spec = coerce_declaration(declaration)
        table = table_name_for(spec.name)

        with self.locks.hold(spec.name):
            try:
                with self.db.transaction() as conn:
                    acquire_advisory_lock(conn, spec.name)
                    self._check_available(conn, spec.name, table)

                    now = _utcnow()
                    resource_id = conn.execute(
                        sa.insert(resources_table).values(
                            name=spec.name,
                            display_name=spec.display_name,
                            description=spec.description,
                            table_name=table,
                            created_at=now,
                            updated_at=now,
                        )
                    ).inserted_primary_key[0]
                    conn.execute(
                        sa.insert(fields_table),
                        [
                            {**_field_to_row(field, resource_id, now), "created_at": now}
                            for field in spec.fields
                        ],
                    )

                    self.synchronizer.create_table(table, spec.fields, conn=conn)
                    definition = self._load(conn, spec.name)
            except ResourceEngineError:
                raise
            except SQLAlchemyError as e:
                raise storage_error_from(e, "create resource") from e

        assert definition is not None
        log_with_context(
            logger,
            logging.INFO,
            f"Defined resource '{spec.name}'",
            table=table,
            fields=spec.field_names(),
        )
        return definition

    def _check_available(self, conn: Connection, name: str, table: str) -> None:
        if self._find_row(conn, name) is not None:
            raise AlreadyExistsError(f"Resource '{name}' already exists")

        clash = conn.execute(
            sa.select(resources_table.c.name).where(resources_table.c.table_name == table)
        ).first()
        if clash is not None:
            raise AlreadyExistsError(
                f"Resource '{clash.name}' already uses table '{table}' (names are case-insensitive)"
            )

        if self.db.table_exists(table, conn):
            raise AlreadyExistsError(f"Table '{table}' already exists in the database")

    def update(self, name: str, declaration: ResourceSpec | Mapping[str, Any]) -> ResourceDefinition:
        """
        Replace a resource's declaration and bring its table in line.

        Fields are matched by name: absent fields are dropped (with their
        data), new fields are added, changed fields are altered.

        Raises:
            InvalidDeclarationError: If the declaration is malformed or renames the resource
            NotFoundError: If the resource does not exist
            StorageError: If the store rejects the change (nothing is kept)
        """
        spec = coerce_declaration(declaration, name)

        with self.locks.hold(name):
            try:
                with self.db.transaction() as conn:
                    acquire_advisory_lock(conn, name)
                    current = self._load(conn, name)
                    if current is None:
                        raise NotFoundError.resource(name)

                    now = _utcnow()
                    self._write_fields(conn, current, spec, now)
                    conn.execute(
                        sa.update(resources_table)
                        .where(resources_table.c.id == current.id)
                        .values(
                            display_name=spec.display_name,
                            description=spec.description,
                            updated_at=now,
                        )
                    )

                    plan = self.synchronizer.diff_and_alter(
                        current.table_name, current.fields, spec.fields, conn=conn
                    )
                    definition = self._load(conn, name)
            except ResourceEngineError:
                raise
            except SQLAlchemyError as e:
                raise storage_error_from(e, "update resource") from e

        assert definition is not None
        log_with_context(
            logger,
            logging.INFO,
            f"Updated resource '{name}'",
            table=definition.table_name,
            actions=[action.value for action in plan.actions()],
        )
        return definition

    def _write_fields(
        self, conn: Connection, current: ResourceDefinition, spec: ResourceSpec, now: datetime
    ) -> None:
        kept = set(spec.field_names())
        removed = [f.name for f in current.fields if f.name not in kept]
        if removed:
            conn.execute(
                sa.delete(fields_table).where(
                    fields_table.c.resource_id == current.id,
                    fields_table.c.name.in_(removed),
                )
            )

        for field in spec.fields:
            row = _field_to_row(field, current.id, now)
            if current.get_field(field.name) is None:
                conn.execute(sa.insert(fields_table).values(**row, created_at=now))
            else:
                conn.execute(
                    sa.update(fields_table)
                    .where(
                        fields_table.c.resource_id == current.id,
                        fields_table.c.name == field.name,
                    )
                    .values(**row)
                )

    def delete(self, name: str) -> ResourceDefinition:
        """
        Remove a resource, its field declarations and its table with all data.

        Returns:
            The declaration as it was before deletion

        Raises:
            NotFoundError: If the resource does not exist
        """
        with self.locks.hold(name):
            try:
                with self.db.transaction() as conn:
                    acquire_advisory_lock(conn, name)
                    current = self._load(conn, name)
                    if current is None:
                        raise NotFoundError.resource(name)

                    conn.execute(
                        sa.delete(fields_table).where(fields_table.c.resource_id == current.id)
                    )
                    conn.execute(
                        sa.delete(resources_table).where(resources_table.c.id == current.id)
                    )
                    self.synchronizer.drop_table(current.table_name, conn=conn)
            except ResourceEngineError:
                raise
            except SQLAlchemyError as e:
                raise storage_error_from(e, "delete resource") from e

        log_with_context(
            logger, logging.INFO, f"Deleted resource '{name}'", table=current.table_name
        )
        return current
