"""
Dynamic data service - record CRUD on resource tables.

The declaration is resolved from the catalog on every call, so requests always
see the current shape of a resource. Payloads are validated before any
statement runs; identifiers come only from the declaration and every value
is a bound parameter.

Database work is blocking SQLAlchemy Core and runs in a worker thread so the
async API never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable, Mapping
from datetime import date, datetime
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from resource_engine.runtime.catalog import ResourceCatalog
from resource_engine.runtime.errors import NotFoundError, RecordValidationError, storage_error_from
from resource_engine.runtime.query_builder import QueryBuilder
from resource_engine.runtime.validator import RecordValidator, reason_from
from resource_engine.specs.field_types import get_mapping
from resource_engine.specs.resource import SYSTEM_COLUMNS, ResourceDefinition

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SORT = "created_at"

# sqlite3 raises OverflowError at bind time for integers beyond 64 bits
STORE_ERRORS = (SQLAlchemyError, OverflowError)


class ListOptions(BaseModel):
    """
    Options for listing records.

    Attributes:
        page: 1-based page number
        limit: Page size (service default when omitted)
        sort: Column to sort by (declared field or system column)
        order: Sort direction; ``asc`` when ``sort`` is given without it
        filter: Column -> value equality filters, ANDed
    """

    page: int = Field(default=1, ge=1)
    limit: int | None = Field(default=None, ge=1)
    sort: str | None = None
    order: Literal["asc", "desc"] | None = None
    filter: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


def _coerce_options(options: ListOptions | Mapping[str, Any] | None) -> ListOptions:
    if options is None:
        return ListOptions()
    if isinstance(options, ListOptions):
        return options
    try:
        return ListOptions.model_validate(dict(options))
    except ValidationError as e:
        first = e.errors()[0]
        field = str(first["loc"][0]) if first["loc"] else "options"
        raise RecordValidationError(field, f"is invalid: {first['msg']}") from e


def _check_record_id(record_id: Any) -> int:
    if isinstance(record_id, bool) or not isinstance(record_id, int):
        raise RecordValidationError("id", "must be a valid number")
    return record_id


def _system_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def row_to_record(row: Mapping[str, Any], definition: ResourceDefinition) -> dict[str, Any]:
    """Convert a result row into a JSON-ready record dict."""
    record: dict[str, Any] = {}
    for key, value in row.items():
        spec = definition.get_field(key)
        if value is None:
            record[key] = None
        elif spec is not None:
            record[key] = get_mapping(spec.type).from_db(value)
        else:
            record[key] = _system_value(value)
    return record


class DynamicDataService:
    """
    Record operations for any declared resource.

    Example:
        service = DynamicDataService(catalog)
        book = await service.create("book", {"title": "Dune"})
        page = await service.list("book", {"sort": "title", "limit": 10})
    """

    def __init__(self, catalog: ResourceCatalog, default_page_size: int = 50):
        self.catalog = catalog
        self.db = catalog.db
        self.default_page_size = default_page_size

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(func, *args)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def create(self, resource_name: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        """
        Validate and insert a record.

        Returns:
            The stored row including id and timestamps
        """
        return await self._run(self._create, resource_name, payload)

    async def list(
        self,
        resource_name: str,
        options: ListOptions | Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        List records with filtering, sorting and pagination.

        Returns:
            ``{"items": [...], "pagination": {"page", "limit", "total", "totalPages"}}``
        """
        return await self._run(self._list_records, resource_name, _coerce_options(options))

    async def get_by_id(self, resource_name: str, record_id: int) -> dict[str, Any]:
        return await self._run(self._get_by_id, resource_name, _check_record_id(record_id))

    async def update(
        self, resource_name: str, record_id: int, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        """
        Validate and apply a partial update.

        Only the supplied keys change; an empty payload returns the record as is.
        """
        return await self._run(self._update, resource_name, _check_record_id(record_id), payload)

    async def delete(self, resource_name: str, record_id: int) -> dict[str, Any]:
        """Delete a record, returning it as it was."""
        return await self._run(self._delete, resource_name, _check_record_id(record_id))

    # -------------------------------------------------------------------------
    # Implementation
    # -------------------------------------------------------------------------

    def _to_db(self, definition: ResourceDefinition, values: dict[str, Any]) -> dict[str, Any]:
        converted = {}
        for name, value in values.items():
            spec = definition.get_field(name)
            assert spec is not None
            converted[name] = None if value is None else get_mapping(spec.type).to_db(value)
        return converted

    def _create(self, resource_name: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        definition = self.catalog.get(resource_name)
        values = RecordValidator(definition.fields).validate(payload)
        sql, params = QueryBuilder(definition.table_name).build_insert(
            self._to_db(definition, values)
        )
        try:
            with self.db.transaction() as conn:
                row = conn.execute(text(sql), params).mappings().one()
        except STORE_ERRORS as e:
            raise storage_error_from(e, "create data") from e

        logger.debug("Created %s record %s", resource_name, row["id"])
        return row_to_record(row, definition)

    def _list_records(self, resource_name: str, options: ListOptions) -> dict[str, Any]:
        definition = self.catalog.get(resource_name)
        limit = options.limit or self.default_page_size

        builder = QueryBuilder(definition.table_name)
        builder.add_filters(self._filters(definition, options.filter))
        if options.sort:
            self._check_column(definition, options.sort, "sort")
            builder.add_sort(options.sort, descending=options.order == "desc")
        else:
            builder.add_sort(DEFAULT_SORT, descending=True)
        builder.set_pagination(options.page, limit)

        count_sql, count_params = builder.build_count()
        select_sql, select_params = builder.build_select()
        try:
            with self.db.connection() as conn:
                total = conn.execute(text(count_sql), count_params).scalar_one()
                rows = conn.execute(text(select_sql), select_params).mappings().all()
        except STORE_ERRORS as e:
            raise storage_error_from(e, "fetch data") from e

        return {
            "items": [row_to_record(row, definition) for row in rows],
            "pagination": {
                "page": options.page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit),
            },
        }

    def _check_column(self, definition: ResourceDefinition, column: str, what: str) -> None:
        if column not in SYSTEM_COLUMNS and definition.get_field(column) is None:
            raise RecordValidationError(what, f"references unknown column '{column}'")

    def _filters(
        self, definition: ResourceDefinition, raw_filters: dict[str, Any]
    ) -> dict[str, Any]:
        """Coerce filter values to their column types."""
        filters: dict[str, Any] = {}
        for column, raw in raw_filters.items():
            self._check_column(definition, column, "filter")
            spec = definition.get_field(column)
            if raw is None:
                filters[column] = None
            elif spec is not None:
                mapping = get_mapping(spec.type)
                try:
                    filters[column] = mapping.to_db(mapping.check(mapping.coerce(raw)))
                except ValueError as e:
                    raise RecordValidationError(column, reason_from(e)) from None
            elif column == "id":
                try:
                    filters[column] = int(raw)
                except (TypeError, ValueError):
                    raise RecordValidationError("id", "must be a valid number") from None
            else:
                filters[column] = raw
        return filters

    def _get_by_id(self, resource_name: str, record_id: int) -> dict[str, Any]:
        definition = self.catalog.get(resource_name)
        sql, params = QueryBuilder(definition.table_name).build_get(record_id)
        try:
            with self.db.connection() as conn:
                row = conn.execute(text(sql), params).mappings().first()
        except STORE_ERRORS as e:
            raise storage_error_from(e, "fetch data") from e

        if row is None:
            raise NotFoundError.record(resource_name, record_id)
        return row_to_record(row, definition)

    def _update(
        self, resource_name: str, record_id: int, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        definition = self.catalog.get(resource_name)
        values = RecordValidator(definition.fields).validate(payload, is_update=True)
        if not values:
            return self._get_by_id(resource_name, record_id)

        builder = QueryBuilder(definition.table_name)
        sql, params = builder.build_update(record_id, self._to_db(definition, values))
        get_sql, get_params = builder.build_get(record_id)
        try:
            with self.db.transaction() as conn:
                updated = conn.execute(text(sql), params).first()
                # RETURNING does not see the SQLite trigger's updated_at refresh
                row = (
                    conn.execute(text(get_sql), get_params).mappings().first()
                    if updated is not None
                    else None
                )
        except STORE_ERRORS as e:
            raise storage_error_from(e, "update data") from e

        if row is None:
            raise NotFoundError.record(resource_name, record_id)
        return row_to_record(row, definition)

    def _delete(self, resource_name: str, record_id: int) -> dict[str, Any]:
        definition = self.catalog.get(resource_name)
        sql, params = QueryBuilder(definition.table_name).build_delete(record_id)
        try:
            with self.db.transaction() as conn:
                row = conn.execute(text(sql), params).mappings().first()
        except STORE_ERRORS as e:
            raise storage_error_from(e, "delete data") from e

        if row is None:
            raise NotFoundError.record(resource_name, record_id)
        return row_to_record(row, definition)
