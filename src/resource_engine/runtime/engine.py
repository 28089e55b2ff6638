"""
Engine facade - the service boundary of the resource engine.

Wires the store handle, catalog, schema synchronizer and data service
together and exposes every operation as a call returning an ``ApiResponse``.
Engine errors become failure envelopes; anything unexpected is logged and
reported as a storage failure. Nothing raises past this layer.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from resource_engine.runtime.catalog import ResourceCatalog
from resource_engine.runtime.config import EngineConfig, get_config
from resource_engine.runtime.data_service import DynamicDataService, ListOptions
from resource_engine.runtime.database import DatabaseManager
from resource_engine.runtime.envelope import ApiResponse, fail, ok
from resource_engine.runtime.errors import ResourceEngineError, StorageError, storage_error_from
from resource_engine.runtime.locks import ResourceLockRegistry
from resource_engine.runtime.schema_sync import SchemaSynchronizer

logger = logging.getLogger(__name__)


def describe_endpoints(resource_name: str, api_prefix: str = "/api") -> list[dict[str, str]]:
    """The five generated CRUD endpoints of a resource."""
    base = f"{api_prefix.rstrip('/')}/{resource_name}"
    return [
        {"method": "GET", "path": base, "description": f"Get all {resource_name} items"},
        {
            "method": "GET",
            "path": f"{base}/:id",
            "description": f"Get a specific {resource_name} item by ID",
        },
        {"method": "POST", "path": base, "description": f"Create a new {resource_name} item"},
        {
            "method": "PUT",
            "path": f"{base}/:id",
            "description": f"Update a specific {resource_name} item",
        },
        {
            "method": "DELETE",
            "path": f"{base}/:id",
            "description": f"Delete a specific {resource_name} item",
        },
    ]


class ResourceEngine:
    """
    Resource declarations and record CRUD behind one envelope-returning API.

    Declaration operations are synchronous; record operations are async.

    Example:
        engine = ResourceEngine(DatabaseManager("sqlite:///data.db"))
        engine.define_resource({"name": "book", "fields": [...]})
        response = await engine.create_record("book", {"title": "Dune"})
    """

    def __init__(
        self,
        db: DatabaseManager,
        *,
        default_page_size: int = 50,
        api_prefix: str = "/api",
        locks: ResourceLockRegistry | None = None,
    ):
        self.db = db
        self.api_prefix = api_prefix
        self.synchronizer = SchemaSynchronizer(db)
        self.catalog = ResourceCatalog(db, self.synchronizer, locks)
        self.data = DynamicDataService(self.catalog, default_page_size)

    @classmethod
    def from_config(cls, config: EngineConfig | None = None) -> ResourceEngine:
        config = config or get_config()
        return cls(
            DatabaseManager.from_config(config),
            default_page_size=config.default_page_size,
            api_prefix=config.api_prefix,
        )

    def close(self) -> None:
        self.db.dispose()

    def health(self) -> ApiResponse:
        """Check that the store answers."""

        def call() -> dict[str, Any]:
            try:
                with self.db.connection() as conn:
                    conn.execute(text("SELECT 1"))
            except SQLAlchemyError as e:
                raise storage_error_from(e, "reach database") from e
            return {"status": "ok", "backend": self.db.backend_type}

        return self._guard("check database", call)

    # -------------------------------------------------------------------------
    # Envelope plumbing
    # -------------------------------------------------------------------------

    def _guard(
        self, action: str, call: Callable[[], Any], message: str | None = None
    ) -> ApiResponse:
        try:
            return ok(call(), message)
        except ResourceEngineError as exc:
            logger.info("Failed to %s: %s", action, exc.message)
            return fail(exc, action)
        except Exception as exc:
            logger.exception("Unexpected error while trying to %s", action)
            return fail(StorageError(str(exc) or type(exc).__name__), action)

    async def _guard_async(
        self, action: str, call: Callable[[], Awaitable[Any]], message: str | None = None
    ) -> ApiResponse:
        try:
            return ok(await call(), message)
        except ResourceEngineError as exc:
            logger.info("Failed to %s: %s", action, exc.message)
            return fail(exc, action)
        except Exception as exc:
            logger.exception("Unexpected error while trying to %s", action)
            return fail(StorageError(str(exc) or type(exc).__name__), action)

    # -------------------------------------------------------------------------
    # Resource declarations
    # -------------------------------------------------------------------------

    def define_resource(self, declaration: Any) -> ApiResponse:
        response = self._guard(
            "create resource", lambda: self.catalog.define(declaration).to_wire()
        )
        if response.success:
            response.message = f"Resource '{response.data['name']}' created successfully"
        return response

    def list_resources(self) -> ApiResponse:
        return self._guard(
            "fetch resources",
            lambda: [definition.to_wire() for definition in self.catalog.list_all()],
        )

    def get_resource(self, name: str) -> ApiResponse:
        return self._guard("fetch resource", lambda: self.catalog.get(name).to_wire())

    def update_resource(self, name: str, declaration: Any) -> ApiResponse:
        return self._guard(
            "update resource",
            lambda: self.catalog.update(name, declaration).to_wire(),
            f"Resource '{name}' updated successfully",
        )

    def delete_resource(self, name: str) -> ApiResponse:
        return self._guard(
            "delete resource",
            lambda: self.catalog.delete(name).to_wire(),
            f"Resource '{name}' deleted successfully",
        )

    def resource_endpoints(self, name: str) -> ApiResponse:
        def call() -> dict[str, Any]:
            definition = self.catalog.get(name)
            return {
                "resource": definition.to_wire(),
                "endpoints": describe_endpoints(definition.name, self.api_prefix),
            }

        return self._guard("fetch resource", call)

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    async def create_record(self, resource_name: str, payload: Any) -> ApiResponse:
        return await self._guard_async(
            "create data",
            lambda: self.data.create(resource_name, payload),
            "Data created successfully",
        )

    async def list_records(
        self, resource_name: str, options: ListOptions | Mapping[str, Any] | None = None
    ) -> ApiResponse:
        return await self._guard_async("fetch data", lambda: self.data.list(resource_name, options))

    async def get_record(self, resource_name: str, record_id: int) -> ApiResponse:
        return await self._guard_async(
            "fetch data", lambda: self.data.get_by_id(resource_name, record_id)
        )

    async def update_record(self, resource_name: str, record_id: int, payload: Any) -> ApiResponse:
        return await self._guard_async(
            "update data",
            lambda: self.data.update(resource_name, record_id, payload),
            "Data updated successfully",
        )

    async def delete_record(self, resource_name: str, record_id: int) -> ApiResponse:
        return await self._guard_async(
            "delete data",
            lambda: self.data.delete(resource_name, record_id),
            "Data deleted successfully",
        )
