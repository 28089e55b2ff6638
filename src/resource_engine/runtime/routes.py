"""
HTTP adapter for the resource engine.

Thin FastAPI routes over ``ResourceEngine``: they parse the request, call one
facade operation and translate the envelope into a JSON response with a
status code. No engine logic lives here.

Routes (under the configured prefix, ``/api`` by default):
- POST   /resources/define-resource
- GET    /resources
- GET    /resources/{name}
- PUT    /resources/{name}
- DELETE /resources/{name}
- GET    /resources/{name}/endpoints
- GET    /{resource}            (page, limit, sort, order; other params filter)
- POST   /{resource}
- GET    /{resource}/{id}
- PUT    /{resource}/{id}
- DELETE /{resource}/{id}
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from resource_engine import __version__
from resource_engine.runtime.config import EngineConfig, get_config
from resource_engine.runtime.engine import ResourceEngine
from resource_engine.runtime.envelope import ApiResponse
from resource_engine.runtime.errors import ErrorKind

logger = logging.getLogger(__name__)

LIST_PARAMS = ("page", "limit", "sort", "order")

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.ALREADY_EXISTS: 409,
    ErrorKind.INVALID_DECLARATION: 400,
    ErrorKind.VALIDATION_ERROR: 400,
}


def status_for(response: ApiResponse, success_status: int = 200) -> int:
    """HTTP status for an envelope."""
    if response.success:
        return success_status
    if response.kind == ErrorKind.STORAGE_ERROR:
        if response.constraint == "unique":
            return 409
        if response.constraint == "not_null":
            return 400
        return 500
    return _STATUS_BY_KIND.get(response.kind, 500) if response.kind else 500


def respond(response: ApiResponse, success_status: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(response, success_status),
        content=response.to_wire(),
    )


def _invalid_id() -> JSONResponse:
    return respond(
        ApiResponse(
            success=False,
            error="Invalid ID",
            message="ID must be a valid number",
            kind=ErrorKind.VALIDATION_ERROR,
            field="id",
        )
    )


def _parse_id(raw: str) -> int | None:
    try:
        return int(raw)
    except ValueError:
        return None


# =============================================================================
# Routers
# =============================================================================


def create_resource_router(engine: ResourceEngine) -> APIRouter:
    """Routes for resource declarations."""
    router = APIRouter(prefix="/resources", tags=["Resources"])

    @router.post("/define-resource")
    def define_resource(declaration: dict[str, Any] = Body(...)) -> JSONResponse:
        return respond(engine.define_resource(declaration), success_status=201)

    @router.get("")
    def list_resources() -> JSONResponse:
        return respond(engine.list_resources())

    @router.get("/{name}")
    def get_resource(name: str) -> JSONResponse:
        return respond(engine.get_resource(name))

    @router.put("/{name}")
    def update_resource(name: str, declaration: dict[str, Any] = Body(...)) -> JSONResponse:
        return respond(engine.update_resource(name, declaration))

    @router.delete("/{name}")
    def delete_resource(name: str) -> JSONResponse:
        return respond(engine.delete_resource(name))

    @router.get("/{name}/endpoints")
    def resource_endpoints(name: str) -> JSONResponse:
        return respond(engine.resource_endpoints(name))

    return router


def create_data_router(engine: ResourceEngine) -> APIRouter:
    """Generic record routes for every declared resource."""
    router = APIRouter(tags=["Data"])

    @router.get("/{resource}")
    async def list_records(resource: str, request: Request) -> JSONResponse:
        params = dict(request.query_params)
        options: dict[str, Any] = {key: params.pop(key) for key in LIST_PARAMS if key in params}
        options["filter"] = params
        return respond(await engine.list_records(resource, options))

    @router.post("/{resource}")
    async def create_record(resource: str, payload: dict[str, Any] = Body(...)) -> JSONResponse:
        return respond(await engine.create_record(resource, payload), success_status=201)

    @router.get("/{resource}/{record_id}")
    async def get_record(resource: str, record_id: str) -> JSONResponse:
        parsed = _parse_id(record_id)
        if parsed is None:
            return _invalid_id()
        return respond(await engine.get_record(resource, parsed))

    @router.put("/{resource}/{record_id}")
    async def update_record(
        resource: str, record_id: str, payload: dict[str, Any] = Body(...)
    ) -> JSONResponse:
        parsed = _parse_id(record_id)
        if parsed is None:
            return _invalid_id()
        return respond(await engine.update_record(resource, parsed, payload))

    @router.delete("/{resource}/{record_id}")
    async def delete_record(resource: str, record_id: str) -> JSONResponse:
        parsed = _parse_id(record_id)
        if parsed is None:
            return _invalid_id()
        return respond(await engine.delete_record(resource, parsed))

    return router


# =============================================================================
# Exception Handlers
# =============================================================================


def register_exception_handlers(app: FastAPI) -> None:
    """
    Render request and unexpected errors as failure envelopes.

    Handles:
    - RequestValidationError: malformed or non-object JSON bodies (400)
    - Exception: anything that escaped a route (500)
    """

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        return respond(
            ApiResponse(
                success=False,
                error="Validation error",
                message=details or "Invalid request",
                kind=ErrorKind.VALIDATION_ERROR,
            )
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return respond(
            ApiResponse(
                success=False,
                error="Internal server error",
                message=str(exc) or type(exc).__name__,
                kind=ErrorKind.STORAGE_ERROR,
            )
        )


# =============================================================================
# Application Factory
# =============================================================================


def create_app(
    config: EngineConfig | None = None, engine: ResourceEngine | None = None
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Engine configuration (environment when omitted)
        engine: Engine to serve; one is built from ``config`` when omitted
            and closed on shutdown

    Returns:
        FastAPI application
    """
    owns_engine = engine is None
    served = engine or ResourceEngine.from_config(config or get_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        if owns_engine:
            served.close()

    app = FastAPI(
        title="Resource Engine",
        description="Declare resources at runtime and get CRUD endpoints for them",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = served
    register_exception_handlers(app)

    @app.get("/health", tags=["System"])
    def health() -> JSONResponse:
        return respond(served.health())

    # Declaration routes first so /resources is not taken for a resource name
    app.include_router(create_resource_router(served), prefix=served.api_prefix)
    app.include_router(create_data_router(served), prefix=served.api_prefix)
    return app
