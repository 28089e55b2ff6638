"""
Response envelope returned by the engine facade.

Every facade operation yields an ``ApiResponse``: ``success`` with ``data``
and a ``message``, or a failure with a human-readable ``error`` title, the
detailed ``message``, the error ``kind`` and, for validation and constraint
failures, the offending ``field`` (and ``constraint`` type for store
constraint violations).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from resource_engine.runtime.errors import ErrorKind, ResourceEngineError, StorageError


class ApiResponse(BaseModel):
    """Outcome of one engine operation."""

    success: bool
    data: Any | None = None
    error: str | None = None
    message: str | None = None
    kind: ErrorKind | None = None
    field: str | None = None
    constraint: str | None = None

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict without unset members (null values inside ``data`` are kept)."""
        dumped = self.model_dump(mode="json")
        return {key: value for key, value in dumped.items() if value is not None}


def ok(data: Any = None, message: str | None = None) -> ApiResponse:
    return ApiResponse(success=True, data=data, message=message)


def fail(exc: ResourceEngineError, action: str | None = None) -> ApiResponse:
    """
    Build a failure envelope from an engine error.

    Storage failures are titled after the attempted action
    ("Failed to create resource"); other kinds use their own title.
    """
    if isinstance(exc, StorageError) and action:
        title = f"Failed to {action}"
    else:
        title = exc.title
    return ApiResponse(
        success=False,
        error=title,
        message=exc.message,
        kind=exc.kind,
        field=getattr(exc, "field", None),
        constraint=getattr(exc, "constraint_type", None),
    )
