"""
Error kinds raised by the catalog, the schema synchronizer and the data service.

Every error carries a ``kind`` matching the wire vocabulary (``AlreadyExists``,
``NotFound``, ``InvalidDeclaration``, ``ValidationError``, ``StorageError``).
Raw store exceptions never leave the engine: ``storage_error_from`` wraps them.
"""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Literal


class ErrorKind(StrEnum):
    """Failure kinds exposed to outer layers."""

    ALREADY_EXISTS = "AlreadyExists"
    NOT_FOUND = "NotFound"
    INVALID_DECLARATION = "InvalidDeclaration"
    VALIDATION_ERROR = "ValidationError"
    STORAGE_ERROR = "StorageError"


class ResourceEngineError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind = ErrorKind.STORAGE_ERROR
    title: str = "Engine error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AlreadyExistsError(ResourceEngineError):
    kind = ErrorKind.ALREADY_EXISTS
    title = "Resource already exists"


class NotFoundError(ResourceEngineError):
    """A resource or a record does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str, target: Literal["resource", "record"] = "resource"):
        self.target = target
        super().__init__(message)

    @property
    def title(self) -> str:  # type: ignore[override]
        return "Resource not found" if self.target == "resource" else "Data not found"

    @classmethod
    def resource(cls, name: str) -> NotFoundError:
        return cls(f"Resource '{name}' not found", target="resource")

    @classmethod
    def record(cls, resource_name: str, record_id: int) -> NotFoundError:
        return cls(
            f"Data with id {record_id} not found in resource '{resource_name}'",
            target="record",
        )


class InvalidDeclarationError(ResourceEngineError):
    kind = ErrorKind.INVALID_DECLARATION
    title = "Invalid resource declaration"


class RecordValidationError(ResourceEngineError):
    """
    A payload violates a field's type or constraint.

    ``reason`` completes the sentence "Field '<field>' ...", e.g.
    ``is required`` or ``must be at least 0``.
    """

    kind = ErrorKind.VALIDATION_ERROR
    title = "Validation error"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Field '{field}' {reason}")


class StorageError(ResourceEngineError):
    """
    Underlying store failure.

    Covers connectivity problems, failed DDL and constraint violations that
    validation cannot detect up front (such as uniqueness conflicts).
    """

    kind = ErrorKind.STORAGE_ERROR
    title = "Storage error"

    def __init__(
        self,
        message: str,
        *,
        constraint_type: str | None = None,
        field: str | None = None,
    ):
        self.constraint_type = constraint_type  # "unique" | "not_null" | None
        self.field = field
        super().__init__(message)


# =============================================================================
# Store Exception Translation
# =============================================================================


def _parse_constraint_error(exc: BaseException) -> tuple[str | None, str | None]:
    """Extract the constraint type and column from a driver error message.

    Accepts SQLAlchemy wrapped errors; the driver exception is read from
    ``exc.orig`` when present so psycopg's ``diag.detail`` is available.

    Returns:
        (constraint_type_or_none, field_name_or_none)
    """
    orig = getattr(exc, "orig", None) or exc
    err = str(orig)
    detail = getattr(getattr(orig, "diag", None), "message_detail", None) or ""
    full_text = f"{err} {detail}"

    # SQLite: "UNIQUE constraint failed: dyn_book.isbn"
    if "UNIQUE constraint failed:" in err:
        column = err.split("UNIQUE constraint failed:")[-1].strip().split(",")[0]
        return "unique", column.split(".")[-1].strip() or None

    # SQLite: "NOT NULL constraint failed: dyn_book.title"
    if "NOT NULL constraint failed:" in err:
        column = err.split("NOT NULL constraint failed:")[-1].strip()
        return "not_null", column.split(".")[-1].strip() or None

    # PostgreSQL: duplicate key value violates unique constraint ... Key (isbn)=(...)
    if "duplicate key" in full_text and "unique constraint" in full_text:
        match = re.search(r"Key \((\w+)\)", full_text)
        return "unique", match.group(1) if match else None

    # PostgreSQL: null value in column "title" ... violates not-null constraint
    if "not-null constraint" in full_text:
        match = re.search(r'column "(\w+)"', full_text)
        return "not_null", match.group(1) if match else None

    return None, None


def storage_error_from(exc: BaseException, action: str) -> StorageError:
    """Convert a store exception into a StorageError preserving its message."""
    orig = getattr(exc, "orig", None) or exc
    constraint_type, field = _parse_constraint_error(exc)
    detail = str(orig).strip().splitlines()[0] if str(orig).strip() else type(orig).__name__
    if constraint_type == "unique" and field:
        message = f"Failed to {action}: value for field '{field}' must be unique ({detail})"
    else:
        message = f"Failed to {action}: {detail}"
    return StorageError(message, constraint_type=constraint_type, field=field)
