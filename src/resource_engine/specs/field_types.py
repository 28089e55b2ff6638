"""
Field type system and the type mapping table.

Every declared field type maps to exactly one ``TypeMapping`` entry holding
its physical column type per backend, the value check used by record
validation, the DEFAULT literal renderer used by DDL generation, the coercion
applied to textual filter values and the conversion applied to values read
back from the store. Adding a type means adding one entry here.
"""

from __future__ import annotations

import json
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from dateutil import parser as date_parser

# =============================================================================
# Field Types
# =============================================================================


class FieldType(StrEnum):
    """Declared field types (wire literals are case-sensitive)."""

    STRING = "STRING"
    INTEGER = "INTEGER"
    FLOAT = "FLOAT"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    DATETIME = "DATETIME"
    TEXT = "TEXT"
    JSON = "JSON"


POSTGRES = "postgresql"
SQLITE = "sqlite"

# INTEGER columns are 32-bit on PostgreSQL
INTEGER_MIN = -(2**31)
INTEGER_MAX = 2**31 - 1


# =============================================================================
# Value Checks
# =============================================================================
#
# A check returns the normalized value or raises ValueError with a
# human-readable reason.


def _check_text(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("Must be a string")
    return value


def _check_integer(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValueError("Must be an integer")
    if not isinstance(value, int):
        if not math.isfinite(value) or value != int(value):
            raise ValueError("Must be an integer")
        value = int(value)
    if not INTEGER_MIN <= value <= INTEGER_MAX:
        raise ValueError(f"Must be between {INTEGER_MIN} and {INTEGER_MAX}")
    return value


def _check_float(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValueError("Must be a number")
    if not math.isfinite(value):
        raise ValueError("Must be a finite number")
    return float(value)


def _check_boolean(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError("Must be a boolean")
    return value


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Must be a valid date")
    try:
        return date_parser.isoparse(value.strip())
    except (ValueError, OverflowError):
        raise ValueError("Must be a valid date") from None


def _check_date(value: Any) -> str:
    return _parse_timestamp(value).date().isoformat()


def _check_datetime(value: Any) -> str:
    return _parse_timestamp(value).isoformat()


def _check_json(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            raise ValueError("Must be valid JSON") from None
        if isinstance(parsed, (dict, list)):
            return parsed
    raise ValueError("Must be valid JSON")


# =============================================================================
# DEFAULT Literal Rendering
# =============================================================================


def quote_literal(text: str) -> str:
    """Render text as a single-quoted SQL string literal."""
    return "'" + text.replace("'", "''") + "'"


def _render_text(value: Any, backend: str) -> str:
    return quote_literal(value)


def _render_number(value: Any, backend: str) -> str:
    # value already passed the numeric check, so str() is a bare literal
    return str(value)


def _render_boolean(value: Any, backend: str) -> str:
    return "TRUE" if value else "FALSE"


def _render_json(value: Any, backend: str) -> str:
    literal = quote_literal(json.dumps(value))
    if backend == POSTGRES:
        return f"{literal}::jsonb"
    return literal


# =============================================================================
# Filter Coercion
# =============================================================================
#
# Filter values often arrive as query-string text; coerce them to the field's
# type before the value check runs. Non-text values pass through unchanged.


def _coerce_identity(value: Any) -> Any:
    return value


def _coerce_integer(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise ValueError("Must be an integer") from None
    return value


def _coerce_float(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            raise ValueError("Must be a number") from None
    return value


def _coerce_boolean(value: Any) -> Any:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
        raise ValueError("Must be a boolean")
    return value


# =============================================================================
# Store Value Conversion
# =============================================================================


def _read_identity(value: Any) -> Any:
    return value


def _read_integer(value: Any) -> Any:
    return int(value) if isinstance(value, (int, float, Decimal)) else value


def _read_float(value: Any) -> Any:
    return float(value) if isinstance(value, (int, float, Decimal)) else value


def _read_boolean(value: Any) -> Any:
    return bool(value)


def _read_temporal(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _read_json(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _write_identity(value: Any) -> Any:
    return value


def _write_json(value: Any) -> Any:
    return json.dumps(value)


# =============================================================================
# Type Mapping Table
# =============================================================================


@dataclass(frozen=True)
class TypeMapping:
    """Physical and behavioral description of one field type."""

    postgres_type: str
    sqlite_type: str
    check: Callable[[Any], Any]
    render_literal: Callable[[Any, str], str]
    coerce: Callable[[Any], Any]
    to_db: Callable[[Any], Any]
    from_db: Callable[[Any], Any]
    rules: frozenset[str]

    def column_type(self, backend: str) -> str:
        """Physical column type for a backend dialect name."""
        return self.postgres_type if backend == POSTGRES else self.sqlite_type


_TEXT_RULES = frozenset({"min_length", "max_length", "pattern", "enum"})
_NUMERIC_RULES = frozenset({"min", "max", "enum"})

TYPE_MAPPING: dict[FieldType, TypeMapping] = {
    FieldType.STRING: TypeMapping(
        postgres_type="VARCHAR(255)",
        sqlite_type="TEXT",
        check=_check_text,
        render_literal=_render_text,
        coerce=_coerce_identity,
        to_db=_write_identity,
        from_db=_read_identity,
        rules=_TEXT_RULES,
    ),
    FieldType.INTEGER: TypeMapping(
        postgres_type="INTEGER",
        sqlite_type="INTEGER",
        check=_check_integer,
        render_literal=_render_number,
        coerce=_coerce_integer,
        to_db=_write_identity,
        from_db=_read_integer,
        rules=_NUMERIC_RULES,
    ),
    FieldType.FLOAT: TypeMapping(
        postgres_type="DOUBLE PRECISION",
        sqlite_type="REAL",
        check=_check_float,
        render_literal=_render_number,
        coerce=_coerce_float,
        to_db=_write_identity,
        from_db=_read_float,
        rules=_NUMERIC_RULES,
    ),
    FieldType.BOOLEAN: TypeMapping(
        postgres_type="BOOLEAN",
        sqlite_type="INTEGER",  # SQLite uses 0/1 for bool
        check=_check_boolean,
        render_literal=_render_boolean,
        coerce=_coerce_boolean,
        to_db=_write_identity,
        from_db=_read_boolean,
        rules=frozenset(),
    ),
    FieldType.DATE: TypeMapping(
        postgres_type="DATE",
        sqlite_type="TEXT",  # ISO format
        check=_check_date,
        render_literal=_render_text,
        coerce=_coerce_identity,
        to_db=_write_identity,
        from_db=_read_temporal,
        rules=frozenset({"enum"}),
    ),
    FieldType.DATETIME: TypeMapping(
        postgres_type="TIMESTAMP",
        sqlite_type="TEXT",  # ISO format
        check=_check_datetime,
        render_literal=_render_text,
        coerce=_coerce_identity,
        to_db=_write_identity,
        from_db=_read_temporal,
        rules=frozenset({"enum"}),
    ),
    FieldType.TEXT: TypeMapping(
        postgres_type="TEXT",
        sqlite_type="TEXT",
        check=_check_text,
        render_literal=_render_text,
        coerce=_coerce_identity,
        to_db=_write_identity,
        from_db=_read_identity,
        rules=_TEXT_RULES,
    ),
    FieldType.JSON: TypeMapping(
        postgres_type="JSONB",
        sqlite_type="TEXT",  # JSON as string
        check=_check_json,
        render_literal=_render_json,
        coerce=_coerce_identity,
        to_db=_write_json,
        from_db=_read_json,
        rules=frozenset(),
    ),
}


def get_mapping(field_type: FieldType) -> TypeMapping:
    """Look up the mapping entry for a field type."""
    return TYPE_MAPPING[field_type]


def convert_stored(value: Any, source: FieldType, target: FieldType) -> Any:
    """
    Convert a value stored under one field type to the store form of another.

    Text targets take the value's textual form; other targets accept what
    their filter coercion and value check accept.

    Raises:
        ValueError: If the value has no representation in the target type
    """
    current = TYPE_MAPPING[source].from_db(value)
    mapping = TYPE_MAPPING[target]
    if target in (FieldType.STRING, FieldType.TEXT):
        if isinstance(current, bool):
            current = "true" if current else "false"
        elif isinstance(current, (dict, list)):
            current = json.dumps(current)
        else:
            current = str(current)
    return mapping.to_db(mapping.check(mapping.coerce(current)))
