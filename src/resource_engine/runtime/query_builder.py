"""
SQL generation for resource tables.

Builds parameterized statements (named ``:param`` placeholders for
``sqlalchemy.text``) for list queries with equality filters, sorting and
pagination, and for single-record insert/select/update/delete. Identifiers are
validated and double-quoted; values are always bound, never interpolated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

# Valid SQL identifier pattern (alphanumeric and underscore, not starting with digit)
_VALID_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

ID_COLUMN = "id"


def validate_sql_identifier(name: str, context: str = "identifier") -> str:
    """
    Validate that a string is a safe SQL identifier.

    Args:
        name: The identifier to validate
        context: Description of what's being validated (for error messages)

    Returns:
        The validated name

    Raises:
        ValueError: If the name contains invalid characters
    """
    if not name:
        raise ValueError(f"SQL {context} cannot be empty")
    if not _VALID_IDENTIFIER_PATTERN.match(name):
        raise ValueError(
            f"Invalid SQL {context} '{name}': must contain only letters, digits, "
            "and underscores, and cannot start with a digit"
        )
    return name


def quote_identifier(name: str, context: str = "identifier") -> str:
    """Validate and double-quote an identifier."""
    return f'"{validate_sql_identifier(name, context)}"'


@dataclass
class FilterCondition:
    """An equality filter on one column."""

    field: str
    value: Any

    def to_sql(self, param_name: str) -> tuple[str, dict[str, Any]]:
        """
        Convert condition to SQL fragment and parameters.

        A None value matches NULL columns.
        """
        column = quote_identifier(self.field, "column name")
        if self.value is None:
            return f"{column} IS NULL", {}
        return f"{column} = :{param_name}", {param_name: self.value}


@dataclass
class SortField:
    """A single sort field."""

    field: str
    descending: bool = False

    def to_sql(self) -> str:
        """Convert to SQL ORDER BY fragment."""
        direction = "DESC" if self.descending else "ASC"
        return f"{quote_identifier(self.field, 'column name')} {direction}"


@dataclass
class QueryBuilder:
    """
    Builds SQL statements for one resource table.

    Example:
        builder = QueryBuilder(table_name="dyn_book")
        builder.add_filter("author", "Frank Herbert")
        builder.add_sort("title", descending=False)
        builder.set_pagination(page=2, page_size=10)

        sql, params = builder.build_select()
    """

    table_name: str
    conditions: list[FilterCondition] = field(default_factory=list)
    sorts: list[SortField] = field(default_factory=list)
    page: int = 1
    page_size: int = 50

    def __post_init__(self) -> None:
        """Validate table name on initialization."""
        validate_sql_identifier(self.table_name, "table name")

    @property
    def table(self) -> str:
        return f'"{self.table_name}"'

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def add_filter(self, column: str, value: Any) -> QueryBuilder:
        """Add an equality filter condition."""
        validate_sql_identifier(column, "column name")
        self.conditions.append(FilterCondition(field=column, value=value))
        return self

    def add_filters(self, filters: dict[str, Any]) -> QueryBuilder:
        """Add multiple filter conditions."""
        for column, value in filters.items():
            self.add_filter(column, value)
        return self

    def add_sort(self, column: str, descending: bool = False) -> QueryBuilder:
        """Add a sort field."""
        validate_sql_identifier(column, "column name")
        self.sorts.append(SortField(field=column, descending=descending))
        return self

    def set_pagination(self, page: int, page_size: int) -> QueryBuilder:
        """Set pagination parameters."""
        self.page = max(1, page)
        self.page_size = max(1, page_size)
        return self

    # -------------------------------------------------------------------------
    # List queries
    # -------------------------------------------------------------------------

    def build_where_clause(self) -> tuple[str, dict[str, Any]]:
        """
        Build the WHERE clause from conditions.

        Returns:
            Tuple of (where_clause, parameters)
        """
        if not self.conditions:
            return "", {}

        fragments = []
        params: dict[str, Any] = {}
        for index, condition in enumerate(self.conditions):
            sql, condition_params = condition.to_sql(f"f{index}")
            fragments.append(sql)
            params.update(condition_params)

        return f"WHERE {' AND '.join(fragments)}", params

    def build_order_clause(self) -> str:
        """
        Build the ORDER BY clause.

        ``id`` is always appended as a tie-breaker in the direction of the
        last sort so pages never overlap or skip rows with equal sort keys.
        """
        sorts = list(self.sorts)
        if all(sort.field != ID_COLUMN for sort in sorts):
            descending = sorts[-1].descending if sorts else False
            sorts.append(SortField(field=ID_COLUMN, descending=descending))
        return f"ORDER BY {', '.join(sort.to_sql() for sort in sorts)}"

    def build_limit_offset(self) -> tuple[str, dict[str, int]]:
        """Build LIMIT/OFFSET clause."""
        offset = (self.page - 1) * self.page_size
        return "LIMIT :limit OFFSET :offset", {"limit": self.page_size, "offset": offset}

    def build_select(self, count_only: bool = False) -> tuple[str, dict[str, Any]]:
        """
        Build complete SELECT query.

        Args:
            count_only: If True, build COUNT(*) query instead

        Returns:
            Tuple of (sql, parameters)
        """
        if count_only:
            select = f"SELECT COUNT(*) FROM {self.table}"
        else:
            select = f"SELECT * FROM {self.table}"

        where_clause, params = self.build_where_clause()

        query_parts = [select]
        if where_clause:
            query_parts.append(where_clause)

        if not count_only:
            query_parts.append(self.build_order_clause())
            limit_clause, limit_params = self.build_limit_offset()
            query_parts.append(limit_clause)
            params.update(limit_params)

        return " ".join(query_parts), params

    def build_count(self) -> tuple[str, dict[str, Any]]:
        """Build COUNT query."""
        return self.build_select(count_only=True)

    # -------------------------------------------------------------------------
    # Single-record statements
    # -------------------------------------------------------------------------

    def build_get(self, record_id: int) -> tuple[str, dict[str, Any]]:
        return f'SELECT * FROM {self.table} WHERE "{ID_COLUMN}" = :record_id', {
            "record_id": record_id
        }

    def build_insert(self, values: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Build INSERT ... RETURNING * for one row."""
        if not values:
            return f"INSERT INTO {self.table} DEFAULT VALUES RETURNING *", {}

        columns = []
        placeholders = []
        params: dict[str, Any] = {}
        for index, (column, value) in enumerate(values.items()):
            columns.append(quote_identifier(column, "column name"))
            placeholders.append(f":v{index}")
            params[f"v{index}"] = value

        sql = (
            f"INSERT INTO {self.table} ({', '.join(columns)}) "
            f"VALUES ({', '.join(placeholders)}) RETURNING *"
        )
        return sql, params

    def build_update(self, record_id: int, values: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Build UPDATE ... RETURNING * for one row (values must not be empty)."""
        if not values:
            raise ValueError("UPDATE requires at least one column")

        assignments = []
        params: dict[str, Any] = {"record_id": record_id}
        for index, (column, value) in enumerate(values.items()):
            assignments.append(f"{quote_identifier(column, 'column name')} = :v{index}")
            params[f"v{index}"] = value

        sql = (
            f"UPDATE {self.table} SET {', '.join(assignments)} "
            f'WHERE "{ID_COLUMN}" = :record_id RETURNING *'
        )
        return sql, params

    def build_delete(self, record_id: int) -> tuple[str, dict[str, Any]]:
        return f'DELETE FROM {self.table} WHERE "{ID_COLUMN}" = :record_id RETURNING *', {
            "record_id": record_id
        }
