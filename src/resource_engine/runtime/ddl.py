"""
DDL rendering for resource tables.

Turns a ``MigrationPlan`` into SQL statements for one backend. Every resource
table carries the system columns ``id``, ``created_at`` and ``updated_at``
followed by one column per declared field, plus a trigger that refreshes
``updated_at`` on every row update.

PostgreSQL alters columns in place. SQLite cannot drop constraints or change
column types with ALTER TABLE, so plans containing a column drop, a column
alteration or a NOT NULL column without default are applied by rebuilding
the table: create a shadow table with the new shape, copy the common
columns, drop the old table and rename the shadow into place.
"""

from __future__ import annotations

import hashlib

from resource_engine.runtime.migrations import MigrationAction, MigrationPlan, MigrationStep
from resource_engine.runtime.query_builder import quote_identifier
from resource_engine.specs.field_types import POSTGRES, SQLITE, get_mapping
from resource_engine.specs.resource import SYSTEM_COLUMNS, FieldSpec

MAX_INDEX_NAME_LENGTH = 63

REBUILD_SUFFIX = "__rebuild"

PG_TOUCH_FUNCTION = "resource_engine_touch_updated_at"
PG_TOUCH_TRIGGER = "resource_engine_touch_updated_at"

SQLITE_NOW = "strftime('%Y-%m-%dT%H:%M:%f', 'now')"


def unique_index_name(table: str, column: str) -> str:
    """
    Name of the unique index for a column.

    Names longer than PostgreSQL's identifier limit are shortened with a
    hash suffix so distinct columns never collide after truncation.
    """
    name = f"{table}_{column}_unique"
    if len(name) <= MAX_INDEX_NAME_LENGTH:
        return name
    digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]
    return f"{name[: MAX_INDEX_NAME_LENGTH - 9]}_{digest}"


class DDLRenderer:
    """Backend-neutral statement rendering; subclasses fill in dialect details."""

    backend: str = ""

    def column_type(self, spec: FieldSpec) -> str:
        return get_mapping(spec.type).column_type(self.backend)

    def default_literal(self, spec: FieldSpec) -> str | None:
        value = spec.normalized_default()
        if value is None:
            return None
        return get_mapping(spec.type).render_literal(value, self.backend)

    def column_def(self, spec: FieldSpec) -> str:
        """Column definition for a declared field."""
        parts = [quote_identifier(spec.name, "column name"), self.column_type(spec)]
        if spec.required:
            parts.append("NOT NULL")
        literal = self.default_literal(spec)
        if literal is not None:
            parts.append(f"DEFAULT {literal}")
        return " ".join(parts)

    def system_column_defs(self) -> list[str]:
        raise NotImplementedError

    def create_table(self, table: str, fields: list[FieldSpec]) -> str:
        columns = self.system_column_defs() + [self.column_def(spec) for spec in fields]
        body = ",\n  ".join(columns)
        return f"CREATE TABLE {quote_identifier(table, 'table name')} (\n  {body}\n)"

    def drop_table(self, table: str) -> str:
        return f"DROP TABLE IF EXISTS {quote_identifier(table, 'table name')}"

    def add_column(self, table: str, spec: FieldSpec) -> str:
        return f"ALTER TABLE {quote_identifier(table, 'table name')} ADD COLUMN {self.column_def(spec)}"

    def create_unique_index(self, table: str, column: str) -> str:
        return (
            f'CREATE UNIQUE INDEX IF NOT EXISTS "{unique_index_name(table, column)}" '
            f"ON {quote_identifier(table, 'table name')} ({quote_identifier(column, 'column name')})"
        )

    def drop_unique_index(self, table: str, column: str) -> str:
        return f'DROP INDEX IF EXISTS "{unique_index_name(table, column)}"'

    def timestamp_trigger(self, table: str) -> list[str]:
        raise NotImplementedError

    def render(self, plan: MigrationPlan, existing_columns: set[str] | None = None) -> list[str]:
        """
        Render a plan into statements, in execution order.

        Args:
            plan: The plan to render
            existing_columns: Physical columns of the table before the plan runs
        """
        statements: list[str] = []
        for step in plan.steps:
            statements.extend(self.render_step(step, plan, existing_columns or set()))
        return statements

    def render_step(
        self, step: MigrationStep, plan: MigrationPlan, existing_columns: set[str]
    ) -> list[str]:
        table = step.table
        if step.action == MigrationAction.CREATE_TABLE:
            return [self.create_table(table, plan.fields)]
        if step.action == MigrationAction.DROP_TABLE:
            return [self.drop_table(table)]
        if step.action == MigrationAction.CREATE_TIMESTAMP_TRIGGER:
            return self.timestamp_trigger(table)
        if step.action == MigrationAction.ADD_COLUMN and step.field is not None:
            return [self.add_column(table, step.field)]
        if step.action == MigrationAction.ADD_UNIQUE_INDEX and step.column:
            return [self.create_unique_index(table, step.column)]
        if step.action == MigrationAction.DROP_UNIQUE_INDEX and step.column:
            return [self.drop_unique_index(table, step.column)]
        if step.action == MigrationAction.DROP_COLUMN and step.column:
            return self.drop_column(table, step.column, existing_columns)
        if step.action == MigrationAction.ALTER_COLUMN:
            return self.alter_column(step)
        return []

    def drop_column(self, table: str, column: str, existing_columns: set[str]) -> list[str]:
        raise NotImplementedError

    def alter_column(self, step: MigrationStep) -> list[str]:
        raise NotImplementedError


# =============================================================================
# PostgreSQL
# =============================================================================


class PostgresDDL(DDLRenderer):
    backend = POSTGRES

    def system_column_defs(self) -> list[str]:
        return [
            '"id" SERIAL PRIMARY KEY',
            '"created_at" TIMESTAMP NOT NULL DEFAULT NOW()',
            '"updated_at" TIMESTAMP NOT NULL DEFAULT NOW()',
        ]

    def drop_table(self, table: str) -> str:
        return f"{super().drop_table(table)} CASCADE"

    def timestamp_trigger(self, table: str) -> list[str]:
        quoted = quote_identifier(table, "table name")
        return [
            f"CREATE OR REPLACE FUNCTION {PG_TOUCH_FUNCTION}() RETURNS TRIGGER AS $$\n"
            "BEGIN\n"
            "  NEW.updated_at = NOW();\n"
            "  RETURN NEW;\n"
            "END;\n"
            "$$ LANGUAGE plpgsql",
            f'DROP TRIGGER IF EXISTS "{PG_TOUCH_TRIGGER}" ON {quoted}',
            f'CREATE TRIGGER "{PG_TOUCH_TRIGGER}" BEFORE UPDATE ON {quoted} '
            f"FOR EACH ROW EXECUTE FUNCTION {PG_TOUCH_FUNCTION}()",
        ]

    def drop_column(self, table: str, column: str, existing_columns: set[str]) -> list[str]:
        return [
            f"ALTER TABLE {quote_identifier(table, 'table name')} "
            f"DROP COLUMN IF EXISTS {quote_identifier(column, 'column name')}"
        ]

    def alter_column(self, step: MigrationStep) -> list[str]:
        spec, previous = step.field, step.previous
        if spec is None or previous is None:
            return []

        prefix = (
            f"ALTER TABLE {quote_identifier(step.table, 'table name')} "
            f"ALTER COLUMN {quote_identifier(spec.name, 'column name')}"
        )
        column = quote_identifier(spec.name, "column name")
        statements: list[str] = []

        if step.type_changed:
            # The old default may not cast to the new type
            if previous.default_value is not None:
                statements.append(f"{prefix} DROP DEFAULT")
            new_type = self.column_type(spec)
            statements.append(f"{prefix} TYPE {new_type} USING {column}::{new_type}")

        if step.nullability_changed:
            statements.append(f"{prefix} {'SET' if spec.required else 'DROP'} NOT NULL")

        if step.type_changed or step.default_changed:
            literal = self.default_literal(spec)
            if literal is not None:
                statements.append(f"{prefix} SET DEFAULT {literal}")
            elif step.default_changed and not step.type_changed:
                statements.append(f"{prefix} DROP DEFAULT")

        return statements


# =============================================================================
# SQLite
# =============================================================================


class SqliteDDL(DDLRenderer):
    backend = SQLITE

    def system_column_defs(self) -> list[str]:
        return [
            '"id" INTEGER PRIMARY KEY AUTOINCREMENT',
            f'"created_at" TEXT NOT NULL DEFAULT ({SQLITE_NOW})',
            f'"updated_at" TEXT NOT NULL DEFAULT ({SQLITE_NOW})',
        ]

    def trigger_name(self, table: str) -> str:
        return f"{table}_touch_updated_at"

    def timestamp_trigger(self, table: str) -> list[str]:
        quoted = quote_identifier(table, "table name")
        return [
            f'CREATE TRIGGER IF NOT EXISTS "{self.trigger_name(table)}" '
            f"AFTER UPDATE ON {quoted} FOR EACH ROW "
            'WHEN NEW."updated_at" IS OLD."updated_at" '
            f'BEGIN UPDATE {quoted} SET "updated_at" = {SQLITE_NOW} '
            'WHERE "id" = NEW."id"; END'
        ]

    def drop_timestamp_trigger(self, table: str) -> str:
        return f'DROP TRIGGER IF EXISTS "{self.trigger_name(table)}"'

    def drop_column(self, table: str, column: str, existing_columns: set[str]) -> list[str]:
        # Only reached without a rebuild when the column is already gone
        return []

    def alter_column(self, step: MigrationStep) -> list[str]:
        # Column alterations always go through a rebuild
        return []

    def needs_rebuild(self, plan: MigrationPlan, existing_columns: set[str]) -> bool:
        """Whether the plan needs a table rebuild instead of ALTER TABLE."""
        for step in plan.steps:
            if step.action == MigrationAction.ALTER_COLUMN:
                return True
            if step.action == MigrationAction.DROP_COLUMN and step.column in existing_columns:
                return True
            if (
                step.action == MigrationAction.ADD_COLUMN
                and step.field is not None
                and step.field.required
                and step.field.default_value is None
            ):
                return True
        return False

    def render(self, plan: MigrationPlan, existing_columns: set[str] | None = None) -> list[str]:
        existing = existing_columns or set()
        if self.needs_rebuild(plan, existing):
            return self.rebuild(plan.table, plan.fields, existing)
        return super().render(plan, existing)

    def rebuild(self, table: str, fields: list[FieldSpec], existing_columns: set[str]) -> list[str]:
        """
        Statements that rebuild ``table`` with the shape of ``fields``.

        Data in columns present both before and after is preserved, including
        ids; the AUTOINCREMENT counter is carried over so ids are never reused.
        Indexes and the trigger die with the old table and are recreated.
        """
        shadow = f"{table}{REBUILD_SUFFIX}"
        quoted_table = quote_identifier(table, "table name")
        quoted_shadow = quote_identifier(shadow, "table name")

        copied = [name for name in SYSTEM_COLUMNS if name in existing_columns]
        copied += [spec.name for spec in fields if spec.name in existing_columns]
        column_list = ", ".join(quote_identifier(name, "column name") for name in copied)

        statements = [
            f"DROP TABLE IF EXISTS {quoted_shadow}",
            self.create_table(shadow, fields),
        ]
        if copied:
            statements.append(
                f"INSERT INTO {quoted_shadow} ({column_list}) "
                f"SELECT {column_list} FROM {quoted_table}"
            )
        statements += [
            f"DELETE FROM sqlite_sequence WHERE name = '{shadow}'",
            f"INSERT INTO sqlite_sequence (name, seq) "
            f"SELECT '{shadow}', seq FROM sqlite_sequence WHERE name = '{table}'",
            f"DROP TABLE IF EXISTS {quoted_table}",
            f"ALTER TABLE {quoted_shadow} RENAME TO {quoted_table}",
        ]
        statements += [self.create_unique_index(table, spec.name) for spec in fields if spec.unique]
        statements += self.timestamp_trigger(table)
        return statements


def renderer_for(backend: str) -> DDLRenderer:
    """DDL renderer for a dialect name."""
    if backend == POSTGRES:
        return PostgresDDL()
    if backend == SQLITE:
        return SqliteDDL()
    raise ValueError(f"Unsupported database backend: {backend}")
