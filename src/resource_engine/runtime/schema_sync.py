"""
Schema synchronizer - keeps resource tables in step with declarations.

Plans changes with ``MigrationPlanner``, renders them for the connection's
dialect and executes them. When a connection is passed in, statements run
inside the caller's transaction so the catalog write and the table change
commit or roll back together.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from resource_engine.runtime.database import DatabaseManager
from resource_engine.runtime.ddl import SqliteDDL, renderer_for
from resource_engine.runtime.logging import log_with_context
from resource_engine.runtime.migrations import (
    MigrationAction,
    MigrationError,
    MigrationPlan,
    MigrationPlanner,
)
from resource_engine.runtime.query_builder import quote_identifier
from resource_engine.specs.field_types import convert_stored
from resource_engine.specs.resource import FieldSpec

logger = logging.getLogger(__name__)


class SchemaSynchronizer:
    """
    Creates, alters and drops resource tables.

    Example:
        synchronizer = SchemaSynchronizer(db)
        with db.transaction() as conn:
            synchronizer.create_table("dyn_book", fields, conn=conn)
    """

    def __init__(self, db: DatabaseManager, planner: MigrationPlanner | None = None):
        self.db = db
        self.planner = planner or MigrationPlanner()

    def create_table(
        self, table: str, fields: list[FieldSpec], conn: Connection | None = None
    ) -> MigrationPlan:
        """Create a resource table with its unique indexes and timestamp trigger."""
        plan = self.planner.plan_create(table, fields)
        self.apply(plan, conn)
        return plan

    def diff_and_alter(
        self,
        table: str,
        old_fields: list[FieldSpec],
        new_fields: list[FieldSpec],
        conn: Connection | None = None,
    ) -> MigrationPlan:
        """Alter a resource table from ``old_fields`` to ``new_fields``."""
        plan = self.planner.plan_diff(table, old_fields, new_fields)
        if plan.is_empty:
            logger.debug("No physical changes for %s", table)
            return plan
        self.apply(plan, conn)
        return plan

    def drop_table(self, table: str, conn: Connection | None = None) -> MigrationPlan:
        """Drop a resource table (no error if it is already gone)."""
        plan = self.planner.plan_drop(table)
        self.apply(plan, conn)
        return plan

    def apply(self, plan: MigrationPlan, conn: Connection | None = None) -> list[str]:
        """
        Execute a plan.

        Returns:
            The statements executed

        Raises:
            MigrationError: If any statement fails
        """
        if conn is None:
            with self.db.transaction() as own:
                return self._execute(plan, own)
        return self._execute(plan, conn)

    def _execute(self, plan: MigrationPlan, conn: Connection) -> list[str]:
        renderer = renderer_for(conn.dialect.name)
        existing = set(self.db.get_table_columns(plan.table, conn))
        statements = renderer.render(plan, existing)
        if isinstance(renderer, SqliteDDL) and renderer.needs_rebuild(plan, existing):
            self._convert_retyped_columns(plan, renderer, existing, conn)

        for sql in statements:
            logger.debug("DDL: %s", sql)
            try:
                conn.exec_driver_sql(sql, execution_options={"no_parameters": True})
            except SQLAlchemyError as e:
                orig = getattr(e, "orig", None) or e
                raise MigrationError(
                    f"Failed to apply schema change to '{plan.table}': {orig}"
                ) from e

        log_with_context(
            logger,
            logging.INFO,
            f"Applied {len(statements)} schema statement(s) to {plan.table}",
            table=plan.table,
            actions=[action.value for action in plan.actions()],
        )
        return statements

    def _convert_retyped_columns(
        self, plan: MigrationPlan, renderer: SqliteDDL, existing: set[str], conn: Connection
    ) -> None:
        """
        Rewrite stored values of columns whose type changes, ahead of a rebuild.

        The rebuild copies values as they are, so each one is converted to the
        new type here first. A value the new type cannot hold aborts the change.
        """
        steps = [
            step
            for step in plan.steps
            if step.action == MigrationAction.ALTER_COLUMN
            and step.type_changed
            and step.column in existing
        ]
        if not steps:
            return

        table = quote_identifier(plan.table, "table name")
        # The rebuild recreates the trigger; conversions must not touch updated_at
        conn.exec_driver_sql(
            renderer.drop_timestamp_trigger(plan.table),
            execution_options={"no_parameters": True},
        )
        for step in steps:
            assert step.field is not None and step.previous is not None
            column = quote_identifier(step.field.name, "column name")
            rows = conn.execute(
                text(f'SELECT "id", {column} FROM {table} WHERE {column} IS NOT NULL')
            ).all()

            updates = []
            for record_id, value in rows:
                try:
                    converted = convert_stored(value, step.previous.type, step.field.type)
                except ValueError as e:
                    raise MigrationError(
                        f"Failed to apply schema change to '{plan.table}': record {record_id} "
                        f"holds {value!r} in field '{step.field.name}', which cannot become "
                        f"{step.field.type.value} ({e})"
                    ) from None
                updates.append({"record_id": record_id, "value": converted})

            if updates:
                conn.execute(
                    text(f'UPDATE {table} SET {column} = :value WHERE "id" = :record_id'),
                    updates,
                )
            logger.debug(
                "Converted %d value(s) of %s.%s to %s",
                len(updates),
                plan.table,
                step.field.name,
                step.field.type,
            )
