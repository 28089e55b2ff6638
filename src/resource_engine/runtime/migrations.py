"""
Migration planning for resource tables.

Compares an old and a new field list and produces an ordered plan of
physical changes. Planning is backend-neutral; ``ddl.py`` renders a plan into
statements for SQLite or PostgreSQL.

Supported operations:
- Create and drop resource tables
- Add, drop and alter columns (type, nullability, default)
- Add and drop unique indexes

Steps are ordered drops first, then alterations, then additions, so a
dropped unique index never blocks a later change on the same column.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from resource_engine.runtime.errors import StorageError
from resource_engine.specs.resource import FieldSpec

# =============================================================================
# Migration Types
# =============================================================================


class MigrationAction(StrEnum):
    """Types of migration actions."""

    CREATE_TABLE = "create_table"
    DROP_TABLE = "drop_table"
    ADD_COLUMN = "add_column"
    DROP_COLUMN = "drop_column"
    ALTER_COLUMN = "alter_column"
    ADD_UNIQUE_INDEX = "add_unique_index"
    DROP_UNIQUE_INDEX = "drop_unique_index"
    CREATE_TIMESTAMP_TRIGGER = "create_timestamp_trigger"


@dataclass
class MigrationStep:
    """
    A single migration step.

    ``field`` is the target declaration of the column the step touches;
    ``previous`` is the old declaration for ALTER_COLUMN and drop steps.
    """

    action: MigrationAction
    table: str
    field: FieldSpec | None = None
    previous: FieldSpec | None = None

    @property
    def column(self) -> str | None:
        source = self.field or self.previous
        return source.name if source else None

    @property
    def is_destructive(self) -> bool:
        return self.action in (MigrationAction.DROP_TABLE, MigrationAction.DROP_COLUMN)

    @property
    def type_changed(self) -> bool:
        return bool(self.field and self.previous and self.field.type != self.previous.type)

    @property
    def nullability_changed(self) -> bool:
        return bool(
            self.field and self.previous and self.field.required != self.previous.required
        )

    @property
    def default_changed(self) -> bool:
        return bool(
            self.field
            and self.previous
            and self.field.normalized_default() != self.previous.normalized_default()
        )


@dataclass
class MigrationPlan:
    """A complete migration plan for one table."""

    table: str
    steps: list[MigrationStep] = field(default_factory=list)
    fields: list[FieldSpec] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return len(self.steps) == 0

    @property
    def has_destructive(self) -> bool:
        return any(step.is_destructive for step in self.steps)

    def actions(self) -> list[MigrationAction]:
        return [step.action for step in self.steps]

    def steps_for(self, action: MigrationAction) -> list[MigrationStep]:
        return [step for step in self.steps if step.action == action]


class MigrationError(StorageError):
    """Error during migration execution."""


# =============================================================================
# Migration Planning
# =============================================================================


class MigrationPlanner:
    """Plans table changes from field declarations."""

    def plan_create(self, table: str, fields: list[FieldSpec]) -> MigrationPlan:
        """Plan a new table with its unique indexes and timestamp trigger."""
        steps = [MigrationStep(MigrationAction.CREATE_TABLE, table)]
        steps.extend(
            MigrationStep(MigrationAction.ADD_UNIQUE_INDEX, table, field=spec)
            for spec in fields
            if spec.unique
        )
        steps.append(MigrationStep(MigrationAction.CREATE_TIMESTAMP_TRIGGER, table))
        return MigrationPlan(table=table, steps=steps, fields=list(fields))

    def plan_drop(self, table: str) -> MigrationPlan:
        return MigrationPlan(table=table, steps=[MigrationStep(MigrationAction.DROP_TABLE, table)])

    def plan_diff(
        self, table: str, old_fields: list[FieldSpec], new_fields: list[FieldSpec]
    ) -> MigrationPlan:
        """
        Plan the changes that move a table from ``old_fields`` to ``new_fields``.

        Fields are matched by name. Display name, validation rules and order
        are catalog-only and never produce steps.
        """
        old_by_name = {spec.name: spec for spec in old_fields}
        new_by_name = {spec.name: spec for spec in new_fields}

        drops: list[MigrationStep] = []
        alters: list[MigrationStep] = []
        adds: list[MigrationStep] = []

        for name, previous in old_by_name.items():
            if name in new_by_name:
                continue
            if previous.unique:
                drops.append(
                    MigrationStep(MigrationAction.DROP_UNIQUE_INDEX, table, previous=previous)
                )
            drops.append(MigrationStep(MigrationAction.DROP_COLUMN, table, previous=previous))

        for spec in new_fields:
            previous = old_by_name.get(spec.name)
            if previous is None:
                adds.append(MigrationStep(MigrationAction.ADD_COLUMN, table, field=spec))
                if spec.unique:
                    adds.append(MigrationStep(MigrationAction.ADD_UNIQUE_INDEX, table, field=spec))
                continue

            if previous.unique and not spec.unique:
                drops.append(
                    MigrationStep(
                        MigrationAction.DROP_UNIQUE_INDEX, table, field=spec, previous=previous
                    )
                )

            step = MigrationStep(MigrationAction.ALTER_COLUMN, table, field=spec, previous=previous)
            if step.type_changed or step.nullability_changed or step.default_changed:
                alters.append(step)

            if spec.unique and not previous.unique:
                adds.append(
                    MigrationStep(
                        MigrationAction.ADD_UNIQUE_INDEX, table, field=spec, previous=previous
                    )
                )

        return MigrationPlan(table=table, steps=drops + alters + adds, fields=list(new_fields))
