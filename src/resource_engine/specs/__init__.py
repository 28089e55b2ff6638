"""
Resource declaration types.

This module exports the declaration types and the type mapping table.
"""

from resource_engine.specs.field_types import (
    TYPE_MAPPING,
    FieldType,
    TypeMapping,
    get_mapping,
)
from resource_engine.specs.resource import (
    SYSTEM_COLUMNS,
    TABLE_PREFIX,
    FieldSpec,
    ResourceDefinition,
    ResourceSpec,
    ValidationRules,
    is_identifier_safe,
    table_name_for,
)

__all__ = [
    # Field types
    "FieldType",
    "TypeMapping",
    "TYPE_MAPPING",
    "get_mapping",
    # Declarations
    "ResourceSpec",
    "ResourceDefinition",
    "FieldSpec",
    "ValidationRules",
    # Naming
    "TABLE_PREFIX",
    "SYSTEM_COLUMNS",
    "is_identifier_safe",
    "table_name_for",
]
