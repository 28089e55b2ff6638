"""
Resource Engine

Declaration-driven record store. A caller declares a named resource (typed
fields with constraints) and the engine materializes a physical table for it,
keeps that table in step with later declaration changes, and serves generic
CRUD against it.

This package provides:
- ResourceSpec / FieldSpec: Declaration types (specs)
- ResourceCatalog: Declaration store coupled to the schema synchronizer
- DynamicDataService: Generic CRUD, filtering, sorting and pagination
- ResourceEngine: Envelope-returning facade used by outer layers
"""

__version__ = "0.3.0"

from resource_engine.specs import FieldSpec, FieldType, ResourceSpec

__all__ = ["FieldSpec", "FieldType", "ResourceSpec"]
