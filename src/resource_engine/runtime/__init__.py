"""
Resource engine runtime.

Store handle, catalog, schema synchronizer, record validation, data service,
the envelope-returning facade and the FastAPI adapter.
"""

from resource_engine.runtime.catalog import ResourceCatalog
from resource_engine.runtime.config import EngineConfig, get_config, load_config
from resource_engine.runtime.data_service import DynamicDataService, ListOptions
from resource_engine.runtime.database import DatabaseManager
from resource_engine.runtime.engine import ResourceEngine
from resource_engine.runtime.envelope import ApiResponse
from resource_engine.runtime.errors import (
    AlreadyExistsError,
    ErrorKind,
    InvalidDeclarationError,
    NotFoundError,
    RecordValidationError,
    ResourceEngineError,
    StorageError,
)
from resource_engine.runtime.schema_sync import SchemaSynchronizer
from resource_engine.runtime.validator import RecordValidator, validate_record

__all__ = [
    # Store
    "DatabaseManager",
    "EngineConfig",
    "get_config",
    "load_config",
    # Components
    "ResourceCatalog",
    "SchemaSynchronizer",
    "RecordValidator",
    "validate_record",
    "DynamicDataService",
    "ListOptions",
    # Facade
    "ResourceEngine",
    "ApiResponse",
    # Errors
    "ErrorKind",
    "ResourceEngineError",
    "AlreadyExistsError",
    "NotFoundError",
    "InvalidDeclarationError",
    "RecordValidationError",
    "StorageError",
]
