"""
Collection stores used by the migration.

- interface: Abstract Collection/Database and result types
- in_memory: In-memory implementation for tests and development
- mongodb: MongoDB implementation on the Motor driver
"""

from shadowmigrate.stores.in_memory import InMemoryCollection, InMemoryDatabase
from shadowmigrate.stores.interface import (
    Collection,
    CollectionExistsError,
    CollectionNotFoundError,
    Database,
    Document,
    DuplicateRecordError,
    ExplainResult,
    Filter,
    IndexConflictError,
    IndexCreation,
    IndexKeys,
    InsertOutcome,
    SortSpec,
    StoreError,
    StoreOperationError,
    WriteFailure,
    default_index_name,
)
from shadowmigrate.stores.mongodb import MongoCollection, MongoDatabase

__all__ = [
    # Interface
    "Collection",
    "Database",
    "Document",
    "Filter",
    "SortSpec",
    "IndexKeys",
    "InsertOutcome",
    "WriteFailure",
    "IndexCreation",
    "ExplainResult",
    "default_index_name",
    # Errors
    "StoreError",
    "StoreOperationError",
    "CollectionNotFoundError",
    "CollectionExistsError",
    "DuplicateRecordError",
    "IndexConflictError",
    # Implementations
    "InMemoryDatabase",
    "InMemoryCollection",
    "MongoDatabase",
    "MongoCollection",
]
