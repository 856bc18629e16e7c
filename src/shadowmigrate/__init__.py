"""
shadowmigrate - Zero-downtime schema migrations for MongoDB collections.

This library provides:
- A phase-driven orchestrator: backup, transform, index, validate, switch, cleanup
- Shadow-collection builds with unordered batch writes and per-record failures
- Integrity and performance gates before promotion
- Blue-green promotion by rename, with automatic rollback
- MongoDB (Motor) and in-memory stores
- OpenTelemetry tracing and metrics
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("shadowmigrate")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from shadowmigrate.config import MigrationSettings
from shadowmigrate.locks import (
    CollectionLeaseManager,
    LockAcquisitionError,
    LockNotHeldError,
)
from shadowmigrate.migration import (
    IndexSpec,
    MigrationConfig,
    MigrationDefinition,
    MigrationError,
    MigrationOrchestrator,
    MigrationOutcome,
    MigrationPhase,
    MigrationState,
    PerformancePolicy,
    PerformanceProbe,
    TargetSchema,
    ValidatingTransformer,
)
from shadowmigrate.stores import (
    Collection,
    Database,
    InMemoryDatabase,
    MongoDatabase,
    StoreError,
)

__all__ = [
    "__version__",
    # Orchestration
    "MigrationOrchestrator",
    "MigrationOutcome",
    "MigrationConfig",
    "MigrationSettings",
    "MigrationPhase",
    "MigrationState",
    "PerformancePolicy",
    # Definitions
    "MigrationDefinition",
    "ValidatingTransformer",
    "TargetSchema",
    "IndexSpec",
    "PerformanceProbe",
    # Stores
    "Collection",
    "Database",
    "InMemoryDatabase",
    "MongoDatabase",
    # Leases
    "CollectionLeaseManager",
    # Errors
    "MigrationError",
    "StoreError",
    "LockAcquisitionError",
    "LockNotHeldError",
]
