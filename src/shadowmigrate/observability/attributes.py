"""
Standard span and metric attributes for shadowmigrate.

Attribute keys shared by every migration component so spans and metrics can
be filtered consistently across a run.

Example:
    >>> from shadowmigrate.observability.attributes import (
    ...     ATTR_RUN_ID,
    ...     ATTR_SOURCE_COLLECTION,
    ... )
    >>>
    >>> with tracer.span(
    ...     "shadowmigrate.orchestrator.run",
    ...     {ATTR_RUN_ID: run_id, ATTR_SOURCE_COLLECTION: "products"},
    ... ):
    ...     pass
"""

# =============================================================================
# Run Attributes
# =============================================================================

ATTR_RUN_ID = "shadowmigrate.run.id"
"""Identifier of the migration run (string)."""

ATTR_MIGRATION_NAME = "shadowmigrate.migration.name"
"""Name of the migration definition being applied (string)."""

ATTR_MIGRATION_VERSION = "shadowmigrate.migration.version"
"""Version of the migration definition being applied (string)."""

ATTR_PHASE = "shadowmigrate.phase"
"""Phase being executed (string)."""

# =============================================================================
# Collection Attributes
# =============================================================================

ATTR_SOURCE_COLLECTION = "shadowmigrate.collection.source"
"""Name of the live collection being migrated (string)."""

ATTR_SHADOW_COLLECTION = "shadowmigrate.collection.shadow"
"""Name of the shadow collection receiving transformed records (string)."""

ATTR_BACKUP_COLLECTION = "shadowmigrate.collection.backup"
"""Name the live collection was renamed to during promotion (string)."""

ATTR_COLLECTION = "shadowmigrate.collection.name"
"""Collection an individual store operation targets (string)."""

# =============================================================================
# Batch Attributes
# =============================================================================

ATTR_BATCH_NUMBER = "shadowmigrate.batch.number"
"""One-based batch number (integer)."""

ATTR_BATCH_SIZE = "shadowmigrate.batch.size"
"""Records in the batch (integer)."""

ATTR_RECORD_COUNT = "shadowmigrate.record.count"
"""Number of records involved in an operation (integer)."""

# =============================================================================
# Gate Attributes
# =============================================================================

ATTR_INDEX_NAME = "shadowmigrate.index.name"
"""Name of the index being ensured (string)."""

ATTR_PROBE_NAME = "shadowmigrate.probe.name"
"""Name of the performance probe being executed (string)."""

ATTR_BACKUP_LOCATION = "shadowmigrate.backup.location"
"""Storage location of the backup artifact (string)."""

ATTR_LOCK_KEY = "shadowmigrate.lock.key"
"""Key of the run lease (string)."""

__all__ = [
    "ATTR_RUN_ID",
    "ATTR_MIGRATION_NAME",
    "ATTR_MIGRATION_VERSION",
    "ATTR_PHASE",
    "ATTR_SOURCE_COLLECTION",
    "ATTR_SHADOW_COLLECTION",
    "ATTR_BACKUP_COLLECTION",
    "ATTR_COLLECTION",
    "ATTR_BATCH_NUMBER",
    "ATTR_BATCH_SIZE",
    "ATTR_RECORD_COUNT",
    "ATTR_INDEX_NAME",
    "ATTR_PROBE_NAME",
    "ATTR_BACKUP_LOCATION",
    "ATTR_LOCK_KEY",
]
