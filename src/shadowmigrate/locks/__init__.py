"""
Run-level lease utilities for shadowmigrate.

Provides lease documents for coordinating migration runs across processes.
Only one run may operate on a given source collection at a time, because
shadow and backup collection names would collide.

Example:
    >>> from shadowmigrate.locks import CollectionLeaseManager, migration_lock_key
    >>>
    >>> leases = CollectionLeaseManager(database.collection("migration_locks"))
    >>>
    >>> try:
    ...     async with leases.acquire(migration_lock_key("products")):
    ...         await run_migration()
    ... except LockAcquisitionError:
    ...     print("Another run is migrating products")
"""

from shadowmigrate.locks.lease import (
    CollectionLeaseManager,
    LockAcquisitionError,
    LockInfo,
    LockNotHeldError,
    default_holder_id,
    migration_lock_key,
)

__all__ = [
    "CollectionLeaseManager",
    "LockAcquisitionError",
    "LockInfo",
    "LockNotHeldError",
    "default_holder_id",
    "migration_lock_key",
]
