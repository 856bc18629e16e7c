"""
Lease documents for run-level coordination.

A lease is a marker document in a dedicated collection:

    {_id: "migration:products", holder, acquired_at, expires_at, phase}

- Inserting the document acquires the lease; the ``_id`` unique index makes
  a second insert fail
- An expired lease may be taken over by a conditional update
- ``phase`` is kept current by the holder so other processes can see what
  the run is doing (in particular, when a switch window is open)
- Deleting the document releases the lease

Usage:
    >>> leases = CollectionLeaseManager(database.collection("migration_locks"))
    >>> async with leases.acquire(migration_lock_key("products")):
    ...     # Only one run per source collection gets here
    ...     await run_phases()
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from shadowmigrate.observability import ATTR_LOCK_KEY, Tracer, create_tracer
from shadowmigrate.stores.interface import Collection, Document, DuplicateRecordError, StoreError

logger = logging.getLogger(__name__)


def migration_lock_key(source_collection: str) -> str:
    """
    Build the lease key for migrations of a source collection.

    Example:
        >>> migration_lock_key("products")
        'migration:products'
    """
    return f"migration:{source_collection}"


def default_holder_id() -> str:
    """Identify this process: host, pid and a random suffix."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


@dataclass(frozen=True)
class LockInfo:
    """
    Information about a lease.

    Attributes:
        key: The lease key (the marker document's ``_id``)
        holder_id: Identifier of the process holding the lease
        acquired_at: When the lease was acquired
        expires_at: When another process may take the lease over
        phase: Last phase the holder reported
    """

    key: str
    holder_id: str
    acquired_at: datetime
    expires_at: datetime
    phase: str | None = None

    @classmethod
    def from_document(cls, document: Document) -> LockInfo:
        return cls(
            key=document["_id"],
            holder_id=document["holder"],
            acquired_at=_aware(document["acquired_at"]),
            expires_at=_aware(document["expires_at"]),
            phase=document.get("phase"),
        )


class LockAcquisitionError(Exception):
    """
    Raised when a lease cannot be acquired.

    Attributes:
        key: The lease key that could not be acquired
        reason: Description of why acquisition failed
        timeout: The timeout value if timeout was the cause
    """

    def __init__(
        self,
        key: str,
        reason: str,
        timeout: float | None = None,
    ):
        self.key = key
        self.reason = reason
        self.timeout = timeout
        super().__init__(f"Failed to acquire lock '{key}': {reason}")


class LockNotHeldError(Exception):
    """
    Raised when releasing or updating a lease this manager does not hold.

    Attributes:
        key: The lease key that was not held
    """

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Lock '{key}' is not held by this holder")


class CollectionLeaseManager:
    """
    Manages lease documents in one collection.

    Leases outlive the process that took them if it crashes; ``ttl_seconds``
    bounds how long they block other runs in that case.

    Example:
        >>> leases = CollectionLeaseManager(locks, ttl_seconds=600)
        >>> try:
        ...     async with leases.acquire("migration:products") as info:
        ...         await leases.update_phase(info.key, "switch")
        ... except LockAcquisitionError:
        ...     print("Another run holds the lease")
    """

    def __init__(
        self,
        collection: Collection,
        *,
        holder_id: str | None = None,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], datetime] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ):
        """
        Initialize the lease manager.

        Args:
            collection: Collection holding the lease documents
            holder_id: Identifier for this holder (defaults to host:pid:random)
            ttl_seconds: Lease lifetime from acquisition
            clock: Returns the current UTC time (injectable for tests)
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to enable OpenTelemetry tracing.
                Ignored if tracer is explicitly provided.
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be > 0, got {ttl_seconds}")
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._collection = collection
        self._holder_id = holder_id or default_holder_id()
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._held: dict[str, LockInfo] = {}
        self._lock = asyncio.Lock()

    @property
    def holder_id(self) -> str:
        return self._holder_id

    @asynccontextmanager
    async def acquire(
        self,
        key: str,
        *,
        phase: str | None = None,
        timeout: float = 0.0,
        retry_interval: float = 0.5,
    ) -> AsyncIterator[LockInfo]:
        """
        Acquire a lease as a context manager.

        The lease is released when the context exits, whether normally or
        due to an exception.

        Args:
            key: Lease key (e.g. "migration:products")
            phase: Initial phase recorded on the lease
            timeout: Seconds to keep retrying while another holder has it
                (0 for a single attempt)
            retry_interval: Seconds between attempts

        Yields:
            LockInfo for the acquired lease

        Raises:
            LockAcquisitionError: If the lease cannot be acquired in time
        """
        with self._tracer.span(
            "shadowmigrate.lock.acquire",
            {ATTR_LOCK_KEY: key, "shadowmigrate.lock.timeout": timeout},
        ):
            info = await self._acquire(key, phase, timeout, retry_interval)

        try:
            yield info
        finally:
            await self._release(key)

    async def _acquire(
        self,
        key: str,
        phase: str | None,
        timeout: float,
        retry_interval: float,
    ) -> LockInfo:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                info = await self.try_acquire(key, phase=phase)
            except StoreError as e:
                raise LockAcquisitionError(key=key, reason=f"Database error: {e}") from e

            if info is not None:
                return info

            if loop.time() >= deadline:
                current = await self.get(key)
                reason = (
                    f"held by {current.holder_id} until {current.expires_at.isoformat()}"
                    if current is not None
                    else "held by another holder"
                )
                if timeout:
                    reason = f"Timeout after {timeout}s; {reason}"
                raise LockAcquisitionError(key=key, reason=reason, timeout=timeout or None)

            await asyncio.sleep(retry_interval)

    async def try_acquire(self, key: str, *, phase: str | None = None) -> LockInfo | None:
        """
        Try to acquire a lease without waiting.

        An expired lease held by anyone is taken over.

        Returns:
            LockInfo if acquired, None if another holder has a live lease

        Note:
            Caller is responsible for calling release() when done.
        """
        now = self._clock()
        fields: dict[str, Any] = {
            "holder": self._holder_id,
            "acquired_at": now,
            "expires_at": now + self._ttl,
            "phase": phase,
        }

        try:
            await self._collection.insert_one({"_id": key, **fields})
        except DuplicateRecordError:
            taken = await self._collection.update_one(
                {"_id": key, "expires_at": {"$lte": now}},
                {"$set": fields},
            )
            if not taken:
                return None
            logger.warning("Took over expired lease: key=%s, holder=%s", key, self._holder_id)

        info = LockInfo(
            key=key,
            holder_id=self._holder_id,
            acquired_at=now,
            expires_at=now + self._ttl,
            phase=phase,
        )
        async with self._lock:
            self._held[key] = info

        logger.debug("Acquired lease: key=%s, holder=%s", key, self._holder_id)
        return info

    async def update_phase(self, key: str, phase: str) -> LockInfo:
        """
        Record the holder's current phase on the lease and extend it by the TTL.

        Raises:
            LockNotHeldError: If the lease is not held, or was taken over
        """
        return await self._refresh(key, phase=phase)

    async def renew(self, key: str) -> LockInfo:
        """
        Extend a held lease by the TTL, keeping its phase.

        Raises:
            LockNotHeldError: If the lease is not held, or was taken over
        """
        return await self._refresh(key)

    async def _refresh(self, key: str, *, phase: str | None = None) -> LockInfo:
        async with self._lock:
            info = self._held.get(key)
        if info is None:
            raise LockNotHeldError(key)

        expires_at = self._clock() + self._ttl
        fields: dict[str, Any] = {"expires_at": expires_at}
        if phase is not None:
            fields["phase"] = phase

        matched = await self._collection.update_one(
            {"_id": key, "holder": self._holder_id},
            {"$set": fields},
        )
        if not matched:
            async with self._lock:
                self._held.pop(key, None)
            raise LockNotHeldError(key)

        updated = LockInfo(
            key=key,
            holder_id=info.holder_id,
            acquired_at=info.acquired_at,
            expires_at=expires_at,
            phase=phase if phase is not None else info.phase,
        )
        async with self._lock:
            self._held[key] = updated
        return updated

    async def release(self, key: str) -> None:
        """
        Release a previously acquired lease.

        Raises:
            LockNotHeldError: If the lease is not held by this manager
        """
        async with self._lock:
            if key not in self._held:
                raise LockNotHeldError(key)

        await self._release(key)

    async def _release(self, key: str) -> None:
        with self._tracer.span("shadowmigrate.lock.release", {ATTR_LOCK_KEY: key}):
            try:
                deleted = await self._collection.delete_one(
                    {"_id": key, "holder": self._holder_id}
                )
                if deleted:
                    logger.debug("Released lease: key=%s", key)
                else:
                    logger.warning(
                        "Lease was no longer held at release: key=%s, holder=%s",
                        key,
                        self._holder_id,
                    )
            except StoreError as e:
                logger.warning(
                    "Error releasing lease: key=%s, error=%s",
                    key,
                    e,
                )
            finally:
                async with self._lock:
                    self._held.pop(key, None)

    async def is_held(self, key: str) -> bool:
        """Check if a lease is currently held by this manager."""
        async with self._lock:
            return key in self._held

    async def get(self, key: str) -> LockInfo | None:
        """Read the current lease document for ``key``, whoever holds it."""
        document = await self._collection.find_one({"_id": key})
        return LockInfo.from_document(document) if document is not None else None


def _aware(value: datetime) -> datetime:
    # Stores without tz-aware decoding return naive UTC datetimes.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


__all__ = [
    "CollectionLeaseManager",
    "LockAcquisitionError",
    "LockInfo",
    "LockNotHeldError",
    "default_holder_id",
    "migration_lock_key",
]
