"""
BackupManager for full-extraction snapshots of the source collection.

The backup is the first step of every run and the last line of defence: if
automated rollback fails, operators restore from this artifact. It is
written before anything is mutated and verified by reading it back.

Responsibilities:
- Read every source record (no filter)
- Serialize to a timestamped, collision-free file as MongoDB Extended JSON
- Reopen the file and verify the record count
- Load an artifact back for manual recovery

Artifact layout:
    {"timestamp": ..., "sourceCollection": ..., "recordCount": N, "records": [...]}

Usage:
    >>> manager = BackupManager("backups")
    >>> snapshot = await manager.snapshot(products)
    >>> snapshot.record_count
    1000
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from bson import json_util

from shadowmigrate.migration.exceptions import BackupError
from shadowmigrate.migration.models import BackupSnapshot
from shadowmigrate.observability import (
    ATTR_BACKUP_LOCATION,
    ATTR_RECORD_COUNT,
    ATTR_SOURCE_COLLECTION,
    Tracer,
    create_tracer,
)
from shadowmigrate.stores.interface import Collection, Document, StoreError

logger = logging.getLogger(__name__)

_JSON_OPTIONS = json_util.RELAXED_JSON_OPTIONS


class BackupManager:
    """
    Takes and verifies full backups of a collection.

    Example:
        >>> manager = BackupManager(Path("backups"))
        >>> snapshot = await manager.snapshot(products, expect_non_empty=True)
        >>> records = await manager.load(snapshot.location)
    """

    def __init__(
        self,
        backup_dir: str | Path,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the backup manager.

        Args:
            backup_dir: Directory backup artifacts are written to (created on demand)
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to enable tracing. Ignored if tracer is provided.
            clock: Source of the snapshot timestamp (defaults to UTC now)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._backup_dir = Path(backup_dir)
        self._clock = clock or (lambda: datetime.now(UTC))

    async def snapshot(
        self,
        source: Collection,
        *,
        expect_non_empty: bool = True,
    ) -> BackupSnapshot:
        """
        Back up every record of ``source``.

        Args:
            source: Collection to back up
            expect_non_empty: Raise if the collection holds no records

        Returns:
            BackupSnapshot describing the verified artifact

        Raises:
            BackupError: If reading, writing or verification fails
        """
        with self._tracer.span(
            "shadowmigrate.backup.snapshot",
            {ATTR_SOURCE_COLLECTION: source.name},
        ):
            try:
                records = [record async for record in source.find()]
            except StoreError as e:
                raise BackupError(f"Failed to read {source.name}: {e}") from e

            if not records and expect_non_empty:
                raise BackupError(
                    f"Source collection {source.name!r} is empty; refusing to migrate nothing"
                )

            timestamp = self._clock()
            payload = {
                "timestamp": timestamp.isoformat(),
                "sourceCollection": source.name,
                "recordCount": len(records),
                "records": records,
            }
            encoded = json_util.dumps(payload, json_options=_JSON_OPTIONS, indent=2)

            path = await asyncio.to_thread(self._write, source.name, timestamp, encoded)
            logger.info("Wrote backup of %d records to %s", len(records), path)

            verified = await self._verify(path, len(records))
            data = await asyncio.to_thread(path.read_bytes)
            snapshot = BackupSnapshot(
                location=str(path),
                timestamp=timestamp,
                record_count=verified,
                byte_size=len(data),
                checksum=hashlib.sha256(data).hexdigest(),
                source_collection=source.name,
            )

        logger.info(
            "Backup verified: %s (%d records, %.2f MB)",
            snapshot.location,
            snapshot.record_count,
            snapshot.byte_size / 1024 / 1024,
        )
        return snapshot

    def _write(self, source_name: str, timestamp: datetime, encoded: str) -> Path:
        stamp = timestamp.strftime("%Y%m%dT%H%M%S%fZ")
        path = self._backup_dir / f"{source_name}-backup-{stamp}-{uuid4().hex[:8]}.json"
        try:
            self._backup_dir.mkdir(parents=True, exist_ok=True)
            # Exclusive create: never overwrite an earlier backup.
            with path.open("x", encoding="utf-8") as handle:
                handle.write(encoded)
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as e:
            raise BackupError(f"Cannot write backup to {path}: {e}", location=str(path)) from e
        return path

    async def _verify(self, path: Path, expected: int) -> int:
        try:
            payload = await asyncio.to_thread(self._read, path)
        except (OSError, ValueError) as e:
            raise BackupError(
                f"Backup at {path} could not be read back: {e}", location=str(path)
            ) from e

        records = payload.get("records")
        if not isinstance(records, list) or len(records) != expected:
            found = len(records) if isinstance(records, list) else None
            raise BackupError(
                f"Backup verification failed: expected {expected} records, found {found}",
                location=str(path),
            )
        if payload.get("recordCount") != expected:
            raise BackupError(
                f"Backup verification failed: header says {payload.get('recordCount')} records, "
                f"expected {expected}",
                location=str(path),
            )
        return len(records)

    @staticmethod
    def _read(path: Path) -> dict[str, Any]:
        with path.open(encoding="utf-8") as handle:
            payload: dict[str, Any] = json_util.loads(handle.read(), json_options=_JSON_OPTIONS)
        return payload

    async def load(self, location: str | Path) -> list[Document]:
        """
        Read the records of a backup artifact.

        ObjectIds and dates come back as their BSON types.

        Raises:
            BackupError: If the artifact is missing or malformed
        """
        path = Path(location)
        try:
            payload = await asyncio.to_thread(self._read, path)
        except (OSError, ValueError) as e:
            raise BackupError(f"Cannot read backup {path}: {e}", location=str(path)) from e
        records = payload.get("records")
        if not isinstance(records, list):
            raise BackupError(f"Backup {path} has no records array", location=str(path))
        return records

    async def restore(self, location: str | Path, target: Collection) -> int:
        """
        Write the records of a backup artifact into ``target``.

        For manual recovery after ``ROLLBACK_FAILED``. The target must not
        already hold the records; duplicates are reported, not overwritten.

        Returns:
            Number of records inserted

        Raises:
            BackupError: If the artifact cannot be read or some records are rejected
        """
        records = await self.load(location)
        with self._tracer.span(
            "shadowmigrate.backup.restore",
            {ATTR_BACKUP_LOCATION: str(location), ATTR_RECORD_COUNT: len(records)},
        ):
            try:
                outcome = await target.insert_many(records, ordered=False)
            except StoreError as e:
                raise BackupError(f"Restore into {target.name} failed: {e}") from e
        if not outcome.all_inserted:
            raise BackupError(
                f"Restore into {target.name} rejected {outcome.failed_count} of "
                f"{len(records)} records",
                location=str(location),
            )
        logger.info(
            "Restored %d records from %s into %s", outcome.inserted_count, location, target.name
        )
        return outcome.inserted_count


__all__ = ["BackupManager"]
