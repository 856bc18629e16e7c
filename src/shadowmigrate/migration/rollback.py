"""
RollbackManager - Restores the live collection after a failed run.

Two situations are handled:

- The switch had moved the live data aside (``backup_collection_name`` is
  known): whatever occupies the live name is dropped and the backup
  collection is renamed back.
- The run failed before the switch: the live collection was never touched,
  so rollback only confirms that it still exists.

In both cases the shadow collection, if still present under its own name,
is discarded, and the restored live count is checked against the count
recorded at backup time.

Any failure here is unrecoverable by automation and raises RollbackError;
the operator restores from the backup artifact.

Usage:
    >>> manager = RollbackManager(database)
    >>> result = await manager.restore(
    ...     "products_backup_1718000000000",
    ...     "products",
    ...     shadow_name="products_v2",
    ...     expected_count=1000,
    ... )
"""

from __future__ import annotations

import logging
import time

from shadowmigrate.migration.exceptions import RollbackError
from shadowmigrate.migration.models import RollbackResult
from shadowmigrate.observability import (
    ATTR_BACKUP_COLLECTION,
    ATTR_SOURCE_COLLECTION,
    Tracer,
    create_tracer,
)
from shadowmigrate.stores.interface import Database, StoreError

logger = logging.getLogger(__name__)


class RollbackManager:
    """
    Puts the pre-migration data back under the live name.

    Args:
        database: Database holding the live, backup and shadow collections
    """

    def __init__(
        self,
        database: Database,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._database = database

    async def restore(
        self,
        backup_collection_name: str | None,
        live_name: str,
        *,
        shadow_name: str | None = None,
        expected_count: int | None = None,
        backup_location: str | None = None,
    ) -> RollbackResult:
        """
        Restore ``live_name`` from ``backup_collection_name``.

        Args:
            backup_collection_name: Name the switch moved the live data to,
                or None if the switch never ran
            live_name: Name to restore
            shadow_name: Shadow collection to discard if it still exists
            expected_count: Records the live collection must hold afterwards
            backup_location: Backup artifact, quoted in errors for the operator

        Raises:
            RollbackError: If the live collection cannot be restored or verified
        """
        started = time.perf_counter()
        with self._tracer.span(
            "shadowmigrate.rollback.restore",
            {
                ATTR_SOURCE_COLLECTION: live_name,
                ATTR_BACKUP_COLLECTION: backup_collection_name or "",
            },
        ):
            try:
                if backup_collection_name is not None:
                    await self._rename_back(backup_collection_name, live_name, backup_location)
                else:
                    await self._confirm_untouched(live_name, expected_count, backup_location)
                discarded = await self._discard_shadow(shadow_name, live_name)
                live_count = await self._database.collection(live_name).count()
            except StoreError as e:
                raise RollbackError(
                    f"Rollback of {live_name} failed: {e}",
                    backup_location=backup_location,
                    backup_collection_name=backup_collection_name,
                ) from e

        if expected_count is not None and live_count != expected_count:
            raise RollbackError(
                f"Rollback of {live_name} left {live_count} records, expected {expected_count}",
                backup_location=backup_location,
                backup_collection_name=backup_collection_name,
            )

        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Rolled back %s (%d records) in %.1fms",
            live_name,
            live_count,
            duration_ms,
        )
        return RollbackResult(
            live_name=live_name,
            restored_from=backup_collection_name,
            discarded_shadow=discarded,
            live_count=live_count,
            duration_ms=duration_ms,
        )

    async def _rename_back(
        self, backup_collection_name: str, live_name: str, backup_location: str | None
    ) -> None:
        backup = self._database.collection(backup_collection_name)
        if not await backup.exists():
            raise RollbackError(
                f"Backup collection {backup_collection_name} does not exist",
                backup_location=backup_location,
                backup_collection_name=backup_collection_name,
            )
        # The live name holds the promoted shadow, or nothing after a failed step 2.
        await self._database.collection(live_name).drop()
        await backup.rename(live_name)
        logger.info("Renamed %s back to %s", backup_collection_name, live_name)

    async def _confirm_untouched(
        self, live_name: str, expected_count: int | None, backup_location: str | None
    ) -> None:
        if expected_count == 0:
            # An empty source may never have been created; there is nothing to restore.
            return
        if not await self._database.collection(live_name).exists():
            raise RollbackError(
                f"Live collection {live_name} is missing and no backup collection was recorded",
                backup_location=backup_location,
            )

    async def _discard_shadow(self, shadow_name: str | None, live_name: str) -> str | None:
        if shadow_name is None or shadow_name == live_name:
            return None
        shadow = self._database.collection(shadow_name)
        if not await shadow.exists():
            return None
        await shadow.drop()
        logger.info("Discarded shadow collection %s", shadow_name)
        return shadow_name


__all__ = ["RollbackManager"]
