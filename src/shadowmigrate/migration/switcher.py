"""
BlueGreenSwitcher - Promotes the shadow collection to the live name.

Promotion is two sequential renames:
    1. live -> freshly generated backup name
    2. shadow -> live

Between the two steps the live name does not exist. The store offers no
atomic swap, so the window is measured, reported and bounded by a warning
threshold (``max_window_ms``, 5000ms by default). Readers that must detect
the window look at the run lease, whose phase is ``switch`` for its
duration.

Failure handling:
    - Step 1 fails: nothing was renamed; SwitchError(step=1) without a
      backup collection name
    - Step 2 fails: the live data sits under the backup name and the live
      name is vacant; SwitchError(step=2) carries the backup name so the
      orchestrator can roll back

Usage:
    >>> switcher = BlueGreenSwitcher()
    >>> result = await switcher.promote(products, products_v2)
    >>> result.backup_collection_name
    'products_backup_1718000000000'
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from shadowmigrate.migration.exceptions import SwitchError
from shadowmigrate.migration.metrics import MigrationMetrics
from shadowmigrate.migration.models import SwitchResult
from shadowmigrate.observability import (
    ATTR_BACKUP_COLLECTION,
    ATTR_SHADOW_COLLECTION,
    ATTR_SOURCE_COLLECTION,
    Tracer,
    create_tracer,
)
from shadowmigrate.stores.interface import Collection, StoreError

logger = logging.getLogger(__name__)

ATTR_SWITCH_DURATION_MS = "shadowmigrate.switch.duration_ms"
ATTR_SWITCH_WINDOW_EXCEEDED = "shadowmigrate.switch.window_exceeded"


def _epoch_ms() -> int:
    return time.time_ns() // 1_000_000


class BlueGreenSwitcher:
    """
    Renames collections to promote a shadow into place.

    Args:
        max_window_ms: Switch duration above which a warning is logged
        clock_ms: Wall clock in epoch milliseconds, used for backup names
        metrics: Optional metrics recorder
    """

    def __init__(
        self,
        *,
        max_window_ms: float = 5000.0,
        clock_ms: Callable[[], int] | None = None,
        metrics: MigrationMetrics | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._max_window_ms = max_window_ms
        self._clock_ms = clock_ms or _epoch_ms
        self._metrics = metrics

    def backup_name_for(self, live_name: str) -> str:
        """Generate the name the live collection is preserved under."""
        return f"{live_name}_backup_{self._clock_ms()}"

    async def promote(self, live: Collection, shadow: Collection) -> SwitchResult:
        """
        Promote ``shadow`` to ``live``'s name, preserving the live data.

        Raises:
            SwitchError: If either rename fails
        """
        backup_name = self.backup_name_for(live.name)
        live_name = live.name
        shadow_name = shadow.name

        with self._tracer.span(
            "shadowmigrate.switcher.promote",
            {
                ATTR_SOURCE_COLLECTION: live_name,
                ATTR_SHADOW_COLLECTION: shadow_name,
                ATTR_BACKUP_COLLECTION: backup_name,
            },
        ) as span:
            started = time.perf_counter()
            logger.info(
                "Switching %s -> %s (previous data to %s)", shadow_name, live_name, backup_name
            )

            try:
                await live.rename(backup_name)
            except StoreError as e:
                self._record(started, success=False)
                raise SwitchError(
                    f"Could not move {live_name} aside to {backup_name}: {e}",
                    step=1,
                ) from e

            try:
                await shadow.rename(live_name)
            except StoreError as e:
                self._record(started, success=False)
                logger.critical(
                    "Switch step 2 failed; %s is vacant and its data is under %s",
                    live_name,
                    backup_name,
                )
                raise SwitchError(
                    f"Could not promote {shadow_name} to {live_name}: {e}",
                    step=2,
                    backup_collection_name=backup_name,
                ) from e

            duration_ms = self._record(started, success=True)
            exceeded = duration_ms > self._max_window_ms
            if span is not None:
                span.set_attribute(ATTR_SWITCH_DURATION_MS, duration_ms)
                span.set_attribute(ATTR_SWITCH_WINDOW_EXCEEDED, exceeded)

        if exceeded:
            logger.warning(
                "Switch window of %.1fms exceeded the %.0fms limit",
                duration_ms,
                self._max_window_ms,
            )
        else:
            logger.info("Switch completed in %.1fms", duration_ms)

        return SwitchResult(
            live_name=live_name,
            shadow_name=shadow_name,
            backup_collection_name=backup_name,
            duration_ms=duration_ms,
            window_exceeded=exceeded,
        )

    def _record(self, started: float, *, success: bool) -> float:
        duration_ms = (time.perf_counter() - started) * 1000
        if self._metrics is not None:
            self._metrics.record_switch_duration(duration_ms, success=success)
        return duration_ms


__all__ = ["BlueGreenSwitcher"]
