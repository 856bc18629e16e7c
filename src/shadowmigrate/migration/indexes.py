"""
IndexBuilder - Ensures the target indexes on the shadow collection.

Indexing is idempotent: an index that already exists with an identical
definition counts as success, so a rerun after a partial failure is safe.
Any other failure is logged per index and the phase continues; a missing
index shows up later as a slow performance probe.

Usage:
    >>> builder = IndexBuilder()
    >>> report = await builder.ensure(shadow, definition.indexes)
    >>> report.failed
    []
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence

from shadowmigrate.migration.exceptions import IndexBuildError
from shadowmigrate.migration.models import IndexOutcome, IndexReport, IndexSpec, IndexStatus
from shadowmigrate.observability import (
    ATTR_INDEX_NAME,
    ATTR_SHADOW_COLLECTION,
    Tracer,
    create_tracer,
)
from shadowmigrate.stores.interface import Collection, StoreError

logger = logging.getLogger(__name__)


class IndexBuilder:
    """Applies a list of IndexSpecs to a collection in order."""

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def ensure(self, collection: Collection, specs: Sequence[IndexSpec]) -> IndexReport:
        """
        Ensure every index in ``specs`` exists on ``collection``.

        Never raises for a single index; failures are reported per index.

        Returns:
            IndexReport with one outcome per spec, in order
        """
        with self._tracer.span(
            "shadowmigrate.index_builder.ensure",
            {ATTR_SHADOW_COLLECTION: collection.name, "shadowmigrate.index.count": len(specs)},
        ):
            outcomes = [await self._ensure_one(collection, spec) for spec in specs]

        report = IndexReport(outcomes=tuple(outcomes))
        logger.info(
            "Indexes on %s: %d created, %d already present, %d failed",
            collection.name,
            len(report.created),
            len(report.existing),
            len(report.failed),
        )
        return report

    async def _ensure_one(self, collection: Collection, spec: IndexSpec) -> IndexOutcome:
        name = spec.resolved_name
        started = time.perf_counter()
        with self._tracer.span("shadowmigrate.index_builder.create", {ATTR_INDEX_NAME: name}):
            try:
                creation = await collection.create_index(
                    spec.keys,
                    name=name,
                    unique=spec.unique,
                    sparse=spec.sparse,
                    expire_after_seconds=spec.expire_after_seconds,
                    options=spec.options,
                )
            except StoreError as e:
                error = IndexBuildError(name, str(e))
                logger.log(
                    error.severity.log_level,
                    "Index %s on %s failed: %s",
                    name,
                    collection.name,
                    error.message,
                )
                return IndexOutcome(
                    name=name,
                    status=IndexStatus.FAILED,
                    error=error.message,
                    duration_ms=(time.perf_counter() - started) * 1000,
                )

        duration_ms = (time.perf_counter() - started) * 1000
        if creation.created:
            logger.debug("Created index %s in %.1fms", name, duration_ms)
            status = IndexStatus.CREATED
        else:
            logger.debug("Index %s already exists", name)
            status = IndexStatus.EXISTS
        return IndexOutcome(name=name, status=status, duration_ms=duration_ms)


__all__ = ["IndexBuilder"]
