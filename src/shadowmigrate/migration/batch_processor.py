"""
BatchProcessor - Transforms source records into the shadow collection.

Responsibilities:
    - Drop any shadow collection left by an aborted run
    - Read the full source in fixed-size batches
    - Apply the transformer to every record, isolating per-record failures
    - Write each batch's survivors with one unordered bulk insert
    - Report running totals after every batch

A record that fails transformation is recorded and skipped, never retried.
A record the store rejects (e.g. a duplicate key) is recorded the same way;
the unordered insert lets the rest of its batch land.

Usage:
    >>> processor = BatchProcessor(batch_size=10)
    >>> async for progress in processor.run(products, transformer, shadow):
    ...     print(f"{progress.statistics.migrated} migrated, {progress.statistics.failed} failed")
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

from shadowmigrate.migration.exceptions import TransformationError
from shadowmigrate.migration.metrics import MigrationMetrics
from shadowmigrate.migration.models import MigrationStatistics, TransformationFailure
from shadowmigrate.migration.transformer import RecordTransformer
from shadowmigrate.observability import (
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_SHADOW_COLLECTION,
    ATTR_SOURCE_COLLECTION,
    Tracer,
    create_tracer,
)
from shadowmigrate.stores.interface import Collection, Document

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchProgress:
    """
    Progress after one batch.

    Attributes:
        batch_number: One-based number of the batch just written (0 for an empty source)
        batch_total: Batches expected from the initial source count
        expected_total: Source records counted before processing started
        statistics: Running totals including this batch
        records_per_second: Processing rate so far
        is_complete: Whether this is the final progress update
    """

    batch_number: int
    batch_total: int
    expected_total: int
    statistics: MigrationStatistics
    records_per_second: float
    is_complete: bool = False

    @property
    def percent_complete(self) -> float:
        if self.expected_total == 0:
            return 100.0 if self.is_complete else 0.0
        return min(100.0, (self.statistics.processed / self.expected_total) * 100)


class BatchProcessor:
    """
    Streams source records through a transformer into a sink collection.

    Example:
        >>> processor = BatchProcessor(batch_size=10, tracer=MockTracer())
        >>> stats = await processor.run_to_completion(source, transformer, shadow)
        >>> stats.migrated + stats.failed == stats.total_source
        True
    """

    def __init__(
        self,
        *,
        batch_size: int = 10,
        id_field: str = "_id",
        metrics: MigrationMetrics | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the processor.

        Args:
            batch_size: Records per batch
            id_field: Field identifying a source record in failure reports
            metrics: Optional metrics recorder
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to enable tracing. Ignored if tracer is provided.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._batch_size = batch_size
        self._id_field = id_field
        self._metrics = metrics

    @property
    def batch_size(self) -> int:
        return self._batch_size

    async def run(
        self,
        source: Collection,
        transformer: RecordTransformer,
        sink: Collection,
        progress_callback: Callable[[BatchProgress], None] | None = None,
    ) -> AsyncIterator[BatchProgress]:
        """
        Process the whole source, yielding progress after every batch.

        The last progress yielded has ``is_complete=True`` and carries the
        final statistics; an empty source yields only that one.

        Args:
            source: Collection to read
            transformer: Converts each source record
            sink: Shadow collection to write (dropped first)
            progress_callback: Called with every progress update

        Raises:
            StoreError: If reading the source or writing a batch fails outright
        """
        with self._tracer.span(
            "shadowmigrate.batch_processor.run",
            {
                ATTR_SOURCE_COLLECTION: source.name,
                ATTR_SHADOW_COLLECTION: sink.name,
                ATTR_BATCH_SIZE: self._batch_size,
            },
        ):
            if await sink.exists():
                logger.warning("Dropping leftover shadow collection %s", sink.name)
                await sink.drop()

            expected = await source.count()
            batch_total = -(-expected // self._batch_size)
            logger.info(
                "Transforming %d records from %s into %s in %d batches of %d",
                expected,
                source.name,
                sink.name,
                batch_total,
                self._batch_size,
            )

            started = time.monotonic()
            statistics = MigrationStatistics()
            batch: list[Document] = []
            batch_number = 0

            async for record in source.find(sort=[("_id", 1)]):
                batch.append(record)
                if len(batch) < self._batch_size:
                    continue
                batch_number += 1
                statistics = await self._process_batch(
                    batch, batch_number, transformer, sink, statistics
                )
                batch = []
                progress = self._progress(
                    batch_number, batch_total, expected, statistics, started
                )
                if progress_callback:
                    progress_callback(progress)
                yield progress

            if batch:
                batch_number += 1
                statistics = await self._process_batch(
                    batch, batch_number, transformer, sink, statistics
                )

            final = self._progress(
                batch_number, batch_total, expected, statistics, started, is_complete=True
            )
            logger.info(
                "Transform complete: %d read, %d migrated, %d failed",
                statistics.total_source,
                statistics.migrated,
                statistics.failed,
            )
            if progress_callback:
                progress_callback(final)
            yield final

    async def run_to_completion(
        self,
        source: Collection,
        transformer: RecordTransformer,
        sink: Collection,
    ) -> MigrationStatistics:
        """Process the whole source and return the final statistics."""
        statistics = MigrationStatistics()
        async for progress in self.run(source, transformer, sink):
            statistics = progress.statistics
        return statistics

    async def _process_batch(
        self,
        records: list[Document],
        batch_number: int,
        transformer: RecordTransformer,
        sink: Collection,
        statistics: MigrationStatistics,
    ) -> MigrationStatistics:
        with self._tracer.span(
            "shadowmigrate.batch_processor.batch",
            {ATTR_BATCH_NUMBER: batch_number, ATTR_BATCH_SIZE: len(records)},
        ):
            transformed: list[Document] = []
            transformed_ids: list[Any] = []
            failures: list[TransformationFailure] = []

            for record in records:
                source_id = record.get(self._id_field)
                try:
                    transformed.append(transformer.transform(record))
                    transformed_ids.append(source_id)
                except TransformationError as e:
                    reported_id = e.source_id if e.source_id is not None else source_id
                    failures.append(TransformationFailure(reported_id, e.message))
                except Exception as e:
                    failures.append(
                        TransformationFailure(source_id, f"{type(e).__name__}: {e}")
                    )

            inserted = 0
            if transformed:
                outcome = await sink.insert_many(transformed, ordered=False)
                inserted = outcome.inserted_count
                for rejected in outcome.failures:
                    failures.append(
                        TransformationFailure(
                            transformed_ids[rejected.index],
                            f"write rejected: {rejected.message}",
                        )
                    )

            if failures:
                logger.warning(
                    "Batch %d: %d of %d records failed (first: %s)",
                    batch_number,
                    len(failures),
                    len(records),
                    failures[0].reason,
                )
            else:
                logger.debug("Batch %d: %d records migrated", batch_number, inserted)

            if self._metrics is not None:
                self._metrics.record_batch(inserted, len(failures))

            return statistics.with_batch(read=len(records), migrated=inserted, failures=failures)

    @staticmethod
    def _progress(
        batch_number: int,
        batch_total: int,
        expected: int,
        statistics: MigrationStatistics,
        started: float,
        *,
        is_complete: bool = False,
    ) -> BatchProgress:
        elapsed = time.monotonic() - started
        rate = statistics.processed / elapsed if elapsed > 0 else 0.0
        return BatchProgress(
            batch_number=batch_number,
            batch_total=batch_total,
            expected_total=expected,
            statistics=statistics,
            records_per_second=rate,
            is_complete=is_complete,
        )


__all__ = ["BatchProcessor", "BatchProgress"]
