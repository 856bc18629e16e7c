"""
IntegrityValidator - The fatal correctness gate before promotion.

Responsibilities:
    - Compare shadow and source record counts against a ratio threshold
    - Locate sampled source records' counterparts in the shadow collection
    - Check each counterpart carries every required, correctly typed field

The threshold (0.95 by default) tolerates a small number of unrecoverable
legacy records. An empty source makes the ratio undefined, which fails.

Samples are drawn from source records that were not reported as failed by
the batch phase; a record that failed transformation has no counterpart by
definition.

Usage:
    >>> validator = IntegrityValidator(threshold=0.95, schema=definition.target_schema)
    >>> report = await validator.validate(products, shadow)
    >>> validator.enforce(report)  # raises ValidationFailure unless report.passed
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from shadowmigrate.migration.exceptions import ValidationFailure
from shadowmigrate.migration.models import SampleCheck, ValidationReport
from shadowmigrate.migration.transformer import TargetSchema
from shadowmigrate.observability import (
    ATTR_SHADOW_COLLECTION,
    ATTR_SOURCE_COLLECTION,
    Tracer,
    create_tracer,
)
from shadowmigrate.stores.interface import Collection, Document

logger = logging.getLogger(__name__)


class IntegrityValidator:
    """
    Compares a shadow collection with its source.

    Args:
        threshold: Minimum shadow/source count ratio
        sample_size: Source records checked field by field
        id_field: Field shared by a source record and its counterpart
        schema: Required fields checked on each counterpart
    """

    def __init__(
        self,
        *,
        threshold: float = 0.95,
        sample_size: int = 1,
        id_field: str = "_id",
        schema: TargetSchema | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        if not 0.0 < threshold <= 1.0:
            raise ValueError(f"threshold must be in (0, 1], got {threshold}")
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._threshold = threshold
        self._sample_size = sample_size
        self._id_field = id_field
        self._schema = schema

    async def validate(
        self,
        source: Collection,
        shadow: Collection,
        *,
        known_failures: Iterable[Any] = (),
    ) -> ValidationReport:
        """
        Compare ``shadow`` against ``source``.

        Args:
            source: The live collection
            shadow: The transformed collection
            known_failures: Source identifiers the batch phase rejected

        Returns:
            ValidationReport; check ``passed`` or call ``enforce``
        """
        with self._tracer.span(
            "shadowmigrate.integrity_validator.validate",
            {ATTR_SOURCE_COLLECTION: source.name, ATTR_SHADOW_COLLECTION: shadow.name},
        ):
            source_count = await source.count()
            shadow_count = await shadow.count()

            excluded = {_identity(value) for value in known_failures}
            checks: list[SampleCheck] = []
            async for record in source.find(sort=[("_id", 1)]):
                if len(checks) >= self._sample_size:
                    break
                if _identity(record.get(self._id_field)) in excluded:
                    continue
                checks.append(await self._check_sample(record, shadow))

        report = ValidationReport(
            source_count=source_count,
            shadow_count=shadow_count,
            threshold=self._threshold,
            sample_checks=tuple(checks),
        )
        ratio = "undefined" if report.ratio is None else f"{report.ratio:.4f}"
        if report.passed:
            logger.info(
                "Integrity check passed: %d/%d records (ratio %s, threshold %s)",
                shadow_count,
                source_count,
                ratio,
                self._threshold,
            )
        else:
            logger.error("Integrity check failed: %s", "; ".join(report.reasons))
        return report

    def enforce(self, report: ValidationReport) -> None:
        """
        Raise unless the report passed.

        Raises:
            ValidationFailure: If ``report.passed`` is false
        """
        if not report.passed:
            raise ValidationFailure(
                "Integrity validation failed: " + "; ".join(report.reasons),
                report=report,
            )

    async def _check_sample(self, record: Document, shadow: Collection) -> SampleCheck:
        source_id = record.get(self._id_field)
        counterpart = await shadow.find_one({self._id_field: source_id})
        if counterpart is None and source_id is not None and not isinstance(source_id, str):
            # Transformers commonly stringify ObjectId keys.
            counterpart = await shadow.find_one({self._id_field: str(source_id)})
        if counterpart is None:
            return SampleCheck(source_id=source_id, found=False)

        problems = tuple(self._schema.problems(counterpart)) if self._schema else ()
        return SampleCheck(source_id=source_id, found=True, problems=problems)


def _identity(value: Any) -> str:
    return f"{type(value).__name__}:{value!r}"


__all__ = ["IntegrityValidator"]
