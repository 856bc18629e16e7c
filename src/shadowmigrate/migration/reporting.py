"""
Migration report artifact.

A report is written at the end of every run, successful or not, as a JSON
document with camelCase keys:

    {
      "timestamp": "...", "durationMs": 8123.4, "success": true,
      "runId": "...", "phase": "completed", "failedPhase": null, "error": null,
      "statistics": {"totalProducts": 1000, "migratedProducts": 950, ...},
      "backupLocation": "backups/products-backup-....json",
      "rollbackCollectionName": "products_backup_1718000000000",
      "performanceCompliance": true,
      "phases": [...], "indexes": {...}, "validation": {...},
      "performance": {...}, "nextSteps": [...]
    }

Example:
    >>> report = MigrationReport.from_state(state, migration=definition.name)
    >>> path = await ReportWriter("migration-report.json").write(report)
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shadowmigrate.migration.models import MigrationPhase, MigrationState

logger = logging.getLogger(__name__)

COMPLETED_NEXT_STEPS: tuple[str, ...] = (
    "Monitor application logs for any issues",
    "Run performance tests in production",
    "Clean up backup collections after 30 days",
    "Update API documentation to reflect new schema",
)


class MigrationReport(BaseModel):
    """
    Summary of one run, serialized with camelCase keys.

    Nested sections hold the ``to_dict()`` output of the corresponding
    model and are None when the run never reached that phase.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    duration_ms: float
    success: bool
    run_id: str
    migration: str | None = None
    migration_version: str | None = None
    phase: str
    failed_phase: str | None = None
    error: str | None = None
    rollback_error: str | None = None
    statistics: dict[str, Any]
    backup_location: str | None = None
    backup: dict[str, Any] | None = None
    rollback_collection_name: str | None = None
    performance_compliance: bool | None = None
    phases: list[dict[str, Any]] = Field(default_factory=list)
    indexes: dict[str, Any] | None = None
    validation: dict[str, Any] | None = None
    performance: dict[str, Any] | None = None
    switch: dict[str, Any] | None = None
    rollback: dict[str, Any] | None = None
    next_steps: list[str] = Field(default_factory=list)

    @classmethod
    def from_state(
        cls,
        state: MigrationState,
        *,
        migration: str | None = None,
        migration_version: str | None = None,
    ) -> MigrationReport:
        """Build the report for a run's final state."""
        performance = state.performance_report
        return cls(
            timestamp=state.finished_at or datetime.now(UTC),
            duration_ms=round(state.duration_ms, 3),
            success=state.succeeded,
            run_id=state.run_id,
            migration=migration,
            migration_version=migration_version,
            phase=state.phase.value,
            failed_phase=state.failed_phase.value if state.failed_phase else None,
            error=state.error,
            rollback_error=state.rollback_error,
            statistics=state.statistics.to_dict(),
            backup_location=state.backup_location,
            backup=state.backup_snapshot.to_dict() if state.backup_snapshot else None,
            rollback_collection_name=state.backup_collection_name,
            performance_compliance=performance.overall_passed if performance else None,
            phases=[record.to_dict() for record in state.phase_history],
            indexes=state.index_report.to_dict() if state.index_report else None,
            validation=state.validation_report.to_dict() if state.validation_report else None,
            performance=performance.to_dict() if performance else None,
            switch=state.switch_result.to_dict() if state.switch_result else None,
            rollback=state.rollback_result.to_dict() if state.rollback_result else None,
            next_steps=next_steps_for(state),
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


def next_steps_for(state: MigrationState) -> list[str]:
    """Operator follow-ups for a run's final state."""
    if state.phase == MigrationPhase.COMPLETED:
        return list(COMPLETED_NEXT_STEPS)

    if state.phase == MigrationPhase.ROLLBACK_FAILED:
        steps = [
            f"Restore {state.source_collection} manually from {state.backup_location}",
        ]
        if state.backup_collection_name:
            steps.append(
                f"Check whether {state.backup_collection_name} still holds the original data"
            )
        steps.append("Keep application traffic off the collection until it is restored")
        return steps

    steps = ["Review the error and failed phase in this report"]
    if state.statistics.validation_errors:
        steps.append("Fix the transformer for the records listed under validationErrors")
    if state.rollback_available:
        steps.append(f"Keep the backup at {state.backup_location} until a rerun completes")
    steps.append("Rerun the migration once the cause is fixed")
    return steps


class ReportWriter:
    """
    Writes reports to a JSON file.

    The file is written next to its destination and moved into place, so a
    reader never sees a partial report.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def write(self, report: MigrationReport) -> Path:
        payload = report.to_json()
        await asyncio.to_thread(self._write, payload)
        logger.info("Migration report saved to %s", self._path)
        return self._path

    def _write(self, payload: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        partial = self._path.with_name(self._path.name + ".partial")
        partial.write_text(payload + "\n", encoding="utf-8")
        os.replace(partial, self._path)


__all__ = [
    "COMPLETED_NEXT_STEPS",
    "MigrationReport",
    "ReportWriter",
    "next_steps_for",
]
