"""
Unit tests for the migration report and its writer.
"""

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

from shadowmigrate.migration import (
    BackupSnapshot,
    MigrationPhase,
    MigrationReport,
    MigrationState,
    MigrationStatistics,
    PerformanceReport,
    ProbeResult,
    ReportWriter,
    TransformationFailure,
)
from shadowmigrate.migration.reporting import COMPLETED_NEXT_STEPS, next_steps_for

STARTED = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def backed_up_state() -> MigrationState:
    snapshot = BackupSnapshot(
        location="backups/products-backup-1.json",
        timestamp=STARTED,
        record_count=1000,
        byte_size=2048,
        checksum="abc",
        source_collection="products",
    )
    state = MigrationState.begin("run-1", "products", "products_v2", started_at=STARTED)
    return state.with_backup(snapshot).advance(MigrationPhase.BACKUP)


def completed_state() -> MigrationState:
    state = backed_up_state()
    for phase in (
        MigrationPhase.TRANSFORM,
        MigrationPhase.INDEX,
        MigrationPhase.VALIDATE,
        MigrationPhase.SWITCH,
        MigrationPhase.CLEANUP,
        MigrationPhase.COMPLETED,
    ):
        state = state.advance(phase)
    return state.evolve(
        statistics=MigrationStatistics(total_source=1000, migrated=950, failed=50),
        backup_collection_name="products_backup_1718000000000",
        performance_report=PerformanceReport(
            results=(
                ProbeResult(name="Catalog Load Time", latency_ms=4, budget_ms=100, passed=True),
            )
        ),
        finished_at=STARTED + timedelta(seconds=8),
    )


class TestMigrationReport:
    """Tests for MigrationReport.from_state."""

    def test_completed_run(self) -> None:
        report = MigrationReport.from_state(
            completed_state(), migration="products-v2", migration_version="2.0.0"
        )

        assert report.success
        assert report.phase == "completed"
        assert report.duration_ms == 8000.0
        assert report.performance_compliance is True
        assert report.rollback_collection_name == "products_backup_1718000000000"
        assert report.next_steps == list(COMPLETED_NEXT_STEPS)

    def test_json_uses_camel_case(self) -> None:
        data = json.loads(MigrationReport.from_state(completed_state()).to_json())

        assert data["statistics"] == {
            "totalProducts": 1000,
            "migratedProducts": 950,
            "failedProducts": 50,
            "validationErrors": [],
        }
        assert data["backupLocation"] == "backups/products-backup-1.json"
        assert data["rollbackCollectionName"] == "products_backup_1718000000000"
        assert data["performanceCompliance"] is True
        assert data["failedPhase"] is None
        assert data["nextSteps"][0] == "Monitor application logs for any issues"

    def test_rolled_back_run(self) -> None:
        state = backed_up_state().evolve(
            failed_phase=MigrationPhase.VALIDATE,
            error="Integrity validation failed",
            statistics=MigrationStatistics(
                total_source=100,
                migrated=90,
                failed=10,
                validation_errors=(TransformationFailure(1, "bad price"),),
            ),
        )
        state = state.advance(MigrationPhase.ROLLED_BACK)

        report = MigrationReport.from_state(state)

        assert not report.success
        assert report.failed_phase == "validate"
        assert report.performance_compliance is None
        assert report.backup is not None
        assert report.backup["recordCount"] == 1000
        assert any("validationErrors" in step for step in report.next_steps)
        assert any("backups/products-backup-1.json" in step for step in report.next_steps)


class TestNextSteps:
    """Tests for operator follow-ups."""

    def test_rollback_failed_points_at_backup(self) -> None:
        state = (
            backed_up_state()
            .evolve(
                backup_collection_name="products_backup_1",
                rollback_error="rename failed",
            )
            .advance(MigrationPhase.ROLLBACK_FAILED)
        )

        steps = next_steps_for(state)

        assert steps[0] == "Restore products manually from backups/products-backup-1.json"
        assert "products_backup_1" in steps[1]

    def test_failure_before_backup(self) -> None:
        state = MigrationState.begin("run-1", "products", "products_v2").evolve(
            failed_phase=MigrationPhase.BACKUP, error="lease held"
        )

        steps = next_steps_for(state)

        assert steps[0] == "Review the error and failed phase in this report"
        assert steps[-1] == "Rerun the migration once the cause is fixed"
        assert not any("Keep the backup" in step for step in steps)


class TestReportWriter:
    """Tests for ReportWriter."""

    async def test_writes_json_and_creates_directories(self, report_path: Path) -> None:
        writer = ReportWriter(report_path)

        written = await writer.write(MigrationReport.from_state(completed_state()))

        assert written == report_path
        assert json.loads(report_path.read_text(encoding="utf-8"))["runId"] == "run-1"
        assert not report_path.with_name(report_path.name + ".partial").exists()

    async def test_overwrites_previous_report(self, report_path: Path) -> None:
        writer = ReportWriter(report_path)
        await writer.write(MigrationReport.from_state(completed_state()))

        failed = backed_up_state().evolve(failed_phase=MigrationPhase.TRANSFORM, error="x")
        await writer.write(MigrationReport.from_state(failed.advance(MigrationPhase.ROLLED_BACK)))

        assert json.loads(report_path.read_text(encoding="utf-8"))["success"] is False
