"""
MigrationOrchestrator - Drives one migration run from backup to cleanup.

The orchestrator is the single owner of a run's MigrationState. It executes
the phases strictly in order, each step's postcondition being the next
step's precondition:

    NONE -> BACKUP -> TRANSFORM -> INDEX -> VALIDATE -> SWITCH -> CLEANUP -> COMPLETED

Responsibilities:
    - Hold the run lease for the source collection for the whole run
    - Execute each phase under its optional deadline
    - Replace the immutable state after every step and every batch
    - Route any failure after BACKUP to the RollbackManager
    - Write the report and notify operators at every terminal outcome

Failure routing:
    - Failure before or inside BACKUP: nothing was mutated; the run ends at
      NONE with ``failed_phase`` set and no rollback
    - Failure from TRANSFORM on: rollback; ROLLED_BACK if it succeeds,
      ROLLBACK_FAILED (with the backup location reported) if it does not

Usage:
    >>> from shadowmigrate.migration import MigrationOrchestrator
    >>>
    >>> orchestrator = MigrationOrchestrator(database, definition, MigrationConfig())
    >>> outcome = await orchestrator.run()
    >>> outcome.state.phase
    <MigrationPhase.COMPLETED: 'completed'>
    >>> outcome.exit_code
    0
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from shadowmigrate.locks import (
    CollectionLeaseManager,
    LockAcquisitionError,
    LockNotHeldError,
    migration_lock_key,
)
from shadowmigrate.migration.backup import BackupManager
from shadowmigrate.migration.batch_processor import BatchProcessor, BatchProgress
from shadowmigrate.migration.exceptions import (
    ErrorSeverity,
    MigrationError,
    MigrationStateError,
    PhaseTimeoutError,
    SwitchError,
    ValidationFailure,
    classify_exception,
)
from shadowmigrate.migration.indexes import IndexBuilder
from shadowmigrate.migration.integrity import IntegrityValidator
from shadowmigrate.migration.metrics import MigrationMetrics
from shadowmigrate.migration.models import (
    MigrationConfig,
    MigrationPhase,
    MigrationState,
    PhaseRecord,
)
from shadowmigrate.migration.notifier import LoggingNotifier, Notification, Notifier
from shadowmigrate.migration.performance import PerformanceGate
from shadowmigrate.migration.reporting import MigrationReport, ReportWriter
from shadowmigrate.migration.rollback import RollbackManager
from shadowmigrate.migration.switcher import BlueGreenSwitcher
from shadowmigrate.migration.transformer import MigrationDefinition
from shadowmigrate.observability import (
    ATTR_MIGRATION_NAME,
    ATTR_MIGRATION_VERSION,
    ATTR_PHASE,
    ATTR_RUN_ID,
    ATTR_SHADOW_COLLECTION,
    ATTR_SOURCE_COLLECTION,
    Tracer,
    create_tracer,
)
from shadowmigrate.stores.interface import Database, StoreError

logger = logging.getLogger(__name__)

EXIT_COMPLETED = 0
EXIT_FAILED = 1
EXIT_ROLLBACK_FAILED = 2

_ROLLBACK_LEASE_PHASE = "rollback"


def _describe(error: Exception) -> str:
    """Operator-facing text for the state, report and notification."""
    if isinstance(error, MigrationError):
        return error.message
    return str(error)


@dataclass(frozen=True)
class MigrationOutcome:
    """
    Result of one run.

    Attributes:
        state: Final state of the run
        report: The report built from the final state
        report_path: Where the report was written, or None if it was not
    """

    state: MigrationState
    report: MigrationReport
    report_path: Path | None = None

    @property
    def succeeded(self) -> bool:
        return self.state.succeeded

    @property
    def exit_code(self) -> int:
        """0 for COMPLETED, 2 for ROLLBACK_FAILED, 1 for every other outcome."""
        if self.state.phase == MigrationPhase.COMPLETED:
            return EXIT_COMPLETED
        if self.state.phase == MigrationPhase.ROLLBACK_FAILED:
            return EXIT_ROLLBACK_FAILED
        return EXIT_FAILED


class MigrationOrchestrator:
    """
    Runs one migration of ``config.source_collection``.

    Collection handles are resolved once, here. Every component can be
    replaced; the defaults are built from ``config`` and share this
    orchestrator's tracer and metrics.

    Example:
        >>> orchestrator = MigrationOrchestrator(
        ...     database,
        ...     definition,
        ...     MigrationConfig(batch_size=100),
        ...     notifier=CallbackNotifier(),
        ... )
        >>> outcome = await orchestrator.run()
        >>> if not outcome.succeeded:
        ...     print(outcome.state.error)

    Attributes:
        _state: Current run state (None until run() starts)
        _source: Handle bound to the live collection name
        _shadow: Handle bound to the shadow collection name
    """

    def __init__(
        self,
        database: Database,
        definition: MigrationDefinition,
        config: MigrationConfig | None = None,
        *,
        notifier: Notifier | None = None,
        backup_manager: BackupManager | None = None,
        batch_processor: BatchProcessor | None = None,
        index_builder: IndexBuilder | None = None,
        integrity_validator: IntegrityValidator | None = None,
        performance_gate: PerformanceGate | None = None,
        switcher: BlueGreenSwitcher | None = None,
        rollback_manager: RollbackManager | None = None,
        lease_manager: CollectionLeaseManager | None = None,
        report_writer: ReportWriter | None = None,
        metrics: MigrationMetrics | None = None,
        progress_callback: Callable[[BatchProgress], None] | None = None,
        run_id: str | None = None,
        clock: Callable[[], datetime] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            database: Database holding the source, shadow and lock collections
            definition: What to migrate: transformer, schema, indexes, probes
            config: Run tunables (defaults to MigrationConfig())
            notifier: Receives the terminal notification (defaults to logging)
            progress_callback: Called after every batch of the TRANSFORM phase
            run_id: Identifier for this run (defaults to a random UUID)
            clock: Returns the current UTC time (injectable for tests)
            tracer: Optional custom Tracer instance, shared with components
            enable_tracing: Whether to enable OpenTelemetry tracing.
                Ignored if tracer is explicitly provided.
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._config = config or MigrationConfig()
        self._definition = definition
        self._database = database
        self._run_id = run_id or str(uuid4())
        self._clock = clock or (lambda: datetime.now(UTC))
        self._progress_callback = progress_callback

        cfg = self._config
        self._source = database.collection(cfg.source_collection)
        self._shadow = database.collection(cfg.shadow_collection)

        self._metrics = metrics or MigrationMetrics(self._run_id, cfg.source_collection)
        self._notifier: Notifier = notifier or LoggingNotifier()
        self._backup_manager = backup_manager or BackupManager(
            cfg.backup_dir, tracer=self._tracer
        )
        self._batch_processor = batch_processor or BatchProcessor(
            batch_size=cfg.batch_size,
            id_field=cfg.id_field,
            metrics=self._metrics,
            tracer=self._tracer,
        )
        self._index_builder = index_builder or IndexBuilder(tracer=self._tracer)
        self._integrity_validator = integrity_validator or IntegrityValidator(
            threshold=cfg.validation_threshold,
            sample_size=cfg.sample_size,
            id_field=cfg.id_field,
            schema=definition.target_schema,
            tracer=self._tracer,
        )
        self._performance_gate = performance_gate or PerformanceGate(
            iterations=cfg.probe_iterations,
            policy=cfg.performance_policy,
            metrics=self._metrics,
            tracer=self._tracer,
        )
        self._switcher = switcher or BlueGreenSwitcher(
            max_window_ms=cfg.max_switch_window_ms,
            metrics=self._metrics,
            tracer=self._tracer,
        )
        self._rollback_manager = rollback_manager or RollbackManager(
            database, tracer=self._tracer
        )
        self._leases = lease_manager or CollectionLeaseManager(
            database.collection(cfg.lock_collection),
            ttl_seconds=cfg.lease_ttl_seconds,
            tracer=self._tracer,
        )
        self._report_writer = report_writer or ReportWriter(cfg.report_path)
        self._lock_key = migration_lock_key(cfg.source_collection)
        self._state: MigrationState | None = None

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def config(self) -> MigrationConfig:
        return self._config

    @property
    def state(self) -> MigrationState | None:
        """Current state; None before run() starts."""
        return self._state

    async def run(self) -> MigrationOutcome:
        """
        Execute the migration.

        Never raises for a failed run: the outcome's state records what
        happened and ``exit_code`` summarizes it.

        Raises:
            MigrationStateError: If this orchestrator has already run
        """
        if self._state is not None:
            raise MigrationStateError(
                "An orchestrator runs once; create a new one for another run",
                current_phase=self._state.phase,
                run_id=self._run_id,
            )

        cfg = self._config
        self._state = MigrationState.begin(
            self._run_id,
            cfg.source_collection,
            cfg.shadow_collection,
            started_at=self._clock(),
        )

        with self._tracer.span(
            "shadowmigrate.orchestrator.run",
            {
                ATTR_RUN_ID: self._run_id,
                ATTR_MIGRATION_NAME: self._definition.name,
                ATTR_MIGRATION_VERSION: self._definition.version,
                ATTR_SOURCE_COLLECTION: cfg.source_collection,
                ATTR_SHADOW_COLLECTION: cfg.shadow_collection,
            },
        ):
            logger.info(
                "Starting migration %s (version %s) of %s, run %s",
                self._definition.name,
                self._definition.version,
                cfg.source_collection,
                self._run_id,
            )
            try:
                async with self._leases.acquire(
                    self._lock_key, phase=MigrationPhase.NONE.value
                ):
                    await self._execute()
            except LockAcquisitionError as e:
                # Another run owns the collection; its report must not be overwritten.
                logger.error("Migration not started: %s", e)
                self._state = self._state.evolve(
                    failed_phase=MigrationPhase.BACKUP,
                    error=str(e),
                    finished_at=self._clock(),
                )
                return await self._finish(write_report=False)

            self._state = self._state.evolve(finished_at=self._clock())
            return await self._finish()

    async def _execute(self) -> None:
        steps: list[tuple[MigrationPhase, Callable[[], Awaitable[None]]]] = [
            (MigrationPhase.BACKUP, self._backup),
            (MigrationPhase.TRANSFORM, self._transform),
            (MigrationPhase.INDEX, self._index),
            (MigrationPhase.VALIDATE, self._validate),
            (MigrationPhase.SWITCH, self._switch),
            (MigrationPhase.CLEANUP, self._cleanup),
        ]
        for target, step in steps:
            try:
                await self._run_step(target, step)
            except Exception as e:
                await self._handle_failure(target, e)
                return

        self._state = self._current.advance(MigrationPhase.COMPLETED)
        logger.info(
            "Migration %s completed: %d of %d records migrated",
            self._run_id,
            self._current.statistics.migrated,
            self._current.statistics.total_source,
        )

    @property
    def _current(self) -> MigrationState:
        if self._state is None:
            raise MigrationStateError(
                "Run has not started", current_phase=MigrationPhase.NONE, run_id=self._run_id
            )
        return self._state

    async def _run_step(
        self,
        target: MigrationPhase,
        step: Callable[[], Awaitable[None]],
    ) -> None:
        """Run the step that completes ``target``, under its deadline."""
        timeout = self._config.timeout_for(target)
        started_at = self._clock()
        started = time.perf_counter()
        succeeded = False

        try:
            await self._announce(target.value)
            with self._tracer.span(
                f"shadowmigrate.orchestrator.{target.value}",
                {ATTR_RUN_ID: self._run_id, ATTR_PHASE: target.value},
            ):
                with self._metrics.time_phase(target.value):
                    try:
                        async with asyncio.timeout(timeout) as deadline:
                            await step()
                    except TimeoutError as e:
                        if deadline.expired():
                            raise PhaseTimeoutError(
                                target, timeout or 0.0, run_id=self._run_id
                            ) from e
                        raise
            succeeded = True
        finally:
            self._state = self._current.with_phase_record(
                PhaseRecord(
                    phase=target,
                    started_at=started_at,
                    duration_ms=(time.perf_counter() - started) * 1000,
                    succeeded=succeeded,
                )
            )

        self._state = self._current.advance(target)
        logger.debug("Phase %s completed for run %s", target.value, self._run_id)

    async def _announce(self, phase: str, *, required: bool = True) -> None:
        """
        Record the phase in progress on the run lease.

        Raises:
            LockNotHeldError: If the lease was lost and ``required`` is set
        """
        try:
            await self._leases.update_phase(self._lock_key, phase)
        except StoreError as e:
            logger.warning("Could not record phase %s on the run lease: %s", phase, e)
        except LockNotHeldError:
            if required:
                raise
            logger.warning("Run lease %s is no longer held by run %s", self._lock_key, self._run_id)

    async def _renew_lease(self) -> None:
        """
        Extend the run lease so a long phase does not let it expire.

        Raises:
            LockNotHeldError: If another run took the lease over
        """
        try:
            await self._leases.renew(self._lock_key)
        except StoreError as e:
            logger.warning("Could not renew the run lease: %s", e)

    # =========================================================================
    # Phases
    # =========================================================================

    async def _backup(self) -> None:
        snapshot = await self._backup_manager.snapshot(
            self._source,
            expect_non_empty=self._config.expect_non_empty_source,
        )
        self._state = self._current.with_backup(snapshot)

    async def _transform(self) -> None:
        async for progress in self._batch_processor.run(
            self._source,
            self._definition.transformer,
            self._shadow,
            progress_callback=self._progress_callback,
        ):
            # Totals are kept current so a crash mid-phase leaves an accurate count.
            self._state = self._current.evolve(statistics=progress.statistics)
            await self._renew_lease()

    async def _index(self) -> None:
        report = await self._index_builder.ensure(self._shadow, self._definition.indexes)
        self._state = self._current.evolve(index_report=report)

    async def _validate(self) -> None:
        known_failures = [
            failure.source_id for failure in self._current.statistics.validation_errors
        ]
        validation = await self._integrity_validator.validate(
            self._source,
            self._shadow,
            known_failures=known_failures,
        )
        self._state = self._current.evolve(validation_report=validation)
        self._integrity_validator.enforce(validation)

        performance = await self._performance_gate.run(self._shadow, self._definition.probes)
        self._state = self._current.evolve(performance_report=performance)
        shortfall = self._performance_gate.evaluate(performance)
        if shortfall is not None:
            logger.log(
                shortfall.severity.log_level,
                "Promoting despite performance shortfall: %s",
                shortfall.message,
            )

    async def _switch(self) -> None:
        result = await self._switcher.promote(self._source, self._shadow)
        self._state = self._current.evolve(
            switch_result=result,
            backup_collection_name=result.backup_collection_name,
        )

    async def _cleanup(self) -> None:
        # The source handle is bound to the live name, which now holds the shadow's data.
        live_count = await self._source.count()
        migrated = self._current.statistics.migrated
        if live_count != migrated:
            raise ValidationFailure(
                f"{self._config.source_collection} holds {live_count} records after the "
                f"switch, expected {migrated}",
                run_id=self._run_id,
            )
        logger.info(
            "Post-switch check passed: %s holds %d records",
            self._config.source_collection,
            live_count,
        )

    # =========================================================================
    # Failure handling
    # =========================================================================

    async def _handle_failure(self, target: MigrationPhase, error: Exception) -> None:
        classification = classify_exception(error)
        changes: dict[str, Any] = {"failed_phase": target, "error": _describe(error)}
        if isinstance(error, SwitchError) and error.backup_collection_name:
            changes["backup_collection_name"] = error.backup_collection_name
        self._state = self._current.evolve(**changes)

        logger.log(
            classification.severity.log_level,
            "Phase %s failed for run %s [%s]: %s",
            target.value,
            self._run_id,
            classification.error_code,
            error,
            exc_info=not isinstance(error, MigrationError),
        )

        state = self._current
        if not (state.rollback_available and state.phase.is_rollback_eligible):
            logger.error(
                "Nothing was mutated before the failure; %s is unchanged",
                self._config.source_collection,
            )
            return

        await self._rollback()

    async def _rollback(self) -> None:
        state = self._current
        await self._announce(_ROLLBACK_LEASE_PHASE, required=False)
        logger.warning(
            "Rolling back run %s (backup collection: %s)",
            self._run_id,
            state.backup_collection_name or "none; live collection was not moved",
        )

        expected = state.backup_snapshot.record_count if state.backup_snapshot else None
        try:
            result = await self._rollback_manager.restore(
                state.backup_collection_name,
                self._config.source_collection,
                shadow_name=self._config.shadow_collection,
                expected_count=expected,
                backup_location=state.backup_location,
            )
        except Exception as e:
            logger.critical(
                "ROLLBACK FAILED for run %s: %s. Restore %s manually from %s",
                self._run_id,
                e,
                self._config.source_collection,
                state.backup_location,
                exc_info=not isinstance(e, MigrationError),
            )
            self._state = state.advance(MigrationPhase.ROLLBACK_FAILED).evolve(
                rollback_error=_describe(e)
            )
            return

        self._state = state.advance(MigrationPhase.ROLLED_BACK).evolve(rollback_result=result)
        logger.warning("Run %s rolled back; %s is restored", self._run_id, result.live_name)

    # =========================================================================
    # Terminal outcome
    # =========================================================================

    async def _finish(self, *, write_report: bool = True) -> MigrationOutcome:
        state = self._current
        report = MigrationReport.from_state(
            state,
            migration=self._definition.name,
            migration_version=self._definition.version,
        )

        report_path: Path | None = None
        if write_report:
            try:
                report_path = await self._report_writer.write(report)
            except OSError as e:
                logger.error("Could not write migration report: %s", e)

        self._metrics.record_run_finished(state.phase.value)
        await self._notify(self._build_notification(state, report_path))

        outcome = MigrationOutcome(state=state, report=report, report_path=report_path)
        logger.info(
            "Run %s finished in phase %s after %.0fms (exit code %d)",
            self._run_id,
            state.phase.value,
            state.duration_ms,
            outcome.exit_code,
        )
        return outcome

    def _build_notification(
        self, state: MigrationState, report_path: Path | None
    ) -> Notification:
        source = self._config.source_collection
        details: dict[str, Any] = {
            "runId": state.run_id,
            "migration": self._definition.name,
            "phase": state.phase.value,
            "failedPhase": state.failed_phase.value if state.failed_phase else None,
            "backupLocation": state.backup_location,
            "backupCollectionName": state.backup_collection_name,
            "reportPath": str(report_path) if report_path else None,
            "statistics": {
                "totalProducts": state.statistics.total_source,
                "migratedProducts": state.statistics.migrated,
                "failedProducts": state.statistics.failed,
            },
        }

        if state.phase == MigrationPhase.COMPLETED:
            return Notification(
                severity=ErrorSeverity.INFO,
                subject=f"Migration of {source} completed",
                message=(
                    f"{state.statistics.migrated} of {state.statistics.total_source} "
                    f"records migrated; previous data kept in {state.backup_collection_name}"
                ),
                details=details,
            )

        if state.phase == MigrationPhase.ROLLBACK_FAILED:
            return Notification(
                severity=ErrorSeverity.CRITICAL,
                subject=f"Migration of {source} FAILED and rollback FAILED",
                message=(
                    f"Manual recovery required. Restore from backup {state.backup_location}. "
                    f"Error: {state.error}. Rollback error: {state.rollback_error}"
                ),
                details=details,
            )

        if state.phase == MigrationPhase.ROLLED_BACK:
            failed = state.failed_phase.value if state.failed_phase else "unknown"
            message = f"Rolled back after the {failed} phase failed: {state.error}"
        else:
            message = f"Stopped before any change to {source}: {state.error}"
        return Notification(
            severity=ErrorSeverity.ERROR,
            subject=f"Migration of {source} failed",
            message=message,
            details=details,
        )

    async def _notify(self, notification: Notification) -> None:
        try:
            await self._notifier.notify(notification)
        except Exception:
            logger.exception("Notifier failed for run %s", self._run_id)


__all__ = [
    "EXIT_COMPLETED",
    "EXIT_FAILED",
    "EXIT_ROLLBACK_FAILED",
    "MigrationOrchestrator",
    "MigrationOutcome",
]
