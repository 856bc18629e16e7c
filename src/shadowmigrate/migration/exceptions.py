"""
Migration-specific exceptions for shadowmigrate.

Exceptions are organized by the phase that raises them. Each carries an
``ErrorClassification`` so the orchestrator, the notifier and the report can
decide severity and next steps without inspecting concrete types.

Exception Hierarchy:
    MigrationError (base)
    +-- MigrationConfigError
    +-- MigrationStateError
    |   +-- InvalidPhaseTransitionError
    +-- BackupError
    +-- TransformationError      (per record, never escapes the batch phase)
    +-- IndexBuildError          (per index, never escapes the index phase)
    +-- ValidationFailure
    +-- PerformanceShortfall
    +-- SwitchError
    +-- RollbackError
    +-- PhaseTimeoutError

Propagation:
    Only phase-boundary exceptions reach the orchestrator. TransformationError
    is caught by the BatchProcessor and IndexBuildError by the IndexBuilder;
    both are folded into their phase's report.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from shadowmigrate.migration.models import (
        MigrationPhase,
        PerformanceReport,
        ValidationReport,
    )

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """
    Severity level of migration errors.

    Used for alerting, logging, and operator notification decisions.
    """

    CRITICAL = "critical"
    """Manual intervention required; data may not be where operators expect it."""

    ERROR = "error"
    """The run failed but data integrity is preserved."""

    WARNING = "warning"
    """Recorded in the report; the run continues."""

    INFO = "info"
    """Informational condition, not a failure."""

    @property
    def should_alert(self) -> bool:
        """
        Check if this severity level should trigger an alert.

        Returns:
            True for CRITICAL and ERROR levels.
        """
        return self in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR)

    @property
    def log_level(self) -> int:
        """
        Get the corresponding Python logging level.

        Returns:
            Python logging level constant.
        """
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.INFO: logging.INFO,
        }
        return level_map[self]


class ErrorRecoverability(Enum):
    """
    Recoverability classification for migration errors.

    Determines how the orchestrator responds to a failure.
    """

    RECOVERABLE = "recoverable"
    """Recorded and tolerated; the phase continues."""

    ROLLBACK = "rollback"
    """Fatal for the run; the orchestrator restores the live collection."""

    FATAL = "fatal"
    """Fatal with no automated recovery left."""

    @property
    def needs_rollback(self) -> bool:
        return self == ErrorRecoverability.ROLLBACK

    @property
    def should_abort(self) -> bool:
        """
        Check if the run should stop.

        Returns:
            True for ROLLBACK and FATAL errors.
        """
        return self != ErrorRecoverability.RECOVERABLE


@dataclass(frozen=True)
class ErrorClassification:
    """
    Rich metadata for error classification.

    Attributes:
        severity: The severity level of the error.
        recoverability: How the orchestrator responds to the error.
        error_code: Unique error code for programmatic handling.
        category: Error category for grouping related errors.
        suggested_action: Human-readable guidance for operators.

    Example:
        >>> classification = ErrorClassification(
        ...     severity=ErrorSeverity.ERROR,
        ...     recoverability=ErrorRecoverability.ROLLBACK,
        ...     error_code="VALIDATION_FAILED",
        ...     category="validation",
        ...     suggested_action="Inspect validationErrors in the report",
        ... )
    """

    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    error_code: str
    category: str
    suggested_action: str

    def to_dict(self) -> dict[str, Any]:
        """
        Convert classification to dictionary for serialization.

        Returns:
            Dictionary representation of the classification.
        """
        return {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "category": self.category,
            "suggested_action": self.suggested_action,
        }


class MigrationError(Exception):
    """
    Base exception for all migration-related errors.

    Attributes:
        message: Human-readable error description.
        run_id: The run that raised the error, if known.
        phase: The phase that was executing, if known.
        suggested_action: Overrides the classification's guidance when set.
    """

    _default_classification: ErrorClassification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.ROLLBACK,
        error_code="MIGRATION_ERROR",
        category="general",
        suggested_action="Review the migration log and report",
    )

    def __init__(
        self,
        message: str,
        *,
        run_id: str | None = None,
        phase: MigrationPhase | None = None,
        suggested_action: str | None = None,
    ) -> None:
        self.message = message
        self.run_id = run_id
        self.phase = phase
        self.suggested_action = suggested_action
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.run_id:
            parts.append(f"run_id={self.run_id}")
        if self.phase is not None:
            parts.append(f"phase={self.phase.value}")
        return " ".join(parts)

    @property
    def classification(self) -> ErrorClassification:
        """
        Get the error classification for this exception.

        Subclasses override _default_classification.
        """
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        return self.classification.severity

    @property
    def recoverability(self) -> ErrorRecoverability:
        return self.classification.recoverability

    @property
    def error_code(self) -> str:
        return self.classification.error_code

    @property
    def action(self) -> str:
        """Suggested operator action, preferring the instance override."""
        return self.suggested_action or self.classification.suggested_action

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for serialization.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "message": self.message,
            "run_id": self.run_id,
            "phase": self.phase.value if self.phase is not None else None,
            "error_code": self.error_code,
            "suggested_action": self.action,
            "classification": self.classification.to_dict(),
        }


class MigrationConfigError(MigrationError):
    """Raised when configuration or the migration definition is unusable."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="MIGRATION_CONFIG_ERROR",
        category="configuration",
        suggested_action="Fix the configuration and run again",
    )


class MigrationStateError(MigrationError):
    """
    Raised when an operation is invalid for the run's current phase.

    Attributes:
        current_phase: The phase the run is in.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.ROLLBACK,
        error_code="MIGRATION_STATE_ERROR",
        category="state",
        suggested_action="Ensure the run is in the correct phase before this operation",
    )

    def __init__(
        self,
        message: str,
        *,
        current_phase: MigrationPhase,
        run_id: str | None = None,
    ) -> None:
        self.current_phase = current_phase
        super().__init__(message, run_id=run_id, phase=current_phase)


class InvalidPhaseTransitionError(MigrationStateError):
    """
    Raised when attempting an invalid phase transition.

    Attributes:
        current_phase: The phase the run is in.
        target_phase: The phase that was attempted.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.ROLLBACK,
        error_code="INVALID_PHASE_TRANSITION",
        category="state",
        suggested_action="Review the migration state machine",
    )

    def __init__(
        self,
        current_phase: MigrationPhase,
        target_phase: MigrationPhase,
        *,
        run_id: str | None = None,
    ) -> None:
        self.target_phase = target_phase
        super().__init__(
            f"Invalid phase transition: {current_phase.value} -> {target_phase.value}",
            current_phase=current_phase,
            run_id=run_id,
        )


class BackupError(MigrationError):
    """
    Raised when the backup snapshot cannot be taken or verified.

    Nothing has been mutated when this is raised, so no rollback follows.

    Attributes:
        location: Path of the partial artifact, if one was written.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="BACKUP_FAILED",
        category="backup",
        suggested_action="Check the backup directory is writable and the source is populated",
    )

    def __init__(
        self,
        message: str,
        *,
        location: str | None = None,
        run_id: str | None = None,
    ) -> None:
        self.location = location
        super().__init__(message, run_id=run_id)


class TransformationError(MigrationError):
    """
    Raised by a transformer when one record cannot be converted.

    Attributes:
        source_id: Identifier of the offending source record.
        field: Target field at fault, when known.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="TRANSFORMATION_FAILED",
        category="transform",
        suggested_action="Inspect validationErrors in the report and repair the source records",
    )

    def __init__(
        self,
        source_id: Any,
        message: str,
        *,
        field: str | None = None,
    ) -> None:
        self.source_id = source_id
        self.field = field
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.message} (source_id={self.source_id!r})"


class IndexBuildError(MigrationError):
    """
    One index could not be created.

    Attributes:
        index_name: Name of the index that failed.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="INDEX_BUILD_FAILED",
        category="index",
        suggested_action="Create the index manually; slow probes will show the impact",
    )

    def __init__(self, index_name: str, message: str) -> None:
        self.index_name = index_name
        super().__init__(message)


class ValidationFailure(MigrationError):
    """
    Raised when the shadow collection fails integrity validation.

    Attributes:
        report: The validation report, when one was produced.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.ROLLBACK,
        error_code="VALIDATION_FAILED",
        category="validation",
        suggested_action="Inspect validationErrors and the sample checks in the report",
    )

    def __init__(
        self,
        message: str,
        *,
        report: ValidationReport | None = None,
        run_id: str | None = None,
    ) -> None:
        self.report = report
        super().__init__(message, run_id=run_id)


class PerformanceShortfall(MigrationError):
    """
    One or more performance probes exceeded their budget.

    Advisory unless the run's performance policy is strict.

    Attributes:
        report: The performance report.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="PERFORMANCE_SHORTFALL",
        category="performance",
        suggested_action="Review probe latencies and missing indexes",
    )

    def __init__(
        self,
        message: str,
        *,
        report: PerformanceReport,
        strict: bool = False,
        run_id: str | None = None,
    ) -> None:
        self.report = report
        self.strict = strict
        super().__init__(message, run_id=run_id)

    @property
    def classification(self) -> ErrorClassification:
        if not self.strict:
            return self._default_classification
        return ErrorClassification(
            severity=ErrorSeverity.ERROR,
            recoverability=ErrorRecoverability.ROLLBACK,
            error_code="PERFORMANCE_SHORTFALL",
            category="performance",
            suggested_action="Add the missing indexes or raise the probe budgets, then rerun",
        )


class SwitchError(MigrationError):
    """
    Raised when blue-green promotion fails part way.

    Attributes:
        backup_collection_name: Name the live collection was renamed to, if
            step 1 completed. Rollback restores from it.
        step: The rename step that failed (1 or 2).
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.ROLLBACK,
        error_code="SWITCH_FAILED",
        category="switch",
        suggested_action="Rollback restores the live collection from its renamed backup",
    )

    def __init__(
        self,
        message: str,
        *,
        step: int,
        backup_collection_name: str | None = None,
        run_id: str | None = None,
    ) -> None:
        self.step = step
        self.backup_collection_name = backup_collection_name
        super().__init__(message, run_id=run_id)


class RollbackError(MigrationError):
    """
    Raised when rollback itself fails. Terminal.

    Attributes:
        backup_location: Backup artifact an operator restores from.
        backup_collection_name: Renamed live collection, if any.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="ROLLBACK_FAILED",
        category="rollback",
        suggested_action="Restore the live collection manually from the backup artifact",
    )

    def __init__(
        self,
        message: str,
        *,
        backup_location: str | None = None,
        backup_collection_name: str | None = None,
        run_id: str | None = None,
    ) -> None:
        self.backup_location = backup_location
        self.backup_collection_name = backup_collection_name
        super().__init__(message, run_id=run_id)


class PhaseTimeoutError(MigrationError):
    """
    Raised when a phase exceeds its deadline.

    Attributes:
        timeout_seconds: The deadline that was exceeded.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.ROLLBACK,
        error_code="PHASE_TIMEOUT",
        category="timeout",
        suggested_action="Check database load, then raise the phase timeout and rerun",
    )

    def __init__(
        self,
        phase: MigrationPhase,
        timeout_seconds: float,
        *,
        run_id: str | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Phase {phase.value} exceeded its {timeout_seconds}s deadline",
            run_id=run_id,
            phase=phase,
        )


def classify_exception(exc: BaseException) -> ErrorClassification:
    """
    Classify any exception and return its error classification.

    Non-migration exceptions escaping a phase are unexpected and are treated
    as requiring rollback.

    Example:
        >>> classification = classify_exception(error)
        >>> if classification.severity.should_alert:
        ...     await notifier.notify(...)
    """
    if isinstance(exc, MigrationError):
        return exc.classification

    return ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.ROLLBACK,
        error_code="UNKNOWN_ERROR",
        category="unknown",
        suggested_action="An unexpected error occurred. Review the log for the traceback.",
    )


__all__ = [
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "MigrationError",
    "MigrationConfigError",
    "MigrationStateError",
    "InvalidPhaseTransitionError",
    "BackupError",
    "TransformationError",
    "IndexBuildError",
    "ValidationFailure",
    "PerformanceShortfall",
    "SwitchError",
    "RollbackError",
    "PhaseTimeoutError",
    "classify_exception",
]
