"""
Zero-downtime schema migration of a document collection.

Transformed records are built in a shadow collection, checked, and promoted
to the live name by renames. The live data is kept under a backup name and
in a backup artifact, so a failed run can always be rolled back.

Key Components:
    - MigrationOrchestrator: Drives the phases and owns the run state
    - BackupManager: Durable, verified snapshot of the source
    - BatchProcessor: Transforms records into the shadow collection in batches
    - IndexBuilder: Idempotent index creation on the shadow collection
    - IntegrityValidator: Fatal count and field-level correctness gate
    - PerformanceGate: Advisory (or strict) query latency check
    - BlueGreenSwitcher: Promotes the shadow collection to the live name
    - RollbackManager: Restores the live collection after a failure

Migration Phases:
    1. BACKUP: Source snapshot written and verified
    2. TRANSFORM: Records transformed into the shadow collection
    3. INDEX: Indexes ensured on the shadow collection
    4. VALIDATE: Integrity and performance gates evaluated
    5. SWITCH: Shadow collection promoted
    6. CLEANUP: Post-switch verification
    7. COMPLETED: Migration finished successfully

Usage:
    >>> from shadowmigrate.migration import (
    ...     MigrationConfig,
    ...     MigrationOrchestrator,
    ... )
    >>>
    >>> orchestrator = MigrationOrchestrator(
    ...     database,
    ...     definition,
    ...     MigrationConfig(batch_size=10),
    ... )
    >>> outcome = await orchestrator.run()
    >>> print(outcome.state.phase, outcome.report_path)
"""

from shadowmigrate.migration.backup import BackupManager
from shadowmigrate.migration.batch_processor import BatchProcessor, BatchProgress
from shadowmigrate.migration.exceptions import (
    BackupError,
    ErrorClassification,
    ErrorRecoverability,
    ErrorSeverity,
    IndexBuildError,
    InvalidPhaseTransitionError,
    MigrationConfigError,
    MigrationError,
    MigrationStateError,
    PerformanceShortfall,
    PhaseTimeoutError,
    RollbackError,
    SwitchError,
    TransformationError,
    ValidationFailure,
    classify_exception,
)
from shadowmigrate.migration.indexes import IndexBuilder
from shadowmigrate.migration.integrity import IntegrityValidator
from shadowmigrate.migration.metrics import MigrationMetrics, MigrationMetricSnapshot
from shadowmigrate.migration.models import (
    BackupSnapshot,
    FailureLog,
    IndexOutcome,
    IndexReport,
    IndexSpec,
    IndexStatus,
    MigrationConfig,
    MigrationPhase,
    MigrationState,
    MigrationStatistics,
    PerformancePolicy,
    PerformanceProbe,
    PerformanceReport,
    PhaseRecord,
    ProbeResult,
    RollbackResult,
    SampleCheck,
    SwitchResult,
    TransformationFailure,
    ValidationReport,
)
from shadowmigrate.migration.notifier import (
    CallbackNotifier,
    LoggingNotifier,
    Notification,
    Notifier,
)
from shadowmigrate.migration.orchestrator import (
    EXIT_COMPLETED,
    EXIT_FAILED,
    EXIT_ROLLBACK_FAILED,
    MigrationOrchestrator,
    MigrationOutcome,
)
from shadowmigrate.migration.performance import PerformanceGate
from shadowmigrate.migration.reporting import MigrationReport, ReportWriter
from shadowmigrate.migration.rollback import RollbackManager
from shadowmigrate.migration.switcher import BlueGreenSwitcher
from shadowmigrate.migration.transformer import (
    MigrationDefinition,
    RecordTransformer,
    TargetSchema,
    ValidatingTransformer,
    load_definition,
)

__all__ = [
    # Orchestration
    "MigrationOrchestrator",
    "MigrationOutcome",
    "EXIT_COMPLETED",
    "EXIT_FAILED",
    "EXIT_ROLLBACK_FAILED",
    # Components
    "BackupManager",
    "BatchProcessor",
    "BatchProgress",
    "IndexBuilder",
    "IntegrityValidator",
    "PerformanceGate",
    "BlueGreenSwitcher",
    "RollbackManager",
    # Definition
    "MigrationDefinition",
    "RecordTransformer",
    "TargetSchema",
    "ValidatingTransformer",
    "load_definition",
    # Models
    "MigrationPhase",
    "MigrationState",
    "MigrationStatistics",
    "MigrationConfig",
    "PerformancePolicy",
    "TransformationFailure",
    "FailureLog",
    "BackupSnapshot",
    "IndexSpec",
    "IndexStatus",
    "IndexOutcome",
    "IndexReport",
    "PerformanceProbe",
    "ProbeResult",
    "PerformanceReport",
    "SampleCheck",
    "ValidationReport",
    "SwitchResult",
    "RollbackResult",
    "PhaseRecord",
    # Reporting and notification
    "MigrationReport",
    "ReportWriter",
    "Notification",
    "Notifier",
    "LoggingNotifier",
    "CallbackNotifier",
    # Metrics
    "MigrationMetrics",
    "MigrationMetricSnapshot",
    # Exceptions
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
