"""
Data models for shadow-collection migrations.

This module defines the value types that flow between migration components:

- MigrationPhase: Run lifecycle state machine
- MigrationState: Immutable snapshot of a run, replaced at every step
- MigrationStatistics: Running totals for the batch phase
- BackupSnapshot: Durable copy of the source taken before any mutation
- IndexSpec / IndexReport: Index definitions and what ensuring them did
- PerformanceProbe / PerformanceReport: Representative queries and timings
- ValidationReport / SampleCheck: Integrity gate results
- SwitchResult / RollbackResult: Outcome of promotion and restore
- MigrationConfig: Tunables for a run

All types are frozen. Components return new values; only the orchestrator
decides which value is current.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from itertools import islice
from typing import Any, overload

from shadowmigrate.migration.exceptions import (
    InvalidPhaseTransitionError,
    MigrationConfigError,
    MigrationStateError,
)
from shadowmigrate.stores.interface import Filter, IndexKeys, SortSpec, default_index_name


class MigrationPhase(Enum):
    """
    Migration lifecycle phases.

    A run's phase names the last step that completed.

    State machine transitions:
        NONE -> BACKUP -> TRANSFORM -> INDEX -> VALIDATE -> SWITCH -> CLEANUP -> COMPLETED
                  |
        BACKUP..CLEANUP -> ROLLED_BACK | ROLLBACK_FAILED

    A failure while taking the backup leaves the run at NONE: nothing was
    mutated, so there is nothing to roll back.
    """

    NONE = "none"
    """Run created; nothing has happened yet."""

    BACKUP = "backup"
    """Source collection snapshot written and verified."""

    TRANSFORM = "transform"
    """All source records processed into the shadow collection."""

    INDEX = "index"
    """Indexes ensured on the shadow collection."""

    VALIDATE = "validate"
    """Integrity and performance gates evaluated."""

    SWITCH = "switch"
    """Shadow collection promoted to the live name."""

    CLEANUP = "cleanup"
    """Post-switch verification done and report written."""

    COMPLETED = "completed"
    """Migration finished successfully."""

    ROLLED_BACK = "rolled_back"
    """Migration failed; the live collection was restored."""

    ROLLBACK_FAILED = "rollback_failed"
    """Migration failed and restoring the live collection failed too."""

    @property
    def is_terminal(self) -> bool:
        """
        Check if this is a terminal (final) phase.

        Returns:
            True for COMPLETED, ROLLED_BACK and ROLLBACK_FAILED.
        """
        return self in (
            MigrationPhase.COMPLETED,
            MigrationPhase.ROLLED_BACK,
            MigrationPhase.ROLLBACK_FAILED,
        )

    @property
    def is_rollback_eligible(self) -> bool:
        """
        Check if a failure after this phase can be rolled back.

        Returns:
            True once the backup exists and the run is not yet terminal.
        """
        return self != MigrationPhase.NONE and not self.is_terminal

    @property
    def next_phase(self) -> MigrationPhase | None:
        """The forward successor of this phase, or None at the end."""
        return _FORWARD.get(self)

    def can_transition_to(self, target: MigrationPhase) -> bool:
        """
        Check if transition to target phase is valid.

        Args:
            target: The target phase to transition to.

        Returns:
            True if the transition is valid.
        """
        if self.is_terminal:
            return False

        if target in (MigrationPhase.ROLLED_BACK, MigrationPhase.ROLLBACK_FAILED):
            return self.is_rollback_eligible

        return _FORWARD.get(self) == target


_FORWARD: dict[MigrationPhase, MigrationPhase] = {
    MigrationPhase.NONE: MigrationPhase.BACKUP,
    MigrationPhase.BACKUP: MigrationPhase.TRANSFORM,
    MigrationPhase.TRANSFORM: MigrationPhase.INDEX,
    MigrationPhase.INDEX: MigrationPhase.VALIDATE,
    MigrationPhase.VALIDATE: MigrationPhase.SWITCH,
    MigrationPhase.SWITCH: MigrationPhase.CLEANUP,
    MigrationPhase.CLEANUP: MigrationPhase.COMPLETED,
}


class PerformancePolicy(Enum):
    """How a failed performance gate affects promotion."""

    ADVISORY = "advisory"
    """Shortfalls are logged and reported; promotion proceeds."""

    STRICT = "strict"
    """Shortfalls are fatal and trigger rollback."""


# =============================================================================
# Batch phase
# =============================================================================


@dataclass(frozen=True)
class TransformationFailure:
    """
    One source record that did not reach the shadow collection.

    Attributes:
        source_id: Identifier of the source record
        reason: Why the record was rejected
    """

    source_id: Any
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"sourceId": _jsonable_id(self.source_id), "reason": self.reason}


class FailureLog(Sequence[TransformationFailure]):
    """
    Immutable view over a prefix of an append-only list of failures.

    Successive statistics share one list. Extending the newest view appends
    in place; extending an older view copies its prefix first, so no view
    ever changes once created.
    """

    __slots__ = ("_entries", "_length")

    def __init__(self, failures: Iterable[TransformationFailure] = ()) -> None:
        self._entries = list(failures)
        self._length = len(self._entries)

    @classmethod
    def _over(cls, entries: list[TransformationFailure]) -> FailureLog:
        log = cls.__new__(cls)
        log._entries = entries
        log._length = len(entries)
        return log

    def extended(self, failures: Iterable[TransformationFailure]) -> FailureLog:
        """Return a log with ``failures`` appended."""
        added = list(failures)
        if not added:
            return self
        if len(self._entries) == self._length:
            entries = self._entries
        else:
            entries = self._entries[: self._length]
        entries.extend(added)
        return FailureLog._over(entries)

    def __len__(self) -> int:
        return self._length

    def __iter__(self) -> Iterator[TransformationFailure]:
        return islice(self._entries, self._length)

    @overload
    def __getitem__(self, index: int) -> TransformationFailure: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[TransformationFailure, ...]: ...

    def __getitem__(
        self, index: int | slice
    ) -> TransformationFailure | tuple[TransformationFailure, ...]:
        if isinstance(index, slice):
            return tuple(self)[index]
        if index < 0:
            index += self._length
        if not 0 <= index < self._length:
            raise IndexError("failure index out of range")
        return self._entries[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Sequence) or isinstance(other, str):
            return NotImplemented
        return len(self) == len(other) and all(a == b for a, b in zip(self, other, strict=True))

    def __hash__(self) -> int:
        return hash(tuple(self))

    def __repr__(self) -> str:
        return f"FailureLog({list(self)!r})"


@dataclass(frozen=True)
class MigrationStatistics:
    """
    Running totals for the batch phase.

    Attributes:
        total_source: Records read from the source
        migrated: Records that landed in the shadow collection
        failed: Records rejected by the transformer or by the store
        validation_errors: Per-record failures in processing order
    """

    total_source: int = 0
    migrated: int = 0
    failed: int = 0
    validation_errors: Sequence[TransformationFailure] = field(default_factory=FailureLog)

    def __post_init__(self) -> None:
        if not isinstance(self.validation_errors, FailureLog):
            object.__setattr__(self, "validation_errors", FailureLog(self.validation_errors))

    @property
    def processed(self) -> int:
        return self.migrated + self.failed

    def with_batch(
        self,
        *,
        read: int,
        migrated: int,
        failures: Sequence[TransformationFailure],
    ) -> MigrationStatistics:
        """
        Return totals with one more batch folded in.

        Failures are appended to the log shared with earlier totals, so
        folding in a batch costs only that batch's failures.

        Args:
            read: Source records in the batch
            migrated: Records the store accepted
            failures: Records rejected, by the transformer or the store
        """
        log = self.validation_errors
        if not isinstance(log, FailureLog):
            log = FailureLog(log)
        return MigrationStatistics(
            total_source=self.total_source + read,
            migrated=self.migrated + migrated,
            failed=self.failed + len(failures),
            validation_errors=log.extended(failures),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalProducts": self.total_source,
            "migratedProducts": self.migrated,
            "failedProducts": self.failed,
            "validationErrors": [failure.to_dict() for failure in self.validation_errors],
        }


# =============================================================================
# Backup
# =============================================================================


@dataclass(frozen=True)
class BackupSnapshot:
    """
    Durable copy of the source collection.

    Kept until an operator purges it; the rollback of last resort.

    Attributes:
        location: Path of the backup artifact
        timestamp: When the snapshot was taken
        record_count: Records written (verified by reading the artifact back)
        byte_size: Size of the artifact on disk
        checksum: SHA-256 hex digest of the artifact
        source_collection: Collection the snapshot was taken from
    """

    location: str
    timestamp: datetime
    record_count: int
    byte_size: int
    checksum: str
    source_collection: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "location": self.location,
            "timestamp": self.timestamp.isoformat(),
            "recordCount": self.record_count,
            "byteSize": self.byte_size,
            "checksum": self.checksum,
            "sourceCollection": self.source_collection,
        }


# =============================================================================
# Indexes
# =============================================================================


@dataclass(frozen=True)
class IndexSpec:
    """
    Definition of one index on the target collection.

    Attributes:
        keys: Ordered ``(field, direction)`` pairs; direction may be "text"
        name: Explicit index name (defaults to the server's generated name)
        unique: Reject duplicate key values
        sparse: Skip documents missing the indexed fields
        expire_after_seconds: TTL for date-valued keys
        options: Further index options (e.g. ``weights`` for a text index)

    Example:
        >>> IndexSpec(keys=(("category", 1), ("metadata.featured", -1)))
        >>> IndexSpec.text("name", "description", name="product_text_search")
    """

    keys: IndexKeys
    name: str | None = None
    unique: bool = False
    sparse: bool = False
    expire_after_seconds: int | None = None
    options: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        if not self.keys:
            raise MigrationConfigError("IndexSpec needs at least one key")
        # Normalize lists from callers so specs compare and hash consistently.
        object.__setattr__(self, "keys", tuple(tuple(pair) for pair in self.keys))

    @classmethod
    def text(cls, *fields: str, name: str | None = None, **options: Any) -> IndexSpec:
        """Build a text index over one or more fields."""
        return cls(
            keys=tuple((field_name, "text") for field_name in fields),
            name=name,
            options=options or None,
        )

    @property
    def resolved_name(self) -> str:
        return self.name or default_index_name(self.keys)

    @property
    def is_text(self) -> bool:
        return any(direction == "text" for _, direction in self.keys)


class IndexStatus(Enum):
    """What ensuring one index did."""

    CREATED = "created"
    EXISTS = "exists"
    FAILED = "failed"


@dataclass(frozen=True)
class IndexOutcome:
    name: str
    status: IndexStatus
    error: str | None = None
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "error": self.error,
            "durationMs": round(self.duration_ms, 3),
        }


@dataclass(frozen=True)
class IndexReport:
    """Per-index outcomes in the order the specs were applied."""

    outcomes: tuple[IndexOutcome, ...] = ()

    @property
    def created(self) -> list[str]:
        return [o.name for o in self.outcomes if o.status == IndexStatus.CREATED]

    @property
    def existing(self) -> list[str]:
        return [o.name for o in self.outcomes if o.status == IndexStatus.EXISTS]

    @property
    def failed(self) -> list[IndexOutcome]:
        return [o for o in self.outcomes if o.status == IndexStatus.FAILED]

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "existing": self.existing,
            "failed": [o.to_dict() for o in self.failed],
        }


# =============================================================================
# Performance gate
# =============================================================================


@dataclass(frozen=True)
class PerformanceProbe:
    """
    A representative query with a latency budget.

    Attributes:
        name: Human-readable probe name
        filter: Query filter
        sort: Sort specification
        limit: Result limit (None for unlimited)
        budget_ms: Mean latency at or under which the probe passes
        max_results: Expected upper bound on result cardinality
        critical: Whether the probe backs a user-facing page
    """

    name: str
    filter: Filter = field(default_factory=dict)
    sort: SortSpec | None = None
    limit: int | None = None
    budget_ms: float = 100.0
    max_results: int | None = None
    critical: bool = False

    def __post_init__(self) -> None:
        if self.budget_ms <= 0:
            raise MigrationConfigError(f"Probe {self.name!r} needs a positive budget_ms")


@dataclass(frozen=True)
class ProbeResult:
    """
    Timing of one probe.

    Attributes:
        latency_ms: Mean end-to-end latency over the iterations
        passed: ``latency_ms <= budget_ms`` and the query did not error
        cardinality_exceeded: More results than the probe's ``max_results``
    """

    name: str
    latency_ms: float
    budget_ms: float
    passed: bool
    returned: int = 0
    docs_examined: int | None = None
    keys_examined: int | None = None
    used_index: bool | None = None
    critical: bool = False
    cardinality_exceeded: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "latencyMs": round(self.latency_ms, 3),
            "budgetMs": self.budget_ms,
            "passed": self.passed,
            "returned": self.returned,
            "docsExamined": self.docs_examined,
            "keysExamined": self.keys_examined,
            "usedIndex": self.used_index,
            "critical": self.critical,
            "cardinalityExceeded": self.cardinality_exceeded,
            "error": self.error,
        }


@dataclass(frozen=True)
class PerformanceReport:
    results: tuple[ProbeResult, ...] = ()
    policy: PerformancePolicy = PerformancePolicy.ADVISORY

    @property
    def overall_passed(self) -> bool:
        return all(result.passed for result in self.results)

    @property
    def failed_probes(self) -> list[ProbeResult]:
        return [result for result in self.results if not result.passed]

    @property
    def critical_failures(self) -> list[ProbeResult]:
        return [result for result in self.failed_probes if result.critical]

    def to_dict(self) -> dict[str, Any]:
        return {
            "overallPassed": self.overall_passed,
            "policy": self.policy.value,
            "probes": [result.to_dict() for result in self.results],
        }


# =============================================================================
# Integrity gate
# =============================================================================


@dataclass(frozen=True)
class SampleCheck:
    """
    Field-level check of one sampled record's shadow counterpart.

    Attributes:
        source_id: Identifier shared by the source record and its counterpart
        found: Whether the counterpart exists in the shadow collection
        problems: Missing or wrongly typed required fields
    """

    source_id: Any
    found: bool
    problems: tuple[str, ...] = ()

    @property
    def passed(self) -> bool:
        return self.found and not self.problems

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceId": _jsonable_id(self.source_id),
            "found": self.found,
            "passed": self.passed,
            "problems": list(self.problems),
        }


@dataclass(frozen=True)
class ValidationReport:
    """
    Result of the integrity gate.

    ``passed`` requires the count ratio to reach the threshold and every
    sample check to pass. An empty source makes the ratio undefined, which
    fails by definition.
    """

    source_count: int
    shadow_count: int
    threshold: float
    sample_checks: tuple[SampleCheck, ...] = ()

    @property
    def ratio(self) -> float | None:
        if self.source_count == 0:
            return None
        return self.shadow_count / self.source_count

    @property
    def count_passed(self) -> bool:
        ratio = self.ratio
        return ratio is not None and ratio >= self.threshold

    @property
    def samples_passed(self) -> bool:
        return all(check.passed for check in self.sample_checks)

    @property
    def passed(self) -> bool:
        return self.count_passed and self.samples_passed

    @property
    def reasons(self) -> list[str]:
        """Human-readable reasons the gate failed (empty when it passed)."""
        reasons: list[str] = []
        if self.ratio is None:
            reasons.append("source collection is empty; count ratio is undefined")
        elif not self.count_passed:
            reasons.append(
                f"shadow/source ratio {self.ratio:.4f} is below threshold {self.threshold}"
            )
        for check in self.sample_checks:
            if not check.found:
                reasons.append(f"sample {check.source_id!r} has no counterpart in the shadow")
            elif check.problems:
                reasons.append(f"sample {check.source_id!r}: {'; '.join(check.problems)}")
        return reasons

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "sourceCount": self.source_count,
            "shadowCount": self.shadow_count,
            "ratio": self.ratio,
            "threshold": self.threshold,
            "sampleChecks": [check.to_dict() for check in self.sample_checks],
        }


# =============================================================================
# Switch and rollback
# =============================================================================


@dataclass(frozen=True)
class SwitchResult:
    """
    Outcome of a blue-green promotion.

    Attributes:
        live_name: Name now serving the migrated data
        shadow_name: Name the migrated data was promoted from
        backup_collection_name: Name the previous live data now lives under
        duration_ms: Time between the two renames
        window_exceeded: Whether ``duration_ms`` exceeded the configured limit
    """

    live_name: str
    shadow_name: str
    backup_collection_name: str
    duration_ms: float
    window_exceeded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "liveName": self.live_name,
            "shadowName": self.shadow_name,
            "backupCollectionName": self.backup_collection_name,
            "durationMs": round(self.duration_ms, 3),
            "windowExceeded": self.window_exceeded,
        }


@dataclass(frozen=True)
class RollbackResult:
    """
    Outcome of a successful rollback.

    Attributes:
        live_name: Name that was restored
        restored_from: Backup collection renamed back, or None when the live
            collection was never moved
        discarded_shadow: Shadow collection dropped during rollback, if any
        live_count: Records under the live name after rollback
    """

    live_name: str
    restored_from: str | None
    discarded_shadow: str | None
    live_count: int
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "liveName": self.live_name,
            "restoredFrom": self.restored_from,
            "discardedShadow": self.discarded_shadow,
            "liveCount": self.live_count,
            "durationMs": round(self.duration_ms, 3),
        }


# =============================================================================
# Run state
# =============================================================================


@dataclass(frozen=True)
class PhaseRecord:
    """Timing of one executed phase step."""

    phase: MigrationPhase
    started_at: datetime
    duration_ms: float
    succeeded: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "startedAt": self.started_at.isoformat(),
            "durationMs": round(self.duration_ms, 3),
            "succeeded": self.succeeded,
        }


@dataclass(frozen=True)
class MigrationState:
    """
    Immutable snapshot of one migration run.

    The orchestrator owns the current value and replaces it after every
    step; components never receive it. ``backup_location`` is set once and
    cannot change afterwards.

    Attributes:
        run_id: Unique identifier for the run
        source_collection: Live collection being migrated
        shadow_collection_name: Collection receiving transformed records
        started_at: When the run started
        phase: Last completed phase
        statistics: Batch phase totals
        backup_location: Backup artifact path, once BACKUP completes
        backup_collection_name: Name the live collection was renamed to in SWITCH
        rollback_available: True once BACKUP completes
        failed_phase: Phase that was executing when the run failed
        error: Message of the error that failed the run
        rollback_error: Message of the error that failed the rollback, if any
    """

    run_id: str
    source_collection: str
    shadow_collection_name: str
    started_at: datetime
    phase: MigrationPhase = MigrationPhase.NONE
    statistics: MigrationStatistics = field(default_factory=MigrationStatistics)
    backup_location: str | None = None
    backup_snapshot: BackupSnapshot | None = None
    backup_collection_name: str | None = None
    rollback_available: bool = False
    failed_phase: MigrationPhase | None = None
    error: str | None = None
    rollback_error: str | None = None
    phase_history: tuple[PhaseRecord, ...] = ()
    index_report: IndexReport | None = None
    validation_report: ValidationReport | None = None
    performance_report: PerformanceReport | None = None
    switch_result: SwitchResult | None = None
    rollback_result: RollbackResult | None = None
    finished_at: datetime | None = None

    @classmethod
    def begin(
        cls,
        run_id: str,
        source_collection: str,
        shadow_collection_name: str,
        *,
        started_at: datetime | None = None,
    ) -> MigrationState:
        return cls(
            run_id=run_id,
            source_collection=source_collection,
            shadow_collection_name=shadow_collection_name,
            started_at=started_at or datetime.now(UTC),
        )

    def advance(self, target: MigrationPhase) -> MigrationState:
        """
        Return the state moved to ``target``.

        Raises:
            InvalidPhaseTransitionError: If the state machine forbids the move
        """
        if not self.phase.can_transition_to(target):
            raise InvalidPhaseTransitionError(self.phase, target, run_id=self.run_id)
        return dataclasses.replace(self, phase=target)

    def evolve(self, **changes: Any) -> MigrationState:
        """
        Return a copy with ``changes`` applied.

        Raises:
            MigrationStateError: On an attempt to change the phase (use
                ``advance``) or to replace an existing backup location
        """
        if "phase" in changes:
            raise MigrationStateError(
                "phase changes go through advance()",
                current_phase=self.phase,
                run_id=self.run_id,
            )
        location = changes.get("backup_location")
        if (
            location is not None
            and self.backup_location is not None
            and location != self.backup_location
        ):
            raise MigrationStateError(
                "backup_location is already set for this run",
                current_phase=self.phase,
                run_id=self.run_id,
            )
        return dataclasses.replace(self, **changes)

    def with_backup(self, snapshot: BackupSnapshot) -> MigrationState:
        return self.evolve(
            backup_location=snapshot.location,
            backup_snapshot=snapshot,
            rollback_available=True,
        )

    def with_phase_record(self, record: PhaseRecord) -> MigrationState:
        return self.evolve(phase_history=self.phase_history + (record,))

    @property
    def is_terminal(self) -> bool:
        return self.phase.is_terminal or self.finished_at is not None

    @property
    def succeeded(self) -> bool:
        return self.phase == MigrationPhase.COMPLETED

    @property
    def duration_ms(self) -> float:
        end = self.finished_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds() * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "phase": self.phase.value,
            "sourceCollection": self.source_collection,
            "shadowCollectionName": self.shadow_collection_name,
            "startedAt": self.started_at.isoformat(),
            "statistics": self.statistics.to_dict(),
            "backupLocation": self.backup_location,
            "backupCollectionName": self.backup_collection_name,
            "rollbackAvailable": self.rollback_available,
            "failedPhase": self.failed_phase.value if self.failed_phase else None,
            "error": self.error,
            "rollbackError": self.rollback_error,
        }


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class MigrationConfig:
    """
    Configuration for a migration run.

    Attributes:
        source_collection: Live collection to migrate (default "products")
        shadow_collection: Collection to build the new schema in (default "products_v2")
        lock_collection: Collection holding run leases (default "migration_locks")
        batch_size: Records per batch (default 10)
        validation_threshold: Minimum shadow/source count ratio (default 0.95)
        sample_size: Source records checked field by field (default 1)
        probe_iterations: Executions averaged per performance probe (default 5)
        performance_policy: Whether a performance shortfall blocks promotion
        phase_timeout_seconds: Default deadline per phase (None for no deadline)
        phase_timeouts: Per-phase deadlines keyed by phase value, overriding the default
        max_switch_window_ms: Switch duration above which a warning is raised (default 5000)
        expect_non_empty_source: Fail the backup when the source is empty (default False;
            an empty source otherwise fails the integrity gate and rolls back)
        id_field: Field shared by a source record and its transformed counterpart
        lease_ttl_seconds: Lifetime of the run lease before another run may take it over
        backup_dir: Directory for backup artifacts
        report_path: Path of the migration report

    Example:
        >>> config = MigrationConfig(batch_size=100, performance_policy=PerformancePolicy.STRICT)
        >>> config.batch_size
        100
    """

    source_collection: str = "products"
    shadow_collection: str = "products_v2"
    lock_collection: str = "migration_locks"
    batch_size: int = 10
    validation_threshold: float = 0.95
    sample_size: int = 1
    probe_iterations: int = 5
    performance_policy: PerformancePolicy = PerformancePolicy.ADVISORY
    phase_timeout_seconds: float | None = None
    phase_timeouts: Mapping[str, float] = field(default_factory=dict)
    max_switch_window_ms: float = 5000.0
    expect_non_empty_source: bool = False
    id_field: str = "_id"
    lease_ttl_seconds: float = 3600.0
    backup_dir: str = "backups"
    report_path: str = "migration-report.json"

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.source_collection or not self.shadow_collection:
            raise MigrationConfigError("source and shadow collection names are required")

        if self.source_collection == self.shadow_collection:
            raise MigrationConfigError(
                f"shadow collection must differ from source, got {self.shadow_collection!r}"
            )

        if self.lock_collection in (self.source_collection, self.shadow_collection):
            raise MigrationConfigError(
                f"lock collection must be separate, got {self.lock_collection!r}"
            )

        if self.batch_size < 1:
            raise MigrationConfigError(f"batch_size must be >= 1, got {self.batch_size}")

        if not 0.0 < self.validation_threshold <= 1.0:
            raise MigrationConfigError(
                f"validation_threshold must be in (0, 1], got {self.validation_threshold}"
            )

        if self.sample_size < 1:
            raise MigrationConfigError(f"sample_size must be >= 1, got {self.sample_size}")

        if self.probe_iterations < 1:
            raise MigrationConfigError(
                f"probe_iterations must be >= 1, got {self.probe_iterations}"
            )

        if self.phase_timeout_seconds is not None and self.phase_timeout_seconds <= 0:
            raise MigrationConfigError(
                f"phase_timeout_seconds must be > 0, got {self.phase_timeout_seconds}"
            )

        known = {phase.value for phase in MigrationPhase}
        for name, seconds in self.phase_timeouts.items():
            if name not in known:
                raise MigrationConfigError(f"unknown phase in phase_timeouts: {name!r}")
            if seconds <= 0:
                raise MigrationConfigError(f"timeout for {name} must be > 0, got {seconds}")

        if self.max_switch_window_ms <= 0:
            raise MigrationConfigError(
                f"max_switch_window_ms must be > 0, got {self.max_switch_window_ms}"
            )

        if self.lease_ttl_seconds <= 0:
            raise MigrationConfigError(
                f"lease_ttl_seconds must be > 0, got {self.lease_ttl_seconds}"
            )

    def timeout_for(self, phase: MigrationPhase) -> float | None:
        """Deadline in seconds for the step that completes ``phase``."""
        return self.phase_timeouts.get(phase.value, self.phase_timeout_seconds)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for JSON storage.

        Returns:
            Dictionary representation suitable for JSON serialization.
        """
        return {
            "source_collection": self.source_collection,
            "shadow_collection": self.shadow_collection,
            "lock_collection": self.lock_collection,
            "batch_size": self.batch_size,
            "validation_threshold": self.validation_threshold,
            "sample_size": self.sample_size,
            "probe_iterations": self.probe_iterations,
            "performance_policy": self.performance_policy.value,
            "phase_timeout_seconds": self.phase_timeout_seconds,
            "phase_timeouts": dict(self.phase_timeouts),
            "max_switch_window_ms": self.max_switch_window_ms,
            "expect_non_empty_source": self.expect_non_empty_source,
            "id_field": self.id_field,
            "lease_ttl_seconds": self.lease_ttl_seconds,
            "backup_dir": self.backup_dir,
            "report_path": self.report_path,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationConfig:
        """
        Create from dictionary.

        Missing keys take their defaults.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        if "performance_policy" in values:
            values["performance_policy"] = PerformancePolicy(values["performance_policy"])
        return cls(**values)


def _jsonable_id(value: Any) -> Any:
    if value is None or isinstance(value, str | int | float | bool):
        return value
    return str(value)


__all__ = [
    "MigrationPhase",
    "PerformancePolicy",
    "TransformationFailure",
    "MigrationStatistics",
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
    "MigrationState",
    "MigrationConfig",
]
