"""
OpenTelemetry metrics for migration runs.

Instruments are created from the global meter provider unless a meter is
passed in. With no SDK installed the API's no-op meter is used, so recording
is always safe. A local snapshot of recorded values is kept for the report
and for tests.

Example:
    >>> metrics = MigrationMetrics("run-123", "products")
    >>> metrics.record_batch(migrated=9, failed=1)
    >>> metrics.record_phase_duration("transform", 12.5)
    >>> metrics.get_snapshot().records_migrated
    9

Metrics Exposed:
    - shadowmigrate.records.migrated (Counter): Records written to the shadow collection
    - shadowmigrate.records.failed (Counter): Records rejected during the batch phase
    - shadowmigrate.phase.duration (Histogram): Seconds spent in each phase
    - shadowmigrate.probe.latency (Histogram): Mean probe latency in milliseconds
    - shadowmigrate.switch.duration (Histogram): Milliseconds between the two renames
    - shadowmigrate.runs (Counter): Finished runs by final phase

All metrics carry ``run_id`` and ``source_collection`` attributes.
"""

from __future__ import annotations

import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import metrics

METER_NAME = "shadowmigrate.migration"


@dataclass(frozen=True)
class MigrationMetricSnapshot:
    """
    Snapshot of values recorded for one run.

    Attributes:
        records_migrated: Total records written to the shadow collection
        records_failed: Total records rejected
        phase_durations: Phase name to total seconds
        probe_latencies: Probe name to last recorded mean latency (ms)
        switch_durations: Recorded switch windows (ms)
    """

    records_migrated: int = 0
    records_failed: int = 0
    phase_durations: dict[str, float] = field(default_factory=dict)
    probe_latencies: dict[str, float] = field(default_factory=dict)
    switch_durations: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "records_migrated": self.records_migrated,
            "records_failed": self.records_failed,
            "phase_durations": dict(self.phase_durations),
            "probe_latencies": dict(self.probe_latencies),
            "switch_durations": list(self.switch_durations),
        }


@dataclass
class MigrationMetrics:
    """
    Container for migration metric instruments.

    Attributes:
        run_id: Run identifier for metric labels
        source_collection: Source collection for metric labels
        meter: Meter to create instruments from (defaults to the global provider's)
    """

    run_id: str
    source_collection: str
    meter: Any = None

    _records_migrated: int = field(default=0, init=False, repr=False)
    _records_failed: int = field(default=0, init=False, repr=False)
    _phase_durations: dict[str, float] = field(default_factory=dict, init=False, repr=False)
    _probe_latencies: dict[str, float] = field(default_factory=dict, init=False, repr=False)
    _switch_durations: list[float] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        """Initialize metric instruments."""
        if self.meter is None:
            self.meter = metrics.get_meter(METER_NAME)

        self._migrated_counter = self.meter.create_counter(
            name="shadowmigrate.records.migrated",
            description="Records written to the shadow collection",
            unit="records",
        )
        self._failed_counter = self.meter.create_counter(
            name="shadowmigrate.records.failed",
            description="Records rejected during the batch phase",
            unit="records",
        )
        self._phase_duration_histogram = self.meter.create_histogram(
            name="shadowmigrate.phase.duration",
            description="Time spent in each migration phase",
            unit="s",
        )
        self._probe_latency_histogram = self.meter.create_histogram(
            name="shadowmigrate.probe.latency",
            description="Mean latency of performance probes",
            unit="ms",
        )
        self._switch_duration_histogram = self.meter.create_histogram(
            name="shadowmigrate.switch.duration",
            description="Window between the two renames of a promotion",
            unit="ms",
        )
        self._runs_counter = self.meter.create_counter(
            name="shadowmigrate.runs",
            description="Finished migration runs by final phase",
            unit="runs",
        )

    def _base_attributes(self) -> dict[str, str]:
        return {"run_id": self.run_id, "source_collection": self.source_collection}

    def record_batch(self, migrated: int, failed: int) -> None:
        """
        Record the outcome of one batch.

        Args:
            migrated: Records the store accepted
            failed: Records rejected by the transformer or the store
        """
        attrs = self._base_attributes()
        if migrated:
            self._migrated_counter.add(migrated, attrs)
        if failed:
            self._failed_counter.add(failed, attrs)
        self._records_migrated += migrated
        self._records_failed += failed

    def record_phase_duration(self, phase: str, duration_seconds: float) -> None:
        attrs = {**self._base_attributes(), "phase": phase}
        self._phase_duration_histogram.record(duration_seconds, attrs)
        self._phase_durations[phase] = self._phase_durations.get(phase, 0.0) + duration_seconds

    def record_probe_latency(self, probe: str, latency_ms: float, passed: bool) -> None:
        attrs = {**self._base_attributes(), "probe": probe, "passed": str(passed).lower()}
        self._probe_latency_histogram.record(latency_ms, attrs)
        self._probe_latencies[probe] = latency_ms

    def record_switch_duration(self, duration_ms: float, success: bool = True) -> None:
        attrs = {**self._base_attributes(), "success": str(success).lower()}
        self._switch_duration_histogram.record(duration_ms, attrs)
        self._switch_durations.append(duration_ms)

    def record_run_finished(self, final_phase: str) -> None:
        self._runs_counter.add(1, {**self._base_attributes(), "final_phase": final_phase})

    @contextmanager
    def time_phase(self, phase: str) -> Generator[None, None, None]:
        """
        Time a phase and record its duration, whether or not it succeeds.

        Example:
            >>> with metrics.time_phase("index"):
            ...     await builder.ensure(shadow, specs)
        """
        started = time.perf_counter()
        try:
            yield
        finally:
            self.record_phase_duration(phase, time.perf_counter() - started)

    def get_snapshot(self) -> MigrationMetricSnapshot:
        return MigrationMetricSnapshot(
            records_migrated=self._records_migrated,
            records_failed=self._records_failed,
            phase_durations=dict(self._phase_durations),
            probe_latencies=dict(self._probe_latencies),
            switch_durations=list(self._switch_durations),
        )


__all__ = ["MigrationMetrics", "MigrationMetricSnapshot", "METER_NAME"]
