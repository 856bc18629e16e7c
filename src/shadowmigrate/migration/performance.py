"""
PerformanceGate - Times representative queries against the shadow collection.

Each PerformanceProbe runs as a real query several times and its mean
end-to-end latency is compared with the probe's budget. An explain is taken
where the store supports one, recording documents examined and whether an
index was used.

Whether a failing gate blocks promotion is a policy choice:
    - advisory (default): the shortfall is logged and reported
    - strict: the shortfall is fatal and the run rolls back

Usage:
    >>> gate = PerformanceGate(iterations=5)
    >>> report = await gate.run(shadow, definition.probes)
    >>> gate.evaluate(report)  # raises PerformanceShortfall only when strict
"""

from __future__ import annotations

import logging
import statistics
import time
from collections.abc import Callable, Sequence

from shadowmigrate.migration.exceptions import PerformanceShortfall
from shadowmigrate.migration.metrics import MigrationMetrics
from shadowmigrate.migration.models import (
    PerformancePolicy,
    PerformanceProbe,
    PerformanceReport,
    ProbeResult,
)
from shadowmigrate.observability import (
    ATTR_PROBE_NAME,
    ATTR_SHADOW_COLLECTION,
    Tracer,
    create_tracer,
)
from shadowmigrate.stores.interface import Collection, ExplainResult, StoreError

logger = logging.getLogger(__name__)


class PerformanceGate:
    """
    Runs performance probes and applies the promotion policy.

    Args:
        iterations: Executions averaged per probe
        policy: Whether a shortfall blocks promotion
        metrics: Optional metrics recorder
        timer: Monotonic clock in seconds (injectable for tests)
    """

    def __init__(
        self,
        *,
        iterations: int = 5,
        policy: PerformancePolicy = PerformancePolicy.ADVISORY,
        metrics: MigrationMetrics | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        if iterations < 1:
            raise ValueError(f"iterations must be >= 1, got {iterations}")
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._iterations = iterations
        self._policy = policy
        self._metrics = metrics
        self._timer = timer

    @property
    def policy(self) -> PerformancePolicy:
        return self._policy

    async def run(
        self,
        collection: Collection,
        probes: Sequence[PerformanceProbe],
    ) -> PerformanceReport:
        """
        Execute every probe against ``collection``.

        A probe whose query errors is reported as not passed; the gate
        itself does not raise.
        """
        with self._tracer.span(
            "shadowmigrate.performance_gate.run",
            {ATTR_SHADOW_COLLECTION: collection.name, "shadowmigrate.probe.count": len(probes)},
        ):
            results = [await self._run_probe(collection, probe) for probe in probes]

        report = PerformanceReport(results=tuple(results), policy=self._policy)
        for result in results:
            logger.info(
                "Probe %-30s %8.2fms (budget %gms) %s",
                result.name,
                result.latency_ms,
                result.budget_ms,
                "PASS" if result.passed else "FAIL",
            )
        if not report.overall_passed:
            logger.warning(
                "%d of %d performance probes missed their budget (%d critical)",
                len(report.failed_probes),
                len(results),
                len(report.critical_failures),
            )
        return report

    def evaluate(self, report: PerformanceReport) -> PerformanceShortfall | None:
        """
        Apply the promotion policy to a report.

        Returns:
            The advisory shortfall, or None if every probe passed

        Raises:
            PerformanceShortfall: If probes failed and the policy is strict
        """
        if report.overall_passed:
            return None
        names = ", ".join(result.name for result in report.failed_probes)
        shortfall = PerformanceShortfall(
            f"Performance probes over budget: {names}",
            report=report,
            strict=self._policy == PerformancePolicy.STRICT,
        )
        if shortfall.strict:
            raise shortfall
        return shortfall

    async def _run_probe(self, collection: Collection, probe: PerformanceProbe) -> ProbeResult:
        with self._tracer.span(
            "shadowmigrate.performance_gate.probe",
            {ATTR_PROBE_NAME: probe.name, "shadowmigrate.probe.budget_ms": probe.budget_ms},
        ):
            latencies: list[float] = []
            returned = 0
            try:
                for _ in range(self._iterations):
                    started = self._timer()
                    documents = [
                        document
                        async for document in collection.find(
                            probe.filter, sort=probe.sort, limit=probe.limit
                        )
                    ]
                    latencies.append((self._timer() - started) * 1000)
                    returned = len(documents)
            except StoreError as e:
                logger.warning("Probe %s failed to execute: %s", probe.name, e)
                return ProbeResult(
                    name=probe.name,
                    latency_ms=statistics.fmean(latencies) if latencies else 0.0,
                    budget_ms=probe.budget_ms,
                    passed=False,
                    critical=probe.critical,
                    error=str(e),
                )

            plan = await self._explain(collection, probe)
            latency_ms = statistics.fmean(latencies)
            cardinality_exceeded = probe.max_results is not None and returned > probe.max_results
            if cardinality_exceeded:
                logger.warning(
                    "Probe %s returned %d results, more than the expected %d",
                    probe.name,
                    returned,
                    probe.max_results,
                )

        result = ProbeResult(
            name=probe.name,
            latency_ms=latency_ms,
            budget_ms=probe.budget_ms,
            passed=latency_ms <= probe.budget_ms,
            returned=returned,
            docs_examined=plan.docs_examined if plan else None,
            keys_examined=plan.keys_examined if plan else None,
            used_index=plan.used_index if plan and plan.winning_stage else None,
            critical=probe.critical,
            cardinality_exceeded=cardinality_exceeded,
        )
        if self._metrics is not None:
            self._metrics.record_probe_latency(probe.name, latency_ms, result.passed)
        return result

    async def _explain(
        self, collection: Collection, probe: PerformanceProbe
    ) -> ExplainResult | None:
        try:
            return await collection.explain(probe.filter, sort=probe.sort, limit=probe.limit)
        except StoreError as e:
            # Execution statistics are optional.
            logger.debug("Explain unavailable for probe %s: %s", probe.name, e)
            return None


__all__ = ["PerformanceGate"]
