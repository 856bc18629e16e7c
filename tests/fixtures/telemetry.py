"""Helpers for inspecting OpenTelemetry SDK readers in tests."""

from __future__ import annotations

from typing import Any


def collected_metrics(reader: Any) -> dict[str, list[Any]]:
    """Map metric name to its data points."""
    found: dict[str, list[Any]] = {}
    data = reader.get_metrics_data()
    if data is None:
        return found
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                found.setdefault(metric.name, []).extend(metric.data.data_points)
    return found
