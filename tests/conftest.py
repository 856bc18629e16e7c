"""
Shared pytest fixtures for the shadowmigrate library tests.

This module provides:
- Store fixtures (database, populated source collection)
- Migration fixtures (config writing into tmp_path, test definition)
- Tracing fixtures (mock_tracer)
- OpenTelemetry metrics fixtures (metric_reader, meter)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from shadowmigrate.migration import MigrationConfig, MigrationDefinition
from shadowmigrate.observability import MockTracer
from shadowmigrate.stores import InMemoryCollection, InMemoryDatabase
from tests.fixtures import FaultyDatabase, make_products, simple_definition

# ============================================================================
# OpenTelemetry Metrics Availability Check
# ============================================================================

OTEL_METRICS_AVAILABLE = False
try:
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import InMemoryMetricReader

    OTEL_METRICS_AVAILABLE = True
except ImportError:
    MeterProvider = None  # type: ignore[assignment, misc]
    InMemoryMetricReader = None  # type: ignore[assignment, misc]


# ============================================================================
# Skip Condition
# ============================================================================

skip_if_no_otel_metrics = pytest.mark.skipif(
    not OTEL_METRICS_AVAILABLE, reason="opentelemetry-sdk not installed"
)


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def database() -> InMemoryDatabase:
    """Provide an empty in-memory database with tracing disabled."""
    return InMemoryDatabase(enable_tracing=False)


@pytest.fixture
def faulty_database() -> FaultyDatabase:
    """Provide an in-memory database that fails on request."""
    return FaultyDatabase()


@pytest_asyncio.fixture
async def products(database: InMemoryDatabase) -> AsyncGenerator[InMemoryCollection, None]:
    """
    Provide a "products" collection holding 100 valid legacy products.

    Yields:
        InMemoryCollection: The populated source collection.
    """
    collection = database.collection("products")
    await collection.insert_many(make_products(100))
    yield collection


# =============================================================================
# Migration Fixtures
# =============================================================================


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def report_path(tmp_path: Path) -> Path:
    return tmp_path / "reports" / "migration-report.json"


@pytest.fixture
def migration_config(backup_dir: Path, report_path: Path) -> MigrationConfig:
    """Default run configuration with artifacts under tmp_path."""
    return MigrationConfig(
        backup_dir=str(backup_dir),
        report_path=str(report_path),
        probe_iterations=1,
    )


@pytest.fixture
def definition() -> MigrationDefinition:
    return simple_definition()


# =============================================================================
# Tracing Fixtures
# =============================================================================


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Provide a tracer that records span names and attributes."""
    return MockTracer()


# =============================================================================
# OpenTelemetry Metrics Fixtures
# =============================================================================


@pytest.fixture
def metric_reader() -> Any:
    """
    Provide an InMemoryMetricReader for testing metrics.

    Returns:
        InMemoryMetricReader: Reader for inspecting collected metrics.
    """
    if not OTEL_METRICS_AVAILABLE:
        pytest.skip("opentelemetry-sdk not installed")
    return InMemoryMetricReader()


@pytest.fixture
def meter(metric_reader: Any) -> Any:
    """
    Provide a meter whose measurements land in ``metric_reader``.

    The global meter provider can only be set once per process, so tests
    hand this meter to MigrationMetrics explicitly.
    """
    provider = MeterProvider(metric_readers=[metric_reader])
    return provider.get_meter("shadowmigrate.tests")

