"""
Shared test fixtures for the shadowmigrate library.

This module provides reusable test helpers including:
- Legacy product documents and a small v2 migration definition
- An in-memory database with injectable store failures

Usage:
    from tests.fixtures import (
        FaultyDatabase,
        make_products,
        simple_definition,
    )
"""

from tests.fixtures.products import (
    CATEGORIES,
    V2_INDEXES,
    V2_PROBES,
    V2_SCHEMA,
    legacy_to_v2,
    make_product,
    make_products,
    simple_definition,
)
from tests.fixtures.stores import FaultyCollection, FaultyDatabase
from tests.fixtures.telemetry import collected_metrics

__all__ = [
    # Products
    "CATEGORIES",
    "V2_INDEXES",
    "V2_PROBES",
    "V2_SCHEMA",
    "legacy_to_v2",
    "make_product",
    "make_products",
    "simple_definition",
    # Stores
    "FaultyCollection",
    "FaultyDatabase",
    # Telemetry
    "collected_metrics",
]
