"""
Shared pytest fixtures for integration tests.

This module provides a MongoDB server using testcontainers for automatic
container management. Each test gets its own database, dropped afterwards.

If testcontainers or Docker is not available, tests are automatically skipped.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio

from shadowmigrate.stores import MongoDatabase

# ============================================================================
# Testcontainers Detection
# ============================================================================

TESTCONTAINERS_AVAILABLE = False

try:
    from testcontainers.mongodb import MongoDbContainer

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    MongoDbContainer = None  # type: ignore[assignment, misc]


def is_docker_available() -> bool:
    """Check if Docker is available for running containers."""
    import subprocess

    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, OSError):
        return False


DOCKER_AVAILABLE = is_docker_available()


# ============================================================================
# Skip Conditions
# ============================================================================

skip_if_no_mongodb_infra = pytest.mark.skipif(
    not (TESTCONTAINERS_AVAILABLE and DOCKER_AVAILABLE),
    reason="MongoDB test infrastructure not available",
)


# ============================================================================
# MongoDB Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def mongodb_container() -> Generator[Any, None, None]:
    """
    Provide a MongoDB container for the test session.

    Uses testcontainers to automatically start and stop a MongoDB container.
    """
    if not (TESTCONTAINERS_AVAILABLE and DOCKER_AVAILABLE):
        pytest.skip("MongoDB test infrastructure not available")

    container = MongoDbContainer("mongo:7.0")
    container.start()
    yield container
    container.stop()


@pytest.fixture(scope="session")
def mongodb_uri(mongodb_container: Any) -> str:
    """Get the MongoDB connection string from the container."""
    return str(mongodb_container.get_connection_url())


@pytest_asyncio.fixture
async def mongo_database(mongodb_uri: str) -> AsyncGenerator[MongoDatabase, None]:
    """
    Provide a MongoDatabase on a fresh, uniquely named database.

    The client is created per test because Motor binds to the running
    event loop.
    """
    database = MongoDatabase.from_uri(
        mongodb_uri,
        f"shadowmigrate_test_{uuid4().hex[:12]}",
        enable_tracing=False,
    )
    await database.ping()
    yield database
    for name in await database.list_collection_names():
        await database.collection(name).drop()
    await database.close()
