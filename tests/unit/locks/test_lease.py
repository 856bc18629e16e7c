"""
Unit tests for run-level leases.

Tests cover:
- Acquisition, conflict and release
- Takeover of expired leases
- Phase updates and loss of the lease
- Timeouts while another holder keeps the lease
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from shadowmigrate.locks import (
    CollectionLeaseManager,
    LockAcquisitionError,
    LockNotHeldError,
    default_holder_id,
    migration_lock_key,
)
from shadowmigrate.observability import MockTracer
from shadowmigrate.stores import InMemoryCollection, InMemoryDatabase
from tests.fixtures import FaultyDatabase

KEY = migration_lock_key("products")
T0 = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def locks(database: InMemoryDatabase) -> InMemoryCollection:
    return database.collection("migration_locks")


def manager(
    locks: InMemoryCollection,
    holder: str,
    clock: Callable[[], datetime] | None = None,
    ttl_seconds: float = 60.0,
) -> CollectionLeaseManager:
    return CollectionLeaseManager(
        locks,
        holder_id=holder,
        ttl_seconds=ttl_seconds,
        clock=clock,
        enable_tracing=False,
    )


class TestHelpers:
    """Tests for key and holder helpers."""

    def test_lock_key(self) -> None:
        assert migration_lock_key("products") == "migration:products"

    def test_holder_ids_are_unique(self) -> None:
        assert default_holder_id() != default_holder_id()

    def test_ttl_must_be_positive(self, locks: InMemoryCollection) -> None:
        with pytest.raises(ValueError, match="ttl_seconds"):
            manager(locks, "a", ttl_seconds=0)


class TestAcquire:
    """Tests for acquiring and releasing leases."""

    async def test_acquire_writes_lease_document(self, locks: InMemoryCollection) -> None:
        leases = manager(locks, "host-a", clock=FakeClock())

        async with leases.acquire(KEY, phase="none") as info:
            assert info.holder_id == "host-a"
            assert info.expires_at == T0 + timedelta(seconds=60)
            assert await leases.is_held(KEY)

            stored = await leases.get(KEY)
            assert stored is not None
            assert stored.holder_id == "host-a"
            assert stored.phase == "none"

        assert not await leases.is_held(KEY)
        assert await locks.count() == 0

    async def test_released_on_exception(self, locks: InMemoryCollection) -> None:
        leases = manager(locks, "host-a")

        with pytest.raises(RuntimeError):
            async with leases.acquire(KEY):
                raise RuntimeError("phase failed")

        assert await locks.count() == 0

    async def test_second_holder_is_refused(self, locks: InMemoryCollection) -> None:
        first = manager(locks, "host-a")
        second = manager(locks, "host-b")

        async with first.acquire(KEY):
            with pytest.raises(LockAcquisitionError, match="held by host-a") as exc_info:
                async with second.acquire(KEY):
                    pytest.fail("second holder acquired a live lease")

        assert exc_info.value.key == KEY
        assert exc_info.value.timeout is None

    async def test_try_acquire_returns_none_when_held(self, locks: InMemoryCollection) -> None:
        first = manager(locks, "host-a")
        second = manager(locks, "host-b")

        assert await first.try_acquire(KEY) is not None
        assert await second.try_acquire(KEY) is None

    async def test_expired_lease_is_taken_over(self, locks: InMemoryCollection) -> None:
        clock = FakeClock()
        crashed = manager(locks, "host-a", clock=clock)
        await crashed.try_acquire(KEY, phase="transform")

        clock.advance(61)
        successor = manager(locks, "host-b", clock=clock)
        info = await successor.try_acquire(KEY, phase="none")

        assert info is not None
        stored = await successor.get(KEY)
        assert stored is not None
        assert stored.holder_id == "host-b"
        assert stored.phase == "none"

    async def test_timeout_retries_then_fails(self, locks: InMemoryCollection) -> None:
        await manager(locks, "host-a").try_acquire(KEY)
        second = manager(locks, "host-b")

        with pytest.raises(LockAcquisitionError, match="Timeout after 0.05s") as exc_info:
            async with second.acquire(KEY, timeout=0.05, retry_interval=0.01):
                pass

        assert exc_info.value.timeout == 0.05

    async def test_store_error_becomes_acquisition_error(
        self, faulty_database: FaultyDatabase
    ) -> None:
        faulty_database.fail("insert_one", "migration_locks")
        leases = manager(faulty_database.collection("migration_locks"), "host-a")

        with pytest.raises(LockAcquisitionError, match="Database error"):
            async with leases.acquire(KEY):
                pass

    async def test_acquire_span(self, locks: InMemoryCollection) -> None:
        tracer = MockTracer()
        leases = CollectionLeaseManager(locks, holder_id="host-a", tracer=tracer)

        async with leases.acquire(KEY):
            pass

        assert tracer.span_names == ["shadowmigrate.lock.acquire", "shadowmigrate.lock.release"]


class TestPhaseUpdates:
    """Tests for update_phase and release."""

    async def test_update_phase(self, locks: InMemoryCollection) -> None:
        leases = manager(locks, "host-a")

        async with leases.acquire(KEY, phase="none"):
            info = await leases.update_phase(KEY, "switch")
            stored = await leases.get(KEY)

        assert info.phase == "switch"
        assert stored is not None
        assert stored.phase == "switch"

    async def test_active_holder_keeps_lease_past_ttl(self, locks: InMemoryCollection) -> None:
        clock = FakeClock()
        active = manager(locks, "run-a", clock=clock)
        await active.try_acquire(KEY, phase="none")
        for phase in ("backup", "transform", "index"):
            clock.advance(30)
            await active.update_phase(KEY, phase)

        taken = await manager(locks, "run-b", clock=clock).try_acquire(KEY)

        assert taken is None
        stored = await active.get(KEY)
        assert stored is not None
        assert stored.holder_id == "run-a"
        assert stored.expires_at == T0 + timedelta(seconds=90 + 60)

    async def test_renew_extends_without_changing_phase(
        self, locks: InMemoryCollection
    ) -> None:
        clock = FakeClock()
        leases = manager(locks, "run-a", clock=clock)
        await leases.try_acquire(KEY, phase="transform")
        clock.advance(45)

        info = await leases.renew(KEY)
        clock.advance(45)

        assert info.phase == "transform"
        assert info.expires_at == T0 + timedelta(seconds=105)
        assert await manager(locks, "run-b", clock=clock).try_acquire(KEY) is None

    async def test_renew_after_takeover_raises(self, locks: InMemoryCollection) -> None:
        clock = FakeClock()
        original = manager(locks, "run-a", clock=clock)
        await original.try_acquire(KEY)
        clock.advance(120)
        await manager(locks, "run-b", clock=clock).try_acquire(KEY)

        with pytest.raises(LockNotHeldError):
            await original.renew(KEY)

    async def test_update_without_lease_raises(self, locks: InMemoryCollection) -> None:
        with pytest.raises(LockNotHeldError):
            await manager(locks, "host-a").update_phase(KEY, "switch")

    async def test_update_after_takeover_raises(self, locks: InMemoryCollection) -> None:
        clock = FakeClock()
        original = manager(locks, "host-a", clock=clock)
        await original.try_acquire(KEY)
        clock.advance(120)
        await manager(locks, "host-b", clock=clock).try_acquire(KEY)

        with pytest.raises(LockNotHeldError):
            await original.update_phase(KEY, "switch")

        assert not await original.is_held(KEY)

    async def test_release_leaves_other_holders_lease(self, locks: InMemoryCollection) -> None:
        clock = FakeClock()
        original = manager(locks, "host-a", clock=clock)
        await original.try_acquire(KEY)
        clock.advance(120)
        await manager(locks, "host-b", clock=clock).try_acquire(KEY)

        await original.release(KEY)

        stored = await original.get(KEY)
        assert stored is not None
        assert stored.holder_id == "host-b"

    async def test_release_without_lease_raises(self, locks: InMemoryCollection) -> None:
        with pytest.raises(LockNotHeldError, match="not held"):
            await manager(locks, "host-a").release(KEY)
