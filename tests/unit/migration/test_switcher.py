"""
Unit tests for BlueGreenSwitcher.
"""

import pytest

from shadowmigrate.migration import BlueGreenSwitcher, SwitchError
from shadowmigrate.observability import MockTracer
from shadowmigrate.stores import InMemoryDatabase
from tests.fixtures import FaultyDatabase, make_products

NOW_MS = 1_700_000_000_000
BACKUP_NAME = f"products_backup_{NOW_MS}"


async def populate(database: InMemoryDatabase) -> None:
    await database.collection("products").insert_many(make_products(10))
    await database.collection("products_v2").insert_many(
        [{"_id": i, "name": f"Product {i}"} for i in range(1, 13)]
    )


@pytest.fixture
def switcher() -> BlueGreenSwitcher:
    return BlueGreenSwitcher(clock_ms=lambda: NOW_MS, enable_tracing=False)


class TestBlueGreenSwitcher:
    """Tests for BlueGreenSwitcher.promote."""

    def test_backup_name_uses_epoch_millis(self, switcher: BlueGreenSwitcher) -> None:
        assert switcher.backup_name_for("products") == BACKUP_NAME

    async def test_promotes_shadow_and_preserves_live(
        self, switcher: BlueGreenSwitcher, database: InMemoryDatabase
    ) -> None:
        await populate(database)
        live = database.collection("products")
        shadow = database.collection("products_v2")

        result = await switcher.promote(live, shadow)

        assert result.live_name == "products"
        assert result.shadow_name == "products_v2"
        assert result.backup_collection_name == BACKUP_NAME
        assert result.duration_ms >= 0
        assert not result.window_exceeded
        assert await live.count() == 12
        assert not await shadow.exists()
        assert await database.collection(BACKUP_NAME).count() == 10

    async def test_step_one_failure_moves_nothing(
        self, switcher: BlueGreenSwitcher, faulty_database: FaultyDatabase
    ) -> None:
        await populate(faulty_database)
        faulty_database.fail("rename", "products")

        with pytest.raises(SwitchError) as exc_info:
            await switcher.promote(
                faulty_database.collection("products"), faulty_database.collection("products_v2")
            )

        assert exc_info.value.step == 1
        assert exc_info.value.backup_collection_name is None
        assert await faulty_database.list_collection_names() == ["products", "products_v2"]

    async def test_step_two_failure_reports_backup_name(
        self, switcher: BlueGreenSwitcher, faulty_database: FaultyDatabase
    ) -> None:
        await populate(faulty_database)
        faulty_database.fail("rename", "products_v2")

        with pytest.raises(SwitchError) as exc_info:
            await switcher.promote(
                faulty_database.collection("products"), faulty_database.collection("products_v2")
            )

        assert exc_info.value.step == 2
        assert exc_info.value.backup_collection_name == BACKUP_NAME
        assert not await faulty_database.collection("products").exists()
        assert await faulty_database.collection(BACKUP_NAME).count() == 10

    async def test_missing_shadow_fails_step_two(
        self, switcher: BlueGreenSwitcher, database: InMemoryDatabase
    ) -> None:
        await database.collection("products").insert_many(make_products(3))

        with pytest.raises(SwitchError) as exc_info:
            await switcher.promote(
                database.collection("products"), database.collection("products_v2")
            )

        assert exc_info.value.step == 2

    async def test_slow_switch_flags_window(self, database: InMemoryDatabase) -> None:
        await populate(database)
        switcher = BlueGreenSwitcher(max_window_ms=1e-9, enable_tracing=False)

        result = await switcher.promote(
            database.collection("products"), database.collection("products_v2")
        )

        assert result.window_exceeded

    async def test_span_attributes(self, database: InMemoryDatabase) -> None:
        await populate(database)
        tracer = MockTracer()
        switcher = BlueGreenSwitcher(clock_ms=lambda: NOW_MS, tracer=tracer)

        await switcher.promote(database.collection("products"), database.collection("products_v2"))

        assert tracer.span_names[0] == "shadowmigrate.switcher.promote"
        attributes = tracer.attributes_of("shadowmigrate.switcher.promote")
        assert attributes["shadowmigrate.collection.backup"] == BACKUP_NAME
