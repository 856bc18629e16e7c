"""
In-memory database with injectable failures.

Tests register a fault per ``(operation, collection)`` pair; the matching
call raises ``StoreOperationError`` once the configured number of calls has
been let through.

Example:
    >>> database = FaultyDatabase()
    >>> database.fail("rename", "products_v2")
    >>> await database.collection("products_v2").rename("products")
    Traceback (most recent call last):
    StoreOperationError: injected rename failure collection=products_v2
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from shadowmigrate.stores import (
    Document,
    Filter,
    InMemoryCollection,
    InMemoryDatabase,
    InsertOutcome,
    SortSpec,
    StoreOperationError,
)


@dataclass
class Fault:
    skip: int = 0
    times: int | None = None
    calls: int = 0


class FaultyDatabase(InMemoryDatabase):
    """InMemoryDatabase whose collections fail on request."""

    def __init__(self, name: str = "shadowmigrate") -> None:
        super().__init__(name, enable_tracing=False)
        self._faults: dict[tuple[str, str], Fault] = {}

    def fail(
        self,
        operation: str,
        collection: str,
        *,
        skip: int = 0,
        times: int | None = None,
    ) -> None:
        """
        Make ``operation`` on ``collection`` fail.

        Args:
            skip: Calls let through before the first failure
            times: Failures before the fault clears (None for every call)
        """
        self._faults[(operation, collection)] = Fault(skip=skip, times=times)

    def heal(self) -> None:
        self._faults.clear()

    def collection(self, name: str) -> FaultyCollection:
        return FaultyCollection(self, name)

    def check(self, operation: str, collection: str) -> None:
        fault = self._faults.get((operation, collection))
        if fault is None:
            return
        if fault.skip > 0:
            fault.skip -= 1
            return
        if fault.times is not None and fault.calls >= fault.times:
            return
        fault.calls += 1
        raise StoreOperationError(f"injected {operation} failure", collection=collection)


class FaultyCollection(InMemoryCollection):
    _database: FaultyDatabase

    async def exists(self) -> bool:
        self._database.check("exists", self.name)
        return await super().exists()

    async def find(
        self,
        filter: Filter | None = None,
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[Document]:
        self._database.check("find", self.name)
        async for document in super().find(filter, sort=sort, limit=limit):
            yield document

    async def count(self, filter: Filter | None = None) -> int:
        self._database.check("count", self.name)
        return await super().count(filter)

    async def insert_one(self, record: Document) -> Any:
        self._database.check("insert_one", self.name)
        return await super().insert_one(record)

    async def insert_many(
        self,
        records: Sequence[Document],
        *,
        ordered: bool = False,
    ) -> InsertOutcome:
        self._database.check("insert_many", self.name)
        return await super().insert_many(records, ordered=ordered)

    async def update_one(self, filter: Filter, update: Mapping[str, Any]) -> int:
        self._database.check("update_one", self.name)
        return await super().update_one(filter, update)

    async def rename(self, new_name: str) -> None:
        self._database.check("rename", self.name)
        await super().rename(new_name)

    async def drop(self) -> None:
        self._database.check("drop", self.name)
        await super().drop()
