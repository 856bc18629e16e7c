"""
MongoDB collection store implementation.

Backed by the asynchronous Motor driver. Driver exceptions are translated
into the store's own error types at this boundary so migration components
never depend on pymongo directly.

Usage:
    >>> database = MongoDatabase.from_uri("mongodb://localhost:27017", "catalog")
    >>> products = database.collection("products")
    >>> await products.count()
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import (
    BulkWriteError,
    DuplicateKeyError,
    OperationFailure,
    PyMongoError,
)

from shadowmigrate.observability import (
    ATTR_COLLECTION,
    ATTR_INDEX_NAME,
    ATTR_RECORD_COUNT,
    Tracer,
    create_tracer,
)
from shadowmigrate.stores.interface import (
    INDEX_ALREADY_EXISTS,
    INDEX_KEY_SPECS_CONFLICT,
    INDEX_OPTIONS_CONFLICT,
    NAMESPACE_EXISTS,
    NAMESPACE_NOT_FOUND,
    Collection,
    CollectionExistsError,
    CollectionNotFoundError,
    Database,
    Document,
    DuplicateRecordError,
    ExplainResult,
    Filter,
    IndexConflictError,
    IndexCreation,
    IndexKeys,
    InsertOutcome,
    SortSpec,
    StoreError,
    StoreOperationError,
    WriteFailure,
    default_index_name,
)

logger = logging.getLogger(__name__)


def _operation_error(error: PyMongoError, collection: str) -> StoreOperationError:
    details = getattr(error, "details", None)
    message = str(error)
    if isinstance(details, Mapping) and details.get("errmsg"):
        message = details["errmsg"]
    return StoreOperationError(message, code=getattr(error, "code", None), collection=collection)


def _winning_stage(plan: Mapping[str, Any]) -> str | None:
    planner = plan.get("queryPlanner", {})
    winning = planner.get("winningPlan", {})
    winning = winning.get("queryPlan", winning)
    stages: list[str] = []
    stage: Mapping[str, Any] | None = winning
    while stage:
        if "stage" in stage:
            stages.append(stage["stage"])
        stage = stage.get("inputStage")
    if "IXSCAN" in stages:
        return "IXSCAN"
    return stages[-1] if stages else None


class MongoCollection(Collection):
    """
    MongoDB implementation of a named collection.

    Example:
        >>> collection = MongoCollection(motor_database, "products")
        >>> outcome = await collection.insert_many(records, ordered=False)
        >>> outcome.failed_count
        0
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        name: str,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._database = database
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def _collection(self) -> Any:
        return self._database[self._name]

    async def exists(self) -> bool:
        try:
            names = await self._database.list_collection_names(filter={"name": self._name})
        except PyMongoError as e:
            raise _operation_error(e, self._name) from e
        return self._name in names

    async def find(
        self,
        filter: Filter | None = None,
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[Document]:
        cursor = self._collection.find(dict(filter or {}))
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        try:
            async for document in cursor:
                yield document
        except PyMongoError as e:
            raise _operation_error(e, self._name) from e

    async def find_one(self, filter: Filter | None = None) -> Document | None:
        try:
            document: Document | None = await self._collection.find_one(dict(filter or {}))
        except PyMongoError as e:
            raise _operation_error(e, self._name) from e
        return document

    async def count(self, filter: Filter | None = None) -> int:
        try:
            return int(await self._collection.count_documents(dict(filter or {})))
        except PyMongoError as e:
            raise _operation_error(e, self._name) from e

    async def insert_one(self, record: Document) -> Any:
        try:
            result = await self._collection.insert_one(dict(record))
        except DuplicateKeyError as e:
            raise DuplicateRecordError(str(e), collection=self._name) from e
        except PyMongoError as e:
            raise _operation_error(e, self._name) from e
        return result.inserted_id

    async def insert_many(
        self,
        records: Sequence[Document],
        *,
        ordered: bool = False,
    ) -> InsertOutcome:
        if not records:
            return InsertOutcome(inserted_count=0)

        # pymongo assigns _id into the dicts it is given; keep callers' copies clean.
        payload = [dict(record) for record in records]
        with self._tracer.span(
            "shadowmigrate.store.insert_many",
            {ATTR_COLLECTION: self._name, ATTR_RECORD_COUNT: len(payload)},
        ):
            try:
                result = await self._collection.insert_many(payload, ordered=ordered)
            except BulkWriteError as e:
                details = e.details or {}
                failures = tuple(
                    WriteFailure(
                        index=error["index"],
                        source_id=records[error["index"]].get("_id"),
                        message=error.get("errmsg", ""),
                        code=error.get("code"),
                    )
                    for error in details.get("writeErrors", [])
                )
                inserted = int(details.get("nInserted", len(payload) - len(failures)))
                logger.debug(
                    "Bulk insert into %s partially failed: inserted=%d, failed=%d",
                    self._name,
                    inserted,
                    len(failures),
                )
                return InsertOutcome(inserted_count=inserted, failures=failures)
            except PyMongoError as e:
                raise _operation_error(e, self._name) from e
            return InsertOutcome(inserted_count=len(result.inserted_ids))

    async def update_one(self, filter: Filter, update: Mapping[str, Any]) -> int:
        try:
            result = await self._collection.update_one(dict(filter), dict(update))
        except DuplicateKeyError as e:
            raise DuplicateRecordError(str(e), collection=self._name) from e
        except PyMongoError as e:
            raise _operation_error(e, self._name) from e
        return int(result.matched_count)

    async def delete_one(self, filter: Filter) -> int:
        try:
            result = await self._collection.delete_one(dict(filter))
        except PyMongoError as e:
            raise _operation_error(e, self._name) from e
        return int(result.deleted_count)

    async def rename(self, new_name: str) -> None:
        with self._tracer.span(
            "shadowmigrate.store.rename",
            {ATTR_COLLECTION: self._name, "shadowmigrate.collection.target": new_name},
        ):
            try:
                await self._collection.rename(new_name)
            except OperationFailure as e:
                if e.code == NAMESPACE_NOT_FOUND:
                    raise CollectionNotFoundError(self._name) from e
                if e.code == NAMESPACE_EXISTS:
                    raise CollectionExistsError(self._name, new_name) from e
                raise _operation_error(e, self._name) from e
            except PyMongoError as e:
                raise _operation_error(e, self._name) from e

    async def drop(self) -> None:
        try:
            await self._collection.drop()
        except PyMongoError as e:
            raise _operation_error(e, self._name) from e

    async def create_index(
        self,
        keys: IndexKeys,
        *,
        name: str | None = None,
        unique: bool = False,
        sparse: bool = False,
        expire_after_seconds: int | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> IndexCreation:
        index_name = name or default_index_name(keys)
        kwargs: dict[str, Any] = {"name": index_name, **(options or {})}
        if unique:
            kwargs["unique"] = True
        if sparse:
            kwargs["sparse"] = True
        if expire_after_seconds is not None:
            kwargs["expireAfterSeconds"] = expire_after_seconds

        with self._tracer.span(
            "shadowmigrate.store.create_index",
            {ATTR_COLLECTION: self._name, ATTR_INDEX_NAME: index_name},
        ):
            try:
                existing = await self._collection.index_information()
            except OperationFailure as e:
                if e.code != NAMESPACE_NOT_FOUND:
                    raise _operation_error(e, self._name) from e
                existing = {}
            try:
                await self._collection.create_index(list(keys), **kwargs)
            except OperationFailure as e:
                if e.code == INDEX_ALREADY_EXISTS:
                    return IndexCreation(name=index_name, created=False)
                if e.code in (INDEX_OPTIONS_CONFLICT, INDEX_KEY_SPECS_CONFLICT):
                    raise IndexConflictError(
                        index_name,
                        _operation_error(e, self._name).message,
                        code=e.code,
                        collection=self._name,
                    ) from e
                if e.code == 11000:
                    raise DuplicateRecordError(str(e), collection=self._name) from e
                raise _operation_error(e, self._name) from e
            except PyMongoError as e:
                raise _operation_error(e, self._name) from e
            # createIndexes is a no-op for an identical existing definition.
            return IndexCreation(name=index_name, created=index_name not in existing)

    async def explain(
        self,
        filter: Filter | None = None,
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> ExplainResult:
        cursor = self._collection.find(dict(filter or {}))
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        try:
            plan = await cursor.explain()
        except PyMongoError as e:
            raise _operation_error(e, self._name) from e

        stats = plan.get("executionStats", {})
        return ExplainResult(
            docs_examined=stats.get("totalDocsExamined"),
            keys_examined=stats.get("totalKeysExamined"),
            returned=stats.get("nReturned"),
            execution_time_ms=stats.get("executionTimeMillis"),
            winning_stage=_winning_stage(plan),
        )


class MongoDatabase(Database):
    """
    MongoDB implementation of the database.

    Owns the Motor client when built through ``from_uri`` and closes it in
    ``close``.
    """

    def __init__(
        self,
        client: AsyncIOMotorClient,
        name: str,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._client = client
        self._database: AsyncIOMotorDatabase = client[name]
        self._name = name

    @classmethod
    def from_uri(
        cls,
        uri: str,
        name: str | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
        server_selection_timeout_ms: int = 10000,
    ) -> MongoDatabase:
        """
        Connect using a connection string.

        Args:
            uri: MongoDB connection string
            name: Database name. Defaults to the database named in the URI.
            server_selection_timeout_ms: How long to wait for a reachable server

        Raises:
            StoreError: If no database name is given or embedded in the URI
        """
        client: AsyncIOMotorClient = AsyncIOMotorClient(
            uri,
            tz_aware=True,
            serverSelectionTimeoutMS=server_selection_timeout_ms,
        )
        if name is None:
            try:
                name = client.get_default_database().name
            except PyMongoError as e:
                client.close()
                raise StoreError(
                    "No database name given and none found in the connection string"
                ) from e
        return cls(client, name, tracer=tracer, enable_tracing=enable_tracing)

    @property
    def name(self) -> str:
        return self._name

    def collection(self, name: str) -> MongoCollection:
        return MongoCollection(self._database, name, tracer=self._tracer)

    async def list_collection_names(self) -> list[str]:
        try:
            return sorted(await self._database.list_collection_names())
        except PyMongoError as e:
            raise StoreError(f"Failed to list collections: {e}") from e

    async def ping(self) -> None:
        try:
            await self._client.admin.command("ping")
        except PyMongoError as e:
            raise StoreError(f"MongoDB is unreachable: {e}") from e

    async def close(self) -> None:
        self._client.close()


__all__ = ["MongoCollection", "MongoDatabase"]
