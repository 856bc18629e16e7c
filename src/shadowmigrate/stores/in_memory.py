"""
In-memory collection store implementation.

Useful for testing and development. Not suitable for production
as all data is lost when the process terminates.

Documents are deep-copied on every write and read so callers can never
mutate stored state through a returned reference.
"""

import asyncio
import copy
import time
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from bson import ObjectId

from shadowmigrate.observability import (
    ATTR_COLLECTION,
    ATTR_RECORD_COUNT,
    Tracer,
    create_tracer,
)
from shadowmigrate.stores._query import matches, resolve_path, sort_documents
from shadowmigrate.stores.interface import (
    INDEX_KEY_SPECS_CONFLICT,
    INDEX_OPTIONS_CONFLICT,
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
    StoreOperationError,
    WriteFailure,
    default_index_name,
)

BAD_VALUE = 2


def _identity(value: Any) -> tuple[str, str]:
    return (type(value).__name__, repr(value))


@dataclass(frozen=True)
class _IndexDefinition:
    name: str
    keys: tuple[tuple[str, int | str], ...]
    unique: bool = False
    sparse: bool = False
    expire_after_seconds: int | None = None
    options: tuple[tuple[str, str], ...] = ()

    def same_shape(self, other: "_IndexDefinition") -> bool:
        return (
            self.keys == other.keys
            and self.unique == other.unique
            and self.sparse == other.sparse
            and self.expire_after_seconds == other.expire_after_seconds
            and self.options == other.options
        )

    def key_of(self, document: Document) -> tuple[tuple[str, str], ...] | None:
        values = [resolve_path(document, field) for field, _ in self.keys]
        if self.sparse and not any(values):
            return None
        return tuple(_identity(found[0] if found else None) for found in values)


@dataclass
class _CollectionData:
    documents: dict[tuple[str, str], Document] = field(default_factory=dict)
    indexes: dict[str, _IndexDefinition] = field(
        default_factory=lambda: {"_id_": _IndexDefinition(name="_id_", keys=(("_id", 1),))}
    )


class InMemoryDatabase(Database):
    """
    In-memory implementation of the database.

    Collections spring into existence on first write, like the server's.

    Example:
        >>> database = InMemoryDatabase()
        >>> products = database.collection("products")
        >>> await products.insert_many([{"_id": 1, "name": "ring"}])
        >>> await products.count()
        1
    """

    def __init__(
        self,
        name: str = "shadowmigrate",
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize an empty in-memory database.

        Args:
            name: Database name
            tracer: Optional custom Tracer instance. If not provided, one is
                   created based on enable_tracing setting.
            enable_tracing: Whether to emit traces. Ignored if tracer is provided.
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._name = name
        self._collections: dict[str, _CollectionData] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self._name

    def collection(self, name: str) -> "InMemoryCollection":
        return InMemoryCollection(self, name)

    async def list_collection_names(self) -> list[str]:
        return sorted(self._collections)

    async def ping(self) -> None:
        return None


class InMemoryCollection(Collection):
    """In-memory implementation of a named collection."""

    def __init__(self, database: InMemoryDatabase, name: str) -> None:
        self._database = database
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def _tracer(self) -> Tracer:
        return self._database._tracer

    def _data(self) -> _CollectionData | None:
        return self._database._collections.get(self._name)

    def _data_or_create(self) -> _CollectionData:
        data = self._database._collections.get(self._name)
        if data is None:
            data = _CollectionData()
            self._database._collections[self._name] = data
        return data

    async def exists(self) -> bool:
        return self._name in self._database._collections

    def _matching(self, filter: Filter | None, sort: SortSpec | None) -> list[Document]:
        data = self._data()
        if data is None:
            return []
        found = [doc for doc in data.documents.values() if matches(doc, filter)]
        return sort_documents(found, sort)

    async def find(
        self,
        filter: Filter | None = None,
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[Document]:
        selected = self._matching(filter, sort)
        if limit:
            selected = selected[:limit]
        # Snapshot before yielding so concurrent writes cannot shift the cursor.
        snapshot = copy.deepcopy(selected)
        for document in snapshot:
            yield document

    async def find_one(self, filter: Filter | None = None) -> Document | None:
        selected = self._matching(filter, None)
        return copy.deepcopy(selected[0]) if selected else None

    async def count(self, filter: Filter | None = None) -> int:
        return len(self._matching(filter, None))

    def _check_unique(
        self,
        data: _CollectionData,
        document: Document,
        ignore: tuple[str, str] | None = None,
    ) -> None:
        for index in data.indexes.values():
            if not index.unique:
                continue
            key = index.key_of(document)
            if key is None:
                continue
            for identity, existing in data.documents.items():
                if identity != ignore and index.key_of(existing) == key:
                    raise DuplicateRecordError(
                        f"E11000 duplicate key error index: {index.name} dup key: {key}",
                        collection=self._name,
                    )

    def _insert(self, data: _CollectionData, record: Mapping[str, Any]) -> Any:
        document = copy.deepcopy(dict(record))
        if "_id" not in document:
            document["_id"] = ObjectId()
        identity = _identity(document["_id"])
        if identity in data.documents:
            raise DuplicateRecordError(
                f"E11000 duplicate key error index: _id_ dup key: {document['_id']!r}",
                collection=self._name,
            )
        self._check_unique(data, document)
        data.documents[identity] = document
        return document["_id"]

    async def insert_one(self, record: Document) -> Any:
        async with self._database._lock:
            return self._insert(self._data_or_create(), record)

    async def insert_many(
        self,
        records: Sequence[Document],
        *,
        ordered: bool = False,
    ) -> InsertOutcome:
        with self._tracer.span(
            "shadowmigrate.store.insert_many",
            {ATTR_COLLECTION: self._name, ATTR_RECORD_COUNT: len(records)},
        ):
            inserted = 0
            failures: list[WriteFailure] = []
            async with self._database._lock:
                data = self._data_or_create()
                for position, record in enumerate(records):
                    try:
                        self._insert(data, record)
                    except DuplicateRecordError as e:
                        failures.append(
                            WriteFailure(
                                index=position,
                                source_id=record.get("_id"),
                                message=e.message,
                                code=e.code,
                            )
                        )
                        if ordered:
                            break
                    else:
                        inserted += 1
            return InsertOutcome(inserted_count=inserted, failures=tuple(failures))

    async def update_one(self, filter: Filter, update: Mapping[str, Any]) -> int:
        if not update or not all(key in ("$set", "$unset") for key in update):
            raise StoreOperationError(
                "update must use $set or $unset", code=BAD_VALUE, collection=self._name
            )
        async with self._database._lock:
            data = self._data()
            if data is None:
                return 0
            for identity, document in data.documents.items():
                if not matches(document, filter):
                    continue
                updated = copy.deepcopy(document)
                for path, value in update.get("$set", {}).items():
                    _set_path(updated, path, copy.deepcopy(value))
                for path in update.get("$unset", {}):
                    _unset_path(updated, path)
                if _identity(updated.get("_id")) != identity:
                    raise StoreOperationError(
                        "the _id field is immutable", code=66, collection=self._name
                    )
                self._check_unique(data, updated, ignore=identity)
                data.documents[identity] = updated
                return 1
            return 0

    async def delete_one(self, filter: Filter) -> int:
        async with self._database._lock:
            data = self._data()
            if data is None:
                return 0
            for identity, document in data.documents.items():
                if matches(document, filter):
                    del data.documents[identity]
                    return 1
            return 0

    async def rename(self, new_name: str) -> None:
        with self._tracer.span(
            "shadowmigrate.store.rename",
            {ATTR_COLLECTION: self._name, "shadowmigrate.collection.target": new_name},
        ):
            async with self._database._lock:
                collections = self._database._collections
                if self._name not in collections:
                    raise CollectionNotFoundError(self._name)
                if new_name in collections:
                    raise CollectionExistsError(self._name, new_name)
                collections[new_name] = collections.pop(self._name)

    async def drop(self) -> None:
        async with self._database._lock:
            self._database._collections.pop(self._name, None)

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
        definition = _IndexDefinition(
            name=name or default_index_name(keys),
            keys=tuple((field, direction) for field, direction in keys),
            unique=unique,
            sparse=sparse,
            expire_after_seconds=expire_after_seconds,
            options=tuple(sorted((key, repr(value)) for key, value in (options or {}).items())),
        )
        async with self._database._lock:
            data = self._data_or_create()
            existing = data.indexes.get(definition.name)
            if existing is not None:
                if existing.same_shape(definition):
                    return IndexCreation(name=definition.name, created=False)
                raise IndexConflictError(
                    definition.name,
                    "An existing index has the same name as the requested index: "
                    f"{definition.name}",
                    code=INDEX_KEY_SPECS_CONFLICT,
                    collection=self._name,
                )
            for other in data.indexes.values():
                if other.keys == definition.keys:
                    raise IndexConflictError(
                        definition.name,
                        f"Index already exists with a different name: {other.name}",
                        code=INDEX_OPTIONS_CONFLICT,
                        collection=self._name,
                    )
            if definition.unique:
                seen: set[tuple[tuple[str, str], ...]] = set()
                for document in data.documents.values():
                    key = definition.key_of(document)
                    if key is None:
                        continue
                    if key in seen:
                        raise DuplicateRecordError(
                            f"E11000 duplicate key error building index {definition.name}",
                            collection=self._name,
                        )
                    seen.add(key)
            data.indexes[definition.name] = definition
            return IndexCreation(name=definition.name, created=True)

    async def index_names(self) -> list[str]:
        data = self._data()
        return list(data.indexes) if data else []

    async def explain(
        self,
        filter: Filter | None = None,
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> ExplainResult:
        started = time.perf_counter()
        data = self._data()
        total = len(data.documents) if data else 0
        selected = self._matching(filter, sort)
        returned = len(selected[:limit]) if limit else len(selected)
        elapsed_ms = (time.perf_counter() - started) * 1000

        leading_fields = {key for key in (filter or {}) if not key.startswith("$")}
        if sort:
            leading_fields.add(sort[0][0])
        indexed = data is not None and any(
            index.keys[0][0] in leading_fields for index in data.indexes.values()
        )
        if indexed:
            return ExplainResult(
                docs_examined=len(selected),
                keys_examined=len(selected),
                returned=returned,
                execution_time_ms=elapsed_ms,
                winning_stage="IXSCAN",
            )
        return ExplainResult(
            docs_examined=total,
            keys_examined=0,
            returned=returned,
            execution_time_ms=elapsed_ms,
            winning_stage="COLLSCAN",
        )


def _set_path(document: dict[str, Any], path: str, value: Any) -> None:
    *parents, leaf = path.split(".")
    target = document
    for part in parents:
        target = target.setdefault(part, {})
        if not isinstance(target, dict):
            raise StoreOperationError(f"cannot create field in non-document at {path}", code=28)
    target[leaf] = value


def _unset_path(document: dict[str, Any], path: str) -> None:
    *parents, leaf = path.split(".")
    target: Any = document
    for part in parents:
        target = target.get(part) if isinstance(target, dict) else None
        if target is None:
            return
    if isinstance(target, dict):
        target.pop(leaf, None)


__all__ = ["InMemoryDatabase", "InMemoryCollection"]
