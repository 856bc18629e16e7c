"""
Collection store interface and core data structures.

Migration components never talk to a database driver directly. They are
handed ``Collection`` objects, each bound to one collection name and resolved
once when the orchestrator is built, and the operations here are the only
ones the migration needs.

This module provides:
- Collection: Abstract base class for a named document collection
- Database: Abstract base class that resolves collections by name
- InsertOutcome / WriteFailure: Result of an unordered bulk insert
- IndexCreation: Result of ensuring one index
- ExplainResult: Execution statistics for a probe query
- StoreError and subclasses: Storage failures mapped from driver errors
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

Document = dict[str, Any]
"""A single stored record."""

Filter = Mapping[str, Any]
"""Query filter in MongoDB query syntax."""

SortSpec = Sequence[tuple[str, int]]
"""Ordered ``(field, direction)`` pairs; direction is 1 or -1."""

IndexKeys = Sequence[tuple[str, int | str]]
"""Ordered ``(field, direction-or-type)`` pairs, e.g. ``("name", "text")``."""

# Server error codes the stores map onto typed errors.
NAMESPACE_NOT_FOUND = 26
NAMESPACE_EXISTS = 48
INDEX_ALREADY_EXISTS = 68
INDEX_OPTIONS_CONFLICT = 85
INDEX_KEY_SPECS_CONFLICT = 86
DUPLICATE_KEY = 11000


class StoreError(Exception):
    """Base exception for storage failures."""


class StoreOperationError(StoreError):
    """
    A store operation was rejected.

    Attributes:
        code: Server error code, if the backend reported one
        collection: Collection the operation targeted
    """

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        collection: str | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.collection = collection
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.collection:
            parts.append(f"collection={self.collection}")
        if self.code is not None:
            parts.append(f"code={self.code}")
        return " ".join(parts)


class CollectionNotFoundError(StoreOperationError):
    """The collection an operation needs does not exist."""

    def __init__(self, collection: str) -> None:
        super().__init__(
            f"Collection '{collection}' does not exist",
            code=NAMESPACE_NOT_FOUND,
            collection=collection,
        )


class CollectionExistsError(StoreOperationError):
    """A rename target name is already taken."""

    def __init__(self, collection: str, target: str) -> None:
        self.target = target
        super().__init__(
            f"Cannot rename '{collection}' to '{target}': target exists",
            code=NAMESPACE_EXISTS,
            collection=collection,
        )


class DuplicateRecordError(StoreOperationError):
    """A write violated the primary key or a unique index."""

    def __init__(self, message: str, *, collection: str | None = None) -> None:
        super().__init__(message, code=DUPLICATE_KEY, collection=collection)


class IndexConflictError(StoreOperationError):
    """
    An index with the same name or keys exists with a different definition.

    Attributes:
        index_name: Name of the index that could not be created
    """

    def __init__(
        self,
        index_name: str,
        message: str,
        *,
        code: int = INDEX_OPTIONS_CONFLICT,
        collection: str | None = None,
    ) -> None:
        self.index_name = index_name
        super().__init__(message, code=code, collection=collection)


@dataclass(frozen=True)
class WriteFailure:
    """
    One record rejected by a bulk insert.

    Attributes:
        index: Position of the record in the submitted batch
        source_id: Identifier of the rejected record, if it had one
        message: Reason reported by the store
        code: Server error code, if any
    """

    index: int
    source_id: Any
    message: str
    code: int | None = None


@dataclass(frozen=True)
class InsertOutcome:
    """
    Result of a bulk insert.

    With an unordered insert every record is attempted, so ``inserted_count``
    plus ``len(failures)`` equals the number of records submitted.
    """

    inserted_count: int
    failures: tuple[WriteFailure, ...] = ()

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def all_inserted(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class IndexCreation:
    """
    Result of ensuring one index.

    Attributes:
        name: Name of the index
        created: False when an identical index already existed
    """

    name: str
    created: bool


@dataclass(frozen=True)
class ExplainResult:
    """
    Execution statistics for one query.

    Any field the backend does not report is None.
    """

    docs_examined: int | None = None
    keys_examined: int | None = None
    returned: int | None = None
    execution_time_ms: float | None = None
    winning_stage: str | None = None

    @property
    def used_index(self) -> bool:
        return self.winning_stage == "IXSCAN"


def default_index_name(keys: IndexKeys) -> str:
    """
    Generate the server's default name for an index key pattern.

    Example:
        >>> default_index_name([("category", 1), ("metadata.featured", -1)])
        'category_1_metadata.featured_-1'
    """
    return "_".join(f"{field}_{direction}" for field, direction in keys)


class Collection(ABC):
    """
    Abstract base class for a named document collection.

    A handle stays bound to its name: after ``rename`` the handle refers to
    whatever next occupies the original name, not to the moved data.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Name this handle is bound to."""

    @abstractmethod
    async def exists(self) -> bool:
        """Return whether a collection currently exists under this name."""

    @abstractmethod
    def find(
        self,
        filter: Filter | None = None,
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[Document]:
        """
        Iterate over matching documents.

        Args:
            filter: Query filter (None matches everything)
            sort: Sort specification
            limit: Maximum number of documents (None or 0 for no limit)

        Yields:
            Matching documents in sort order
        """

    @abstractmethod
    async def find_one(self, filter: Filter | None = None) -> Document | None:
        """Return the first matching document or None."""

    @abstractmethod
    async def count(self, filter: Filter | None = None) -> int:
        """Return the number of matching documents (0 if the collection is absent)."""

    @abstractmethod
    async def insert_one(self, record: Document) -> Any:
        """
        Insert one document.

        Returns:
            The inserted document's ``_id``

        Raises:
            DuplicateRecordError: If the write violates a unique constraint
        """

    @abstractmethod
    async def insert_many(
        self,
        records: Sequence[Document],
        *,
        ordered: bool = False,
    ) -> InsertOutcome:
        """
        Insert documents in one round trip.

        With ``ordered=False`` a rejected record does not prevent the rest of
        the batch from landing. Per-record rejections are reported in the
        outcome rather than raised.
        """

    @abstractmethod
    async def update_one(self, filter: Filter, update: Mapping[str, Any]) -> int:
        """
        Apply an update document (``$set`` / ``$unset``) to the first match.

        Returns:
            Number of documents matched (0 or 1)
        """

    @abstractmethod
    async def delete_one(self, filter: Filter) -> int:
        """Delete the first match and return the number deleted."""

    @abstractmethod
    async def rename(self, new_name: str) -> None:
        """
        Rename the collection currently under this handle's name.

        Raises:
            CollectionNotFoundError: If nothing exists under this name
            CollectionExistsError: If ``new_name`` is already taken
        """

    @abstractmethod
    async def drop(self) -> None:
        """Drop the collection. Dropping a missing collection is a no-op."""

    @abstractmethod
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
        """
        Ensure an index exists.

        Returns:
            IndexCreation with ``created=False`` if an identical index existed

        Raises:
            IndexConflictError: If a different index holds the name or keys
        """

    @abstractmethod
    async def explain(
        self,
        filter: Filter | None = None,
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> ExplainResult:
        """Return execution statistics for the query."""


class Database(ABC):
    """Abstract base class resolving ``Collection`` handles by name."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Database name."""

    @abstractmethod
    def collection(self, name: str) -> Collection:
        """Return a handle bound to ``name``. Does not create anything."""

    @abstractmethod
    async def list_collection_names(self) -> list[str]:
        """Return the names of all existing collections."""

    @abstractmethod
    async def ping(self) -> None:
        """
        Check connectivity.

        Raises:
            StoreError: If the backend is unreachable
        """

    async def close(self) -> None:  # noqa: B027 - optional hook
        """Release backend resources."""
