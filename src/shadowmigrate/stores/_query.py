"""
MongoDB query-language evaluation for the in-memory store.

Supports the subset of the query language the migration and its probes use:
dotted paths with implicit array traversal, comparison operators,
``$in``/``$nin``, ``$exists`` and the ``$and``/``$or``/``$nor`` combinators.
Anything else raises ``StoreOperationError`` instead of silently matching.
"""

from __future__ import annotations

import datetime
from collections.abc import Callable, Mapping
from typing import Any

from bson import ObjectId

from shadowmigrate.stores.interface import Document, Filter, SortSpec, StoreOperationError

BAD_VALUE = 2


def resolve_path(document: Any, path: str) -> list[Any]:
    """
    Collect every value reachable at a dotted path.

    Arrays of subdocuments are traversed implicitly, so ``"variants.sku"``
    yields the ``sku`` of every element. A missing path yields ``[]``.
    """
    return _lookup(document, path.split("."))


def _lookup(value: Any, parts: list[str]) -> list[Any]:
    if not parts:
        return [value]
    head, rest = parts[0], parts[1:]
    if isinstance(value, Mapping):
        if head in value:
            return _lookup(value[head], rest)
        return []
    if isinstance(value, list):
        if head.isdigit():
            position = int(head)
            return _lookup(value[position], rest) if position < len(value) else []
        found: list[Any] = []
        for item in value:
            if isinstance(item, Mapping):
                found.extend(_lookup(item, parts))
        return found
    return []


def _candidates(values: list[Any]) -> list[Any]:
    # An array field matches if the array itself or any element matches.
    expanded: list[Any] = []
    for value in values:
        expanded.append(value)
        if isinstance(value, list):
            expanded.extend(value)
    return expanded


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def values_equal(left: Any, right: Any) -> bool:
    """Compare with BSON semantics: booleans never equal numbers."""
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right) and not (
        isinstance(left, Mapping) and isinstance(right, Mapping)
    ):
        return False
    return bool(left == right)


def _comparable(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return True
    for kind in (str, datetime.datetime, ObjectId):
        if isinstance(left, kind) and isinstance(right, kind):
            return True
    return False


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[list[Any], Any], bool]:
    def check(values: list[Any], argument: Any) -> bool:
        return any(
            _comparable(candidate, argument) and op(candidate, argument)
            for candidate in _candidates(values)
        )

    return check


def _eq(values: list[Any], argument: Any) -> bool:
    if not values:
        return argument is None
    return any(values_equal(candidate, argument) for candidate in _candidates(values))


def _in(values: list[Any], argument: Any) -> bool:
    if not isinstance(argument, list | tuple):
        raise StoreOperationError("$in needs an array", code=BAD_VALUE)
    return any(_eq(values, option) for option in argument)


_OPERATORS: dict[str, Callable[[list[Any], Any], bool]] = {
    "$eq": _eq,
    "$ne": lambda values, argument: not _eq(values, argument),
    "$gt": _compare(lambda a, b: a > b),
    "$gte": _compare(lambda a, b: a >= b),
    "$lt": _compare(lambda a, b: a < b),
    "$lte": _compare(lambda a, b: a <= b),
    "$in": _in,
    "$nin": lambda values, argument: not _in(values, argument),
    "$exists": lambda values, argument: bool(values) == bool(argument),
}


def _is_operator_expression(condition: Any) -> bool:
    return (
        isinstance(condition, Mapping)
        and bool(condition)
        and all(isinstance(key, str) and key.startswith("$") for key in condition)
    )


def matches(document: Document, filter: Filter | None) -> bool:
    """
    Return whether a document satisfies a query filter.

    Raises:
        StoreOperationError: If the filter uses an unsupported operator
    """
    if not filter:
        return True
    for key, condition in filter.items():
        if key == "$and":
            if not all(matches(document, clause) for clause in condition):
                return False
        elif key == "$or":
            if not any(matches(document, clause) for clause in condition):
                return False
        elif key == "$nor":
            if any(matches(document, clause) for clause in condition):
                return False
        elif key.startswith("$"):
            raise StoreOperationError(f"unsupported query operator {key}", code=BAD_VALUE)
        elif not _matches_field(resolve_path(document, key), condition):
            return False
    return True


def _matches_field(values: list[Any], condition: Any) -> bool:
    if not _is_operator_expression(condition):
        return _eq(values, condition)
    for operator, argument in condition.items():
        check = _OPERATORS.get(operator)
        if check is None:
            raise StoreOperationError(f"unsupported query operator {operator}", code=BAD_VALUE)
        if not check(values, argument):
            return False
    return True


# BSON comparison order across types.
def _type_rank(value: Any) -> int:
    if value is None:
        return 0
    if _is_number(value):
        return 1
    if isinstance(value, str):
        return 2
    if isinstance(value, Mapping):
        return 3
    if isinstance(value, list):
        return 4
    if isinstance(value, bytes):
        return 5
    if isinstance(value, ObjectId):
        return 6
    if isinstance(value, bool):
        return 7
    if isinstance(value, datetime.datetime):
        return 8
    return 9


def _sort_key(document: Document, field: str, direction: int) -> tuple[int, Any]:
    values = resolve_path(document, field)
    if not values:
        value = None
    elif isinstance(values[0], list) and values[0]:
        # Arrays sort by their smallest element ascending, largest descending.
        elements = sorted(values[0], key=lambda item: _rankable(item))
        value = elements[0] if direction > 0 else elements[-1]
    else:
        value = values[0]
    return _rankable(value)


def _rankable(value: Any) -> tuple[int, Any]:
    rank = _type_rank(value)
    if rank == 0:
        return (rank, 0)
    if rank in (3, 4, 9):
        return (rank, repr(value))
    return (rank, value)


def sort_documents(documents: list[Document], sort: SortSpec | None) -> list[Document]:
    """Sort documents by a multi-key specification."""
    ordered = list(documents)
    if not sort:
        return ordered
    # Stable sorts applied from the least significant key.
    for field, direction in reversed(list(sort)):
        if direction not in (1, -1):
            raise StoreOperationError(
                f"bad sort direction for {field}: {direction}", code=BAD_VALUE
            )
        ordered.sort(key=lambda doc: _sort_key(doc, field, direction), reverse=direction < 0)
    return ordered
