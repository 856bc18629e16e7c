"""
Unit tests for query-language evaluation in the in-memory store.

Tests cover:
- Equality on top-level and dotted paths
- Implicit array traversal
- Comparison, membership and existence operators
- Logical combinators
- Unsupported operators
- Multi-key sorting with BSON type ordering
"""

from datetime import UTC, datetime

import pytest

from shadowmigrate.stores import StoreOperationError
from shadowmigrate.stores._query import matches, resolve_path, sort_documents, values_equal

PRODUCT = {
    "_id": 1,
    "category": "rings",
    "pricing": {"basePrice": 250.0},
    "inventory": {"available": True},
    "metadata": {"tags": ["gold", "premium-stone"]},
    "variants": [{"sku": "A-1", "size": 6}, {"sku": "A-2", "size": 7}],
    "createdAt": datetime(2024, 1, 1, tzinfo=UTC),
}


class TestResolvePath:
    """Tests for dotted path resolution."""

    def test_top_level_field(self) -> None:
        assert resolve_path(PRODUCT, "category") == ["rings"]

    def test_nested_field(self) -> None:
        assert resolve_path(PRODUCT, "pricing.basePrice") == [250.0]

    def test_missing_field_yields_nothing(self) -> None:
        assert resolve_path(PRODUCT, "pricing.salePrice") == []

    def test_array_of_documents_is_traversed(self) -> None:
        assert resolve_path(PRODUCT, "variants.sku") == ["A-1", "A-2"]

    def test_array_position(self) -> None:
        assert resolve_path(PRODUCT, "variants.1.size") == [7]


class TestMatches:
    """Tests for filter matching."""

    def test_empty_filter_matches_everything(self) -> None:
        assert matches(PRODUCT, None)
        assert matches(PRODUCT, {})

    def test_equality(self) -> None:
        assert matches(PRODUCT, {"category": "rings"})
        assert not matches(PRODUCT, {"category": "necklaces"})

    def test_dotted_equality(self) -> None:
        assert matches(PRODUCT, {"inventory.available": True})

    def test_boolean_never_equals_number(self) -> None:
        assert not matches(PRODUCT, {"inventory.available": 1})

    def test_array_element_match(self) -> None:
        assert matches(PRODUCT, {"metadata.tags": "gold"})

    def test_missing_field_matches_none(self) -> None:
        assert matches(PRODUCT, {"discontinued": None})

    def test_range_operators(self) -> None:
        assert matches(PRODUCT, {"pricing.basePrice": {"$gte": 100, "$lte": 1000}})
        assert not matches(PRODUCT, {"pricing.basePrice": {"$gt": 250}})

    def test_comparison_across_types_never_matches(self) -> None:
        assert not matches(PRODUCT, {"category": {"$gt": 5}})

    def test_datetime_comparison(self) -> None:
        cutoff = datetime(2025, 1, 1, tzinfo=UTC)
        assert matches(PRODUCT, {"createdAt": {"$lte": cutoff}})

    def test_in_and_nin(self) -> None:
        assert matches(PRODUCT, {"category": {"$in": ["rings", "earrings"]}})
        assert matches(PRODUCT, {"category": {"$nin": ["necklaces"]}})

    def test_in_requires_array(self) -> None:
        with pytest.raises(StoreOperationError):
            matches(PRODUCT, {"category": {"$in": "rings"}})

    def test_exists(self) -> None:
        assert matches(PRODUCT, {"pricing": {"$exists": True}})
        assert matches(PRODUCT, {"stone": {"$exists": False}})

    def test_ne(self) -> None:
        assert matches(PRODUCT, {"category": {"$ne": "necklaces"}})

    def test_logical_combinators(self) -> None:
        assert matches(PRODUCT, {"$or": [{"category": "necklaces"}, {"_id": 1}]})
        assert not matches(PRODUCT, {"$and": [{"category": "rings"}, {"_id": 2}]})
        assert matches(PRODUCT, {"$nor": [{"category": "necklaces"}]})

    def test_unsupported_operator_raises(self) -> None:
        with pytest.raises(StoreOperationError, match="unsupported"):
            matches(PRODUCT, {"$text": {"$search": "ring"}})

        with pytest.raises(StoreOperationError, match="unsupported"):
            matches(PRODUCT, {"name": {"$regex": "^R"}})


class TestValuesEqual:
    """Tests for BSON-style equality."""

    def test_int_equals_float(self) -> None:
        assert values_equal(1, 1.0)

    def test_bool_is_not_int(self) -> None:
        assert not values_equal(True, 1)

    def test_string_is_not_int(self) -> None:
        assert not values_equal("1", 1)


class TestSortDocuments:
    """Tests for multi-key sorting."""

    def test_no_sort_keeps_order(self) -> None:
        documents = [{"_id": 2}, {"_id": 1}]
        assert sort_documents(documents, None) == documents

    def test_multi_key_sort(self) -> None:
        documents = [
            {"_id": 1, "featured": False, "price": 10},
            {"_id": 2, "featured": True, "price": 30},
            {"_id": 3, "featured": True, "price": 20},
        ]
        ordered = sort_documents(documents, [("featured", -1), ("price", 1)])
        assert [d["_id"] for d in ordered] == [3, 2, 1]

    def test_missing_values_sort_first_ascending(self) -> None:
        documents = [{"_id": 1, "price": 5}, {"_id": 2}]
        ordered = sort_documents(documents, [("price", 1)])
        assert [d["_id"] for d in ordered] == [2, 1]

    def test_numbers_sort_before_strings(self) -> None:
        documents = [{"_id": "a"}, {"_id": 3}]
        ordered = sort_documents(documents, [("_id", 1)])
        assert [d["_id"] for d in ordered] == [3, "a"]

    def test_bad_direction_raises(self) -> None:
        with pytest.raises(StoreOperationError):
            sort_documents([{"_id": 1}], [("_id", 2)])
