"""
Unit tests for transformers, target schemas and migration definitions.
"""

from datetime import UTC, datetime

import pytest
from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field

from shadowmigrate.migration import (
    IndexSpec,
    MigrationConfigError,
    MigrationDefinition,
    RecordTransformer,
    TargetSchema,
    TransformationError,
    ValidatingTransformer,
    load_definition,
)
from tests.fixtures import V2_SCHEMA, legacy_to_v2, make_product


class TestTargetSchema:
    """Tests for required-field checks."""

    def test_valid_record_has_no_problems(self) -> None:
        record = legacy_to_v2(make_product(1))
        assert V2_SCHEMA.problems(record) == []
        assert V2_SCHEMA.is_valid(record)

    def test_missing_nested_field(self) -> None:
        record = legacy_to_v2(make_product(1))
        del record["pricing"]["basePrice"]

        assert V2_SCHEMA.problems(record) == ["missing required field 'pricing.basePrice'"]

    def test_wrong_type_is_described(self) -> None:
        record = legacy_to_v2(make_product(1))
        record["pricing"]["basePrice"] = "12"

        assert V2_SCHEMA.problems(record) == [
            "field 'pricing.basePrice': Input should be a valid number"
        ]

    def test_values_are_not_coerced(self) -> None:
        record = legacy_to_v2(make_product(1))
        record["_id"] = "1"

        assert V2_SCHEMA.problems(record) == ["field '_id': Input should be a valid integer"]

    def test_float_accepts_int_but_not_bool(self) -> None:
        class Priced(BaseModel):
            price: float

        schema = TargetSchema(Priced)

        assert schema.is_valid({"price": 12})
        assert not schema.is_valid({"price": True})

    def test_union_and_arbitrary_types(self) -> None:
        class Stamped(BaseModel):
            model_config = ConfigDict(arbitrary_types_allowed=True)

            id: ObjectId = Field(alias="_id")
            createdAt: datetime | str

        schema = TargetSchema(Stamped)

        assert schema.is_valid({"_id": ObjectId(), "createdAt": datetime.now(UTC)})
        assert schema.is_valid({"_id": ObjectId(), "createdAt": "2024-01-01"})
        assert not schema.is_valid({"_id": "64b7f0c2a1", "createdAt": "2024-01-01"})
        assert not schema.is_valid({"_id": ObjectId(), "createdAt": 5})

    def test_undeclared_fields_are_ignored(self) -> None:
        record = {**legacy_to_v2(make_product(1)), "legacyNotes": ["kept as is"]}
        assert V2_SCHEMA.is_valid(record)

    def test_every_problem_is_reported(self) -> None:
        problems = V2_SCHEMA.problems({"_id": 1, "name": 5})

        assert problems == [
            "field 'name': Input should be a valid string",
            "missing required field 'category'",
            "missing required field 'sku'",
            "missing required field 'pricing'",
        ]

    def test_model_class_is_required(self) -> None:
        with pytest.raises(MigrationConfigError, match="pydantic model"):
            TargetSchema({"name": str})  # type: ignore[arg-type]


class TestValidatingTransformer:
    """Tests for the function wrapper."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(ValidatingTransformer(legacy_to_v2), RecordTransformer)

    def test_transforms_valid_record(self) -> None:
        transformer = ValidatingTransformer(legacy_to_v2, V2_SCHEMA)

        result = transformer.transform(make_product(7))

        assert result["_id"] == 7
        assert result["name"] == "Product 7"
        assert result["pricing"]["basePrice"] == 17.0

    def test_transformation_error_passes_through(self) -> None:
        transformer = ValidatingTransformer(legacy_to_v2, V2_SCHEMA)

        with pytest.raises(TransformationError) as exc_info:
            transformer.transform(make_product(3, broken=True))

        assert exc_info.value.source_id == 3

    def test_unexpected_exception_is_wrapped(self) -> None:
        def explode(record: dict) -> dict:
            raise KeyError("title")

        with pytest.raises(TransformationError, match="KeyError") as exc_info:
            ValidatingTransformer(explode).transform({"_id": 9})

        assert exc_info.value.source_id == 9
        assert isinstance(exc_info.value.__cause__, KeyError)

    def test_non_document_result_rejected(self) -> None:
        def listify(record: dict) -> list:
            return [record]

        transformer = ValidatingTransformer(listify)  # type: ignore[arg-type]

        with pytest.raises(TransformationError, match="expected a document"):
            transformer.transform({"_id": 1})

    def test_schema_problems_rejected(self) -> None:
        transformer = ValidatingTransformer(lambda record: {"_id": record["_id"]}, V2_SCHEMA)

        with pytest.raises(TransformationError, match="missing required field 'name'"):
            transformer.transform({"_id": 1})

    def test_custom_id_field(self) -> None:
        def explode(record: dict) -> dict:
            raise ValueError("nope")

        transformer = ValidatingTransformer(explode, id_field="sku")

        with pytest.raises(TransformationError) as exc_info:
            transformer.transform({"_id": 1, "sku": "SKU-1"})

        assert exc_info.value.source_id == "SKU-1"


class TestMigrationDefinition:
    """Tests for definition validation and loading."""

    def test_transformer_must_implement_protocol(self) -> None:
        with pytest.raises(MigrationConfigError, match="transform"):
            MigrationDefinition(
                name="bad",
                version="1",
                transformer=legacy_to_v2,  # type: ignore[arg-type]
            )

    def test_duplicate_index_names_rejected(self) -> None:
        with pytest.raises(MigrationConfigError, match="duplicate"):
            MigrationDefinition(
                name="dup",
                version="1",
                transformer=ValidatingTransformer(legacy_to_v2),
                indexes=[
                    IndexSpec(keys=(("sku", 1),)),
                    IndexSpec(keys=(("sku", -1),), name="sku_1"),
                ],
            )

    def test_sequences_are_frozen_to_tuples(self) -> None:
        definition = MigrationDefinition(
            name="v2",
            version="1",
            transformer=ValidatingTransformer(legacy_to_v2),
            indexes=[IndexSpec(keys=(("sku", 1),))],
        )
        assert isinstance(definition.indexes, tuple)
        assert definition.probes == ()

    def test_load_definition_from_factory(self) -> None:
        definition = load_definition("tests.fixtures.products:simple_definition")

        assert isinstance(definition, MigrationDefinition)
        assert definition.name == "products-v2-test"

    @pytest.mark.parametrize(
        "path,message",
        [
            ("tests.fixtures.products", "module:attribute"),
            ("tests.fixtures.nowhere:definition", "Cannot import"),
            ("tests.fixtures.products:nothing", "no attribute"),
            ("tests.fixtures.products:CATEGORIES", "expected MigrationDefinition"),
        ],
    )
    def test_load_definition_errors(self, path: str, message: str) -> None:
        with pytest.raises(MigrationConfigError, match=message):
            load_definition(path)
