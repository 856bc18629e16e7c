"""
Record transformation contract and migration definitions.

A migration is described by a ``MigrationDefinition``: the transformer that
turns one legacy record into one target record, the schema the result must
satisfy, the indexes the target collection needs, and the probes that must
stay fast. The orchestrator knows nothing about the rules inside the
transformer.

Transformers must be pure: the same input gives the same output, and they
perform no I/O. A transformer signals a bad record by raising
``TransformationError``; any other exception is treated the same way by the
batch processor.

Usage:
    >>> def to_v2(record):
    ...     return {"_id": record["_id"], "name": record["title"].strip()}
    >>>
    >>> class Named(BaseModel):
    ...     name: str
    >>>
    >>> transformer = ValidatingTransformer(to_v2, TargetSchema(Named))
    >>> transformer.transform({"_id": 1, "title": " Ring "})
    {'_id': 1, 'name': 'Ring'}
"""

from __future__ import annotations

import importlib
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ValidationError
from pydantic_core import ErrorDetails

from shadowmigrate.migration.exceptions import MigrationConfigError, TransformationError
from shadowmigrate.migration.models import IndexSpec, PerformanceProbe
from shadowmigrate.stores.interface import Document


@runtime_checkable
class RecordTransformer(Protocol):
    """
    Protocol for converting one source record into one target record.

    Example:
        >>> class UppercaseNames:
        ...     def transform(self, record: Document) -> Document:
        ...         return {**record, "name": record["name"].upper()}
    """

    def transform(self, record: Document) -> Document:
        """
        Convert a source record.

        Raises:
            TransformationError: If this record cannot be converted
        """
        ...


class TargetSchema:
    """
    Shape a target record must satisfy, declared as a pydantic model.

    Records are validated in strict mode: a string never passes for a number
    and a boolean never passes for an integer. Fields the model does not
    declare are ignored. Declare the record id with an alias, since pydantic
    keeps underscored names private.

    Example:
        >>> class Pricing(BaseModel):
        ...     basePrice: float
        >>>
        >>> class ProductV2(BaseModel):
        ...     id: int = Field(alias="_id")
        ...     name: str
        ...     pricing: Pricing
        >>>
        >>> TargetSchema(ProductV2).problems({"_id": 1, "name": "Ring", "pricing": {}})
        ["missing required field 'pricing.basePrice'"]
    """

    def __init__(self, model: type[BaseModel]) -> None:
        if not (isinstance(model, type) and issubclass(model, BaseModel)):
            raise MigrationConfigError(
                f"Target schema must be a pydantic model class, got {model!r}"
            )
        self._model = model

    @property
    def model(self) -> type[BaseModel]:
        return self._model

    def problems(self, record: Mapping[str, Any]) -> list[str]:
        """Return every missing or wrongly typed field, in the model's field order."""
        try:
            self._model.model_validate(dict(record), strict=True)
        except ValidationError as e:
            return [_describe_error(error) for error in e.errors()]
        return []

    def is_valid(self, record: Mapping[str, Any]) -> bool:
        return not self.problems(record)


def _describe_error(error: ErrorDetails) -> str:
    path = ".".join(str(part) for part in error["loc"])
    if error["type"] == "missing":
        return f"missing required field '{path}'"
    return f"field '{path}': {error['msg']}"


class ValidatingTransformer:
    """
    Wraps a plain function and checks its output against a target schema.

    Exceptions raised by the function and schema problems both surface as
    ``TransformationError`` naming the source record.

    Args:
        func: Pure function from source record to target record
        schema: Schema every output must satisfy (optional)
        id_field: Field identifying the source record in error reports
    """

    def __init__(
        self,
        func: Callable[[Document], Document],
        schema: TargetSchema | None = None,
        *,
        id_field: str = "_id",
    ) -> None:
        self._func = func
        self._schema = schema
        self._id_field = id_field

    def transform(self, record: Document) -> Document:
        source_id = record.get(self._id_field)
        try:
            result = self._func(record)
        except TransformationError:
            raise
        except Exception as e:
            raise TransformationError(source_id, f"{type(e).__name__}: {e}") from e

        if not isinstance(result, Mapping):
            raise TransformationError(
                source_id, f"transformer returned {type(result).__name__}, expected a document"
            )
        if self._schema is not None:
            problems = self._schema.problems(result)
            if problems:
                raise TransformationError(source_id, "; ".join(problems))
        return dict(result)


@dataclass(frozen=True)
class MigrationDefinition:
    """
    Static, versioned description of one schema migration.

    Attributes:
        name: Migration name (e.g. "products-v2")
        version: Definition version, recorded in the report
        transformer: Converts one source record into one target record
        target_schema: Fields the integrity gate checks on the sampled record
        indexes: Indexes ensured on the shadow collection, in order
        probes: Queries the performance gate times against the shadow collection
        description: Free text for operators
    """

    name: str
    version: str
    transformer: RecordTransformer
    target_schema: TargetSchema | None = None
    indexes: Sequence[IndexSpec] = field(default_factory=tuple)
    probes: Sequence[PerformanceProbe] = field(default_factory=tuple)
    description: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.transformer, RecordTransformer):
            raise MigrationConfigError(
                f"Migration {self.name!r}: transformer must provide transform(record)"
            )
        names = [spec.resolved_name for spec in self.indexes]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise MigrationConfigError(
                f"Migration {self.name!r} declares duplicate index names: {duplicates}"
            )
        object.__setattr__(self, "indexes", tuple(self.indexes))
        object.__setattr__(self, "probes", tuple(self.probes))


def load_definition(path: str) -> MigrationDefinition:
    """
    Import a migration definition from ``"package.module:attribute"``.

    The attribute may be a ``MigrationDefinition`` or a zero-argument
    callable returning one.

    Raises:
        MigrationConfigError: If the path cannot be resolved
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise MigrationConfigError(f"Definition path must be 'module:attribute', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise MigrationConfigError(f"Cannot import migration module {module_name!r}: {e}") from e

    target: Any = module
    for part in attribute.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise MigrationConfigError(f"{module_name!r} has no attribute {attribute!r}") from e

    if callable(target) and not isinstance(target, MigrationDefinition):
        target = target()
    if not isinstance(target, MigrationDefinition):
        raise MigrationConfigError(
            f"{path!r} resolved to {type(target).__name__}, expected MigrationDefinition"
        )
    return target


__all__ = [
    "RecordTransformer",
    "TargetSchema",
    "ValidatingTransformer",
    "MigrationDefinition",
    "load_definition",
]
