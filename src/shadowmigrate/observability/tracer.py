"""
Span creation for migration components.

Components take an optional ``tracer`` and an ``enable_tracing`` flag and
resolve them once in ``__init__``:

    self._tracer = tracer or create_tracer(__name__, enable_tracing)

Each store call, batch and phase then runs inside ``self._tracer.span(...)``.
An orchestrator passes its own tracer down so a whole run shares one
implementation: OpenTelemetry in production, ``NullTracer`` with tracing
switched off, ``MockTracer`` in tests.
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator, Mapping
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from opentelemetry import trace

if TYPE_CHECKING:
    from opentelemetry.trace import Span
    from opentelemetry.util.types import AttributeValue

_PRIMITIVES = (str, bool, int, float)


@runtime_checkable
class Tracer(Protocol):
    """What components need from a tracer: named spans and an on/off flag."""

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        """Open a span named ``shadowmigrate.<component>.<operation>``."""
        ...

    @property
    def enabled(self) -> bool:
        """False when spans are discarded, so callers can skip building attributes."""
        ...


def span_attributes(attributes: Mapping[str, Any] | None) -> dict[str, AttributeValue]:
    """
    Reduce attributes to the value types OpenTelemetry accepts.

    ``None`` values are dropped. Anything else that is not a primitive, such
    as an ObjectId, a Path or an Enum, is recorded as its string form.
    Sequences keep their items, each reduced the same way.
    """
    cleaned: dict[str, AttributeValue] = {}
    for key, value in (attributes or {}).items():
        if value is None:
            continue
        if isinstance(value, _PRIMITIVES):
            cleaned[key] = value
        elif isinstance(value, list | tuple):
            cleaned[key] = [
                item if isinstance(item, _PRIMITIVES) else str(item)
                for item in value
                if item is not None
            ]
        else:
            cleaned[key] = str(value)
    return cleaned


class NullTracer:
    """Discards every span."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Spans through the OpenTelemetry API.

    Spans reach whatever tracer provider the host process installed. Without
    an SDK the API returns non-recording spans, so a migration run from the
    command line costs nothing extra. An exception leaving a span is recorded
    on it and marks it as an error.

    Args:
        tracer_name: Instrumentation scope, normally the component's ``__name__``
    """

    def __init__(self, tracer_name: str) -> None:
        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(
            name,
            attributes=span_attributes(attributes),
            record_exception=True,
            set_status_on_exception=True,
        )

    @property
    def enabled(self) -> bool:
        return True


class MockTracer:
    """
    Records spans in the order they were opened.

    ``spans`` holds ``(name, attributes)`` pairs with the attributes exactly as
    the component passed them.

    Example:
        >>> tracer = MockTracer()
        >>> await BackupManager(tmp_path, tracer=tracer).snapshot(products)
        >>> tracer.span_names
        ['shadowmigrate.backup.snapshot']
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, dict[str, Any] | None]] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        self.spans.append((name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def attributes_of(self, name: str) -> dict[str, Any]:
        """
        Attributes of the first span called ``name``.

        Raises:
            KeyError: If no such span was opened
        """
        for span_name, attributes in self.spans:
            if span_name == name:
                return dict(attributes or {})
        raise KeyError(name)

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """OpenTelemetry spans for ``name`` when enabled, otherwise a NullTracer."""
    if enable_tracing:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "span_attributes",
]
