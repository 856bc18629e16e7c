"""
Unit tests for tracer protocol and implementations.

Tests for:
- Tracer Protocol (runtime_checkable)
- NullTracer class
- OpenTelemetryTracer class
- MockTracer class
- create_tracer() factory function
- span_attributes() reduction to OpenTelemetry value types
"""

from __future__ import annotations

import contextlib
from pathlib import Path
from typing import Any

import pytest
from bson import ObjectId

from shadowmigrate.observability import (
    ATTR_RUN_ID,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
    span_attributes,
)


class TestTracerProtocol:
    """Tests for Tracer protocol."""

    def test_implementations_match_protocol(self):
        """Every shipped tracer satisfies the protocol."""
        assert isinstance(NullTracer(), Tracer)
        assert isinstance(OpenTelemetryTracer(__name__), Tracer)
        assert isinstance(MockTracer(), Tracer)

    def test_custom_implementation_matches_protocol(self):
        """Custom implementations can match the protocol."""

        class CustomTracer:
            def span(self, name: str, attributes: dict[str, Any] | None = None):
                return contextlib.nullcontext()

            @property
            def enabled(self) -> bool:
                return False

        assert isinstance(CustomTracer(), Tracer)


class TestNullTracer:
    """Tests for NullTracer."""

    def test_span_yields_none(self):
        with NullTracer().span("shadowmigrate.test", {"key": "value"}) as span:
            assert span is None

    def test_not_enabled(self):
        assert NullTracer().enabled is False


class TestOpenTelemetryTracer:
    """Tests for OpenTelemetryTracer."""

    def test_span_without_sdk_is_usable(self):
        """With no provider installed the API returns a non-recording span."""
        tracer = OpenTelemetryTracer(__name__)

        with tracer.span("shadowmigrate.test", {ATTR_RUN_ID: "run-1"}) as span:
            assert span is not None

    def test_enabled(self):
        assert OpenTelemetryTracer(__name__).enabled is True


class TestMockTracer:
    """Tests for MockTracer."""

    def test_records_names_and_attributes(self):
        tracer = MockTracer()

        with tracer.span("outer", {ATTR_RUN_ID: "run-1"}):
            with tracer.span("inner"):
                pass

        assert tracer.spans == [("outer", {ATTR_RUN_ID: "run-1"}), ("inner", None)]
        assert tracer.span_names == ["outer", "inner"]

    def test_clear(self):
        tracer = MockTracer()
        with tracer.span("outer"):
            pass

        tracer.clear()

        assert tracer.spans == []

    def test_attributes_of(self):
        tracer = MockTracer()
        with tracer.span("outer", {ATTR_RUN_ID: "run-1"}):
            with tracer.span("inner"):
                pass

        assert tracer.attributes_of("outer") == {ATTR_RUN_ID: "run-1"}
        assert tracer.attributes_of("inner") == {}
        with pytest.raises(KeyError):
            tracer.attributes_of("missing")


class TestSpanAttributes:
    """Tests for span_attributes()."""

    def test_primitives_pass_through(self):
        attributes = {"a": "x", "b": 3, "c": 0.5, "d": False}
        assert span_attributes(attributes) == attributes

    def test_none_values_are_dropped(self):
        assert span_attributes({"timeout": None, "key": "migration:products"}) == {
            "key": "migration:products"
        }
        assert span_attributes(None) == {}

    def test_other_values_become_strings(self):
        oid = ObjectId()

        cleaned = span_attributes({"id": oid, "path": Path("backups") / "a.json"})

        assert cleaned == {"id": str(oid), "path": str(Path("backups") / "a.json")}

    def test_sequences_are_reduced_item_by_item(self):
        oid = ObjectId()

        cleaned = span_attributes({"ids": (1, oid, None), "names": ["a", "b"]})

        assert cleaned == {"ids": [1, str(oid)], "names": ["a", "b"]}

    def test_otel_span_accepts_unclean_attributes(self):
        tracer = OpenTelemetryTracer(__name__)

        with tracer.span("shadowmigrate.test", {"id": ObjectId(), "timeout": None}) as span:
            assert span is not None


class TestCreateTracer:
    """Tests for create_tracer()."""

    def test_enabled_returns_otel_tracer(self):
        assert isinstance(create_tracer(__name__, enable_tracing=True), OpenTelemetryTracer)

    def test_disabled_returns_null_tracer(self):
        assert isinstance(create_tracer(__name__, enable_tracing=False), NullTracer)
