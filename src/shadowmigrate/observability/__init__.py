"""
Observability utilities for shadowmigrate.

Tracing is composition-based: components take a ``Tracer`` and create spans
through it. Attribute keys shared by all components live in
:mod:`shadowmigrate.observability.attributes`.

Example:
    >>> from shadowmigrate.observability import create_tracer
    >>>
    >>> class MyComponent:
    ...     def __init__(self, tracer=None, enable_tracing: bool = True):
    ...         self._tracer = tracer or create_tracer(__name__, enable_tracing)
    ...         self._enable_tracing = self._tracer.enabled
"""

from shadowmigrate.observability.attributes import (
    ATTR_BACKUP_COLLECTION,
    ATTR_BACKUP_LOCATION,
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_COLLECTION,
    ATTR_INDEX_NAME,
    ATTR_LOCK_KEY,
    ATTR_MIGRATION_NAME,
    ATTR_MIGRATION_VERSION,
    ATTR_PHASE,
    ATTR_PROBE_NAME,
    ATTR_RECORD_COUNT,
    ATTR_RUN_ID,
    ATTR_SHADOW_COLLECTION,
    ATTR_SOURCE_COLLECTION,
)
from shadowmigrate.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
    span_attributes,
)

__all__ = [
    # Tracer protocol and implementations
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "span_attributes",
    # Attributes
    "ATTR_RUN_ID",
    "ATTR_MIGRATION_NAME",
    "ATTR_MIGRATION_VERSION",
    "ATTR_PHASE",
    "ATTR_SOURCE_COLLECTION",
    "ATTR_SHADOW_COLLECTION",
    "ATTR_BACKUP_COLLECTION",
    "ATTR_COLLECTION",
    "ATTR_BATCH_NUMBER",
    "ATTR_BATCH_SIZE",
    "ATTR_RECORD_COUNT",
    "ATTR_INDEX_NAME",
    "ATTR_PROBE_NAME",
    "ATTR_BACKUP_LOCATION",
    "ATTR_LOCK_KEY",
]
