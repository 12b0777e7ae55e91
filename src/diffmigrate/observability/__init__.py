"""
Observability utilities for diffmigrate.

Provides the composition-based Tracer abstraction and the standard span
attribute names used by every engine component.

Example:
    >>> from diffmigrate.observability import create_tracer, ATTR_ENTITY_TYPE
    >>>
    >>> class MyComponent:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
    ...
    ...     async def run(self, entity_type: str) -> None:
    ...         with self._tracer.span("my_component.run", {ATTR_ENTITY_TYPE: entity_type}):
    ...             ...
"""

from diffmigrate.observability.attributes import (
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_CHANGE_COUNT,
    ATTR_CHECKPOINT_ID,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DB_TABLE,
    ATTR_DETECTION_STRATEGY,
    ATTR_DIFFERENTIAL_ID,
    ATTR_ENTITY_COUNT,
    ATTR_ENTITY_TYPE,
    ATTR_RECORD_COUNT,
    ATTR_RESOLUTION_STRATEGY,
    ATTR_RETRY_COUNT,
    ATTR_RUN_ID,
    ATTR_SESSION_ID,
)
from diffmigrate.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanAttributes,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracer
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "SpanAttributes",
    # Attributes
    "ATTR_BATCH_NUMBER",
    "ATTR_BATCH_SIZE",
    "ATTR_CHANGE_COUNT",
    "ATTR_CHECKPOINT_ID",
    "ATTR_DB_OPERATION",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_TABLE",
    "ATTR_DETECTION_STRATEGY",
    "ATTR_DIFFERENTIAL_ID",
    "ATTR_ENTITY_COUNT",
    "ATTR_ENTITY_TYPE",
    "ATTR_RECORD_COUNT",
    "ATTR_RESOLUTION_STRATEGY",
    "ATTR_RETRY_COUNT",
    "ATTR_RUN_ID",
    "ATTR_SESSION_ID",
]
