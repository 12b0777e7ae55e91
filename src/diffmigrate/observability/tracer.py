"""
Tracers injected into the engine components.

Analyzers, detectors, executors, resolvers and stores never import
OpenTelemetry themselves. Each takes a `Tracer` and opens spans through
it, so tests can swap in a recording tracer and production runs can turn
spans off with `enable_tracing=False`.

Example:
    >>> from diffmigrate.observability import create_tracer
    >>>
    >>> class OfficeSync:
    ...     def __init__(self, tracer: Tracer | None = None, enable_tracing: bool = True):
    ...         self._tracer = tracer or create_tracer(__name__, enable_tracing)
    ...
    ...     async def sync(self, entity_type: str) -> None:
    ...         with self._tracer.span("diffmigrate.sync.run", {"entity.type": entity_type}):
    ...             await self._copy(entity_type)
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from opentelemetry import trace

if TYPE_CHECKING:
    from opentelemetry.trace import Span

SpanAttributes = dict[str, Any]


@runtime_checkable
class Tracer(Protocol):
    """
    What a component needs from a tracer.

    Implementations:
    - NullTracer: tracing switched off
    - OpenTelemetryTracer: spans go to the globally configured provider
    - MockTracer: spans are recorded in memory for assertions
    """

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Span | None]:
        """
        Open a span around a unit of work.

        Args:
            name: Dotted span name, e.g. "diffmigrate.executor.run_batch"
            attributes: Span attributes, keyed by the ATTR_* constants

        Returns:
            Context manager yielding the span, or None when nothing is recorded
        """
        ...

    @property
    def enabled(self) -> bool:
        """
        Whether spans are actually recorded.

        Components use this to skip computing expensive attributes.
        """
        ...


class NullTracer:
    """
    Tracer used when `enable_tracing=False`.

    Example:
        >>> tracer = NullTracer()
        >>> with tracer.span("diffmigrate.detector.detect_changes"):
        ...     pass
        >>> tracer.enabled
        False
    """

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> Generator[None, None, None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Tracer backed by `opentelemetry.trace.get_tracer`.

    Spans are exported by whatever TracerProvider the host application
    configured. Without one the OpenTelemetry API hands out
    non-recording spans. Exceptions leaving a span are recorded on it and
    re-raised.

    Args:
        tracer_name: Instrumentation scope, usually the module `__name__`
    """

    def __init__(self, tracer_name: str) -> None:
        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(
            name,
            attributes=attributes or {},
            record_exception=True,
        )

    @property
    def enabled(self) -> bool:
        return True


class MockTracer:
    """
    Recording tracer for tests.

    Spans are kept in opening order, including spans whose body raised.

    Example:
        >>> tracer = MockTracer()
        >>> with tracer.span("diffmigrate.checkpoint.save", {"entity.type": "offices"}):
        ...     pass
        >>> tracer.span_names
        ['diffmigrate.checkpoint.save']
        >>> tracer.attributes_for("diffmigrate.checkpoint.save")
        [{'entity.type': 'offices'}]
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, SpanAttributes | None]] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> Generator[None, None, None]:
        self.spans.append((name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        # Components compute their attributes only for enabled tracers
        return True

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def attributes_for(self, name: str) -> list[SpanAttributes]:
        """Attributes of every recorded span called `name`, in order."""
        return [attributes or {} for span_name, attributes in self.spans if span_name == name]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(
    name: str,
    enable_tracing: bool = True,
) -> Tracer:
    """
    Build the tracer a component uses when none was injected.

    Args:
        name: Instrumentation scope, usually the module `__name__`
        enable_tracing: False returns a NullTracer

    Returns:
        OpenTelemetryTracer or NullTracer
    """
    if enable_tracing:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "SpanAttributes",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
]
