"""
Telemetry sinks and the instrumenter used by the runner.

The default sink is a no-op. `InMemoryTelemetrySink` captures everything for
tests and debugging, and `OpenTelemetrySink` can be used when
`opentelemetry-api` and `opentelemetry-sdk` are installed.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Protocol

from ..llms.types import JSONValue
from .serialization import json_safe

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TelemetryEvent:
    """
    Point-in-time telemetry event.

    Attributes:
        name: Event name.
        timestamp_ms: Epoch milliseconds at emission time.
        attributes: JSON-safe event attributes.
    """

    name: str
    timestamp_ms: int
    attributes: dict[str, JSONValue] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TelemetrySpan:
    """
    Started telemetry span.

    Attributes:
        name: Span name.
        started_at_ms: Span start timestamp.
        attributes: JSON-safe span attributes.
        native_span: Optional backend-native span object.
    """

    name: str
    started_at_ms: int
    attributes: dict[str, JSONValue] = field(default_factory=dict)
    native_span: Any = None


class TelemetrySink(Protocol):
    """Protocol implemented by telemetry backends."""

    def record_event(self, event: TelemetryEvent) -> None: ...

    def start_span(self, name: str, *, attributes: dict[str, JSONValue] | None = None) -> TelemetrySpan | None:
        """Start a span, or return `None` when the backend has no spans."""
        ...

    def end_span(
        self,
        span: TelemetrySpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        """End a span with `ok`/`error` status and final attributes."""
        ...

    def increment_counter(
        self,
        name: str,
        value: int = 1,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None: ...

    def record_histogram(
        self,
        name: str,
        value: float,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None: ...


@dataclass(slots=True)
class NullTelemetrySink:
    """No-op telemetry sink used as safe default."""

    def record_event(self, event: TelemetryEvent) -> None:
        return None

    def start_span(self, name: str, *, attributes: dict[str, JSONValue] | None = None) -> TelemetrySpan | None:
        return None

    def end_span(
        self,
        span: TelemetrySpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        return None

    def increment_counter(
        self,
        name: str,
        value: int = 1,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        return None

    def record_histogram(
        self,
        name: str,
        value: float,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        return None


@dataclass(slots=True)
class InMemoryTelemetrySink:
    """Test/debug telemetry sink that stores emitted measurements."""

    _events: list[TelemetryEvent] = field(default_factory=list)
    _spans_closed: list[dict[str, Any]] = field(default_factory=list)
    _counters: list[dict[str, Any]] = field(default_factory=list)
    _histograms: list[dict[str, Any]] = field(default_factory=list)

    def record_event(self, event: TelemetryEvent) -> None:
        self._events.append(event)

    def start_span(self, name: str, *, attributes: dict[str, JSONValue] | None = None) -> TelemetrySpan:
        return TelemetrySpan(name=name, started_at_ms=now_ms(), attributes=dict(attributes or {}))

    def end_span(
        self,
        span: TelemetrySpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        if span is None:
            return None
        self._spans_closed.append(
            {
                "name": span.name,
                "started_at_ms": span.started_at_ms,
                "ended_at_ms": now_ms(),
                "status": status,
                "error": error,
                "attributes": {**span.attributes, **dict(attributes or {})},
            }
        )
        return None

    def increment_counter(
        self,
        name: str,
        value: int = 1,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        self._counters.append(
            {"name": name, "value": int(value), "attributes": dict(attributes or {}), "timestamp_ms": now_ms()}
        )

    def record_histogram(
        self,
        name: str,
        value: float,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        self._histograms.append(
            {"name": name, "value": float(value), "attributes": dict(attributes or {}), "timestamp_ms": now_ms()}
        )

    def events(self, name: str | None = None) -> list[TelemetryEvent]:
        """Captured events, optionally filtered by name."""
        return [event for event in self._events if name is None or event.name == name]

    def spans(self, name: str | None = None) -> list[dict[str, Any]]:
        """Closed span records, optionally filtered by name."""
        return [span for span in self._spans_closed if name is None or span["name"] == name]

    def counters(self) -> list[dict[str, Any]]:
        return list(self._counters)

    def histograms(self) -> list[dict[str, Any]]:
        return list(self._histograms)

    def names(self) -> list[str]:
        """Names of every captured event and closed span, in capture order per kind."""
        return [event.name for event in self._events] + [span["name"] for span in self._spans_closed]


@dataclass(slots=True)
class OpenTelemetrySink:
    """
    OpenTelemetry sink using the global tracer/meter providers.

    This class performs lazy imports so promptloop can run without OTel installed.
    """

    tracer_name: str = "promptloop.core.runner"
    meter_name: str = "promptloop.core.runner"

    _tracer: Any = field(default=None, init=False, repr=False)
    _meter: Any = field(default=None, init=False, repr=False)
    _counters: dict[str, Any] = field(default_factory=dict, init=False, repr=False)
    _histograms: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    def _ensure_clients(self) -> None:
        if self._tracer is not None and self._meter is not None:
            return
        try:
            from opentelemetry import metrics, trace
        except ImportError as e:
            raise RuntimeError(
                "OpenTelemetrySink requires 'opentelemetry-api'/'opentelemetry-sdk'"
            ) from e

        self._tracer = trace.get_tracer(self.tracer_name)
        self._meter = metrics.get_meter(self.meter_name)

    def _attr(self, value: Mapping[str, JSONValue] | None) -> dict[str, Any]:
        return {str(key): _to_attr(item) for key, item in (value or {}).items()}

    def record_event(self, event: TelemetryEvent) -> None:
        self.increment_counter(
            "promptloop.events",
            value=1,
            attributes={"event_name": event.name, **event.attributes},
        )

    def start_span(self, name: str, *, attributes: dict[str, JSONValue] | None = None) -> TelemetrySpan | None:
        self._ensure_clients()
        span = self._tracer.start_span(name=name)
        attr = self._attr(attributes)
        if attr:
            span.set_attributes(attr)
        return TelemetrySpan(
            name=name,
            started_at_ms=now_ms(),
            attributes=dict(attributes or {}),
            native_span=span,
        )

    def end_span(
        self,
        span: TelemetrySpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        if span is None or span.native_span is None:
            return None
        from opentelemetry.trace import Status, StatusCode

        native = span.native_span
        attr = self._attr({**span.attributes, **dict(attributes or {})})
        if attr:
            native.set_attributes(attr)
        if error:
            native.record_exception(Exception(error))
        if status == "ok":
            native.set_status(Status(StatusCode.OK))
        else:
            native.set_status(Status(StatusCode.ERROR, error or status))
        native.end()

    def increment_counter(
        self,
        name: str,
        value: int = 1,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        self._ensure_clients()
        counter = self._counters.get(name)
        if counter is None:
            counter = self._meter.create_counter(name)
            self._counters[name] = counter
        counter.add(int(value), attributes=self._attr(attributes))

    def record_histogram(
        self,
        name: str,
        value: float,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        self._ensure_clients()
        histogram = self._histograms.get(name)
        if histogram is None:
            histogram = self._meter.create_histogram(name)
            self._histograms[name] = histogram
        histogram.record(float(value), attributes=self._attr(attributes))


class Instrumenter:
    """
    Structured instrumentation facade over a `TelemetrySink`.

    `instrument` wraps a block in a span whose payload the block may extend;
    `publish` records a point event. Sink failures are logged and never reach
    the caller, so a broken backend cannot fail a run. `Instrumenter()` with
    no sink is a no-op.
    """

    def __init__(self, sink: TelemetrySink | None = None) -> None:
        self.sink: TelemetrySink = sink or NullTelemetrySink()

    @contextmanager
    def instrument(self, name: str, payload: Mapping[str, Any] | None = None) -> Iterator[dict[str, Any]]:
        data: dict[str, Any] = dict(payload or {})
        started = time.perf_counter()
        span = self._start_span(name, data)
        try:
            yield data
        except BaseException as e:
            data["duration_ms"] = _elapsed_ms(started)
            self._end_span(span, status="error", error=f"{type(e).__name__}: {e}", attributes=data)
            raise
        data["duration_ms"] = _elapsed_ms(started)
        self._end_span(span, status="ok", attributes=data)

    def publish(self, name: str, payload: Mapping[str, Any] | None = None) -> None:
        try:
            self.sink.record_event(
                TelemetryEvent(name=name, timestamp_ms=now_ms(), attributes=json_safe_attributes(payload))
            )
        except Exception:
            logger.warning("Telemetry sink failed to record event %s", name, exc_info=True)

    def count(self, name: str, value: int = 1, *, attributes: Mapping[str, Any] | None = None) -> None:
        try:
            self.sink.increment_counter(name, value, attributes=json_safe_attributes(attributes))
        except Exception:
            logger.warning("Telemetry sink failed to increment counter %s", name, exc_info=True)

    def observe(self, name: str, value: float, *, attributes: Mapping[str, Any] | None = None) -> None:
        try:
            self.sink.record_histogram(name, value, attributes=json_safe_attributes(attributes))
        except Exception:
            logger.warning("Telemetry sink failed to record histogram %s", name, exc_info=True)

    def _start_span(self, name: str, data: dict[str, Any]) -> TelemetrySpan | None:
        try:
            return self.sink.start_span(name, attributes=json_safe_attributes(data))
        except Exception:
            logger.warning("Telemetry sink failed to start span %s", name, exc_info=True)
            return None

    def _end_span(
        self,
        span: TelemetrySpan | None,
        *,
        status: str,
        attributes: dict[str, Any],
        error: str | None = None,
    ) -> None:
        try:
            self.sink.end_span(span, status=status, error=error, attributes=json_safe_attributes(attributes))
        except Exception:
            logger.warning("Telemetry sink failed to end span", exc_info=True)


def now_ms() -> int:
    """Current Unix epoch time in milliseconds."""
    return int(time.time() * 1000)


def json_safe_attributes(value: Mapping[str, Any] | None) -> dict[str, JSONValue]:
    return {str(key): json_safe(item) for key, item in (value or {}).items()}


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 3)


def _to_attr(value: JSONValue) -> Any:
    """Convert JSON-safe values into OpenTelemetry attribute-compatible values."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, list):
        return tuple(_to_attr(item) for item in value)
    return str(value)
