from __future__ import annotations

import pytest

from promptloop.core import (
    Events,
    InMemoryTelemetrySink,
    Instrumenter,
    NullTelemetrySink,
    RunnerConfigurationError,
)
from promptloop.core.telemetry import json_safe_attributes
from promptloop.llms import Usage


def test_events_dispatch_in_registration_order():
    seen = []
    events = (
        Events()
        .on_turn_start(lambda turn: seen.append(("first", turn)))
        .on_turn_start(lambda turn: seen.append(("second", turn)))
        .on_tool_call(lambda name, args, call_id: seen.append((name, args, call_id)))
    )

    events.emit("turn_start", 1)
    events.emit("tool_call", "echo", {"text": "x"}, "c1")

    assert seen == [("first", 1), ("second", 1), ("echo", {"text": "x"}, "c1")]
    assert events.has_listeners("turn_start")
    assert not events.has_listeners("turn_end")


def test_unknown_hooks_are_rejected():
    with pytest.raises(RunnerConfigurationError, match="Unknown event hook"):
        Events().on("turn_begin", print)
    with pytest.raises(RunnerConfigurationError):
        Events().emit("nope")


def test_failing_callback_is_reported_to_error_hook():
    errors = []
    after = []

    def broken(*args):
        raise RuntimeError("observer bug")

    events = Events().on_turn_end(broken).on_turn_end(lambda *args: after.append(args))
    events.on_error(lambda error, recoverable: errors.append((str(error), recoverable)))

    events.emit("turn_end", 2, "end_turn")

    assert errors == [("observer bug", True)]
    assert after == [(2, "end_turn")]


def test_failing_error_callback_ends_that_emission():
    calls = []

    def broken_error_hook(error, recoverable):
        calls.append("broken")
        raise RuntimeError("error hook bug")

    events = Events().on_error(broken_error_hook).on_error(lambda *args: calls.append("second"))

    events.emit("error", ValueError("x"), False)

    assert calls == ["broken"]


def test_instrument_records_ok_and_error_spans():
    sink = InMemoryTelemetrySink()
    instrumenter = Instrumenter(sink)

    with instrumenter.instrument("promptloop.turn", {"turn_number": 1}) as span:
        span["usage"] = Usage(input_tokens=2)

    with pytest.raises(KeyError):
        with instrumenter.instrument("promptloop.llm.call"):
            raise KeyError("missing")

    [ok] = sink.spans("promptloop.turn")
    assert ok["status"] == "ok"
    assert ok["attributes"]["turn_number"] == 1
    assert ok["attributes"]["usage"]["input_tokens"] == 2
    assert "duration_ms" in ok["attributes"]

    [failed] = sink.spans("promptloop.llm.call")
    assert failed["status"] == "error"
    assert failed["error"].startswith("KeyError")


def test_publish_count_and_observe():
    sink = InMemoryTelemetrySink()
    instrumenter = Instrumenter(sink)

    instrumenter.publish("promptloop.pause", {"pause_reason": "awaiting_tool_results", "ids": ("c1",)})
    instrumenter.count("promptloop.tool_calls", 3, attributes={"tool": "echo"})
    instrumenter.observe("promptloop.latency_ms", 12.5)

    [event] = sink.events("promptloop.pause")
    assert event.attributes == {"pause_reason": "awaiting_tool_results", "ids": ["c1"]}
    assert sink.counters()[0]["value"] == 3
    assert sink.histograms()[0]["value"] == 12.5
    assert sink.names() == ["promptloop.pause"]


class _BrokenSink(NullTelemetrySink):
    def record_event(self, event):
        raise RuntimeError("backend down")

    def start_span(self, name, *, attributes=None):
        raise RuntimeError("backend down")

    def increment_counter(self, name, value=1, *, attributes=None):
        raise RuntimeError("backend down")


def test_sink_failures_never_reach_the_caller():
    instrumenter = Instrumenter(_BrokenSink())

    instrumenter.publish("promptloop.resume")
    instrumenter.count("promptloop.runs")
    with instrumenter.instrument("promptloop.run") as span:
        span["ok"] = True


def test_json_safe_attributes_stringifies_unknown_values():
    class Opaque:
        def __str__(self):
            return "opaque"

    assert json_safe_attributes({"a": Opaque(), 1: {"b": (1, None)}}) == {"a": "opaque", "1": {"b": [1, None]}}
    assert json_safe_attributes(None) == {}
