from __future__ import annotations

import pytest

from fakes import ScriptedProvider, call, registry, reply, run_async
from promptloop.core import (
    AuthorizationRequiredEvent,
    ConfirmAllPolicy,
    DeferAllToolExecutor,
    DoneEvent,
    ErrorEvent,
    Events,
    MessageCompleteEvent,
    Prompt,
    Runner,
    RunnerConfig,
    TextDeltaEvent,
    ToolExecutionEndEvent,
    ToolExecutionRequiredEvent,
    ToolExecutionStartEvent,
    TurnEndEvent,
    TurnStartEvent,
)
from promptloop.llms import Message, Usage
from promptloop.tools import ToolResult


def _prompt(reg=None) -> Prompt:
    return Prompt(
        messages=[Message(role="user", content="hello")],
        tools=reg.definitions() if reg is not None else [],
    )


def test_stream_forwards_deltas_and_ends_with_one_done_event():
    provider = ScriptedProvider([reply("hello world", usage=Usage(input_tokens=3, output_tokens=2))], chunk_size=4)
    seen = []
    deltas = []
    events = Events().on_stream_delta(deltas.append)

    result = run_async(Runner().run_stream(_prompt(), provider, seen.append, events=events))

    assert result.text == "hello world"
    assert [type(event) for event in seen] == [
        TurnStartEvent,
        TextDeltaEvent,
        TextDeltaEvent,
        TextDeltaEvent,
        MessageCompleteEvent,
        TurnEndEvent,
        DoneEvent,
    ]
    assert "".join(event.delta for event in seen if isinstance(event, TextDeltaEvent)) == "hello world"
    assert deltas == ["hell", "o wo", "rld"]
    done = seen[-1]
    assert done.stop_reason == "end_turn"
    assert done.usage == Usage(input_tokens=3, output_tokens=2)
    assert sum(isinstance(event, DoneEvent) for event in seen) == 1


def test_stream_emits_tool_execution_events_per_call():
    reg = registry()
    provider = ScriptedProvider([reply("", call("c1", "add", {"a": 2, "b": 2})), reply("4")])
    seen = []

    async def on_event(event):
        seen.append(event)

    result = run_async(Runner().run_stream(_prompt(reg), provider, on_event, tools=reg))

    assert result.text == "4"
    start = next(event for event in seen if isinstance(event, ToolExecutionStartEvent))
    end = next(event for event in seen if isinstance(event, ToolExecutionEndEvent))
    assert start.tool_call_id == end.tool_call_id == "c1"
    assert start.arguments == {"a": 2, "b": 2}
    assert end.result.text == "4"
    assert end.error is False
    assert seen.index(start) < seen.index(end)
    assert [event.turn_number for event in seen if isinstance(event, TurnStartEvent)] == [1, 2]


def test_stream_pause_emits_authorization_required():
    reg = registry()
    provider = ScriptedProvider([reply("", call("c1", "add", {"a": 1, "b": 1})), reply("2")])
    seen = []

    paused = run_async(Runner().run_stream(_prompt(reg), provider, seen.append, tools=reg, policy=ConfirmAllPolicy()))

    assert paused.awaiting_tool_confirmation
    required = [event for event in seen if isinstance(event, AuthorizationRequiredEvent)]
    assert [item.tool_call_id for item in required[0].pending] == ["c1"]
    assert isinstance(seen[-1], DoneEvent)
    assert seen[-1].stop_reason == "awaiting_tool_confirmation"

    resumed_events = []
    resumed = run_async(
        Runner().resume_stream(paused.continuation, {"c1": "allow"}, provider, resumed_events.append, tools=reg)
    )

    assert resumed.text == "2"
    assert isinstance(resumed_events[0], ToolExecutionStartEvent)
    assert isinstance(resumed_events[-1], DoneEvent)
    assert resumed_events[-1].stop_reason == "end_turn"


def test_stream_deferred_pause_and_results_resume():
    reg = registry()
    provider = ScriptedProvider([reply("", call("c1", "echo", {"text": "x"})), reply("done")])
    seen = []

    paused = run_async(
        Runner().run_stream(_prompt(reg), provider, seen.append, tools=reg, executor=DeferAllToolExecutor())
    )

    required = [event for event in seen if isinstance(event, ToolExecutionRequiredEvent)]
    assert [item.tool_call_id for item in required[0].pending] == ["c1"]

    resumed_events = []
    resumed = run_async(
        Runner().resume_stream_with_tool_results(
            paused.continuation, {"c1": ToolResult.ok("external")}, provider, resumed_events.append, tools=reg
        )
    )

    assert resumed.text == "done"
    end = next(event for event in resumed_events if isinstance(event, ToolExecutionEndEvent))
    assert end.result.text == "external"


def test_stream_without_complete_message_ends_with_error():
    provider = ScriptedProvider([reply("partial")], complete_message=False)
    seen = []

    result = run_async(Runner().run_stream(_prompt(), provider, seen.append))

    assert result.stop_reason == "error"
    errors = [event for event in seen if isinstance(event, ErrorEvent)]
    assert "without a complete message" in str(errors[0].error)
    assert isinstance(seen[-1], DoneEvent)


def test_stream_max_turns_emits_error_event():
    reg = registry()
    provider = ScriptedProvider([reply("", call("c1", "echo", {"text": "x"}))])
    seen = []

    result = run_async(
        Runner(RunnerConfig(max_turns=1)).run_stream(_prompt(reg), provider, seen.append, tools=reg)
    )

    assert result.stop_reason == "max_turns"
    error = next(event for event in seen if isinstance(event, ErrorEvent))
    assert error.recoverable is False
    assert seen[-1].stop_reason == "max_turns"


class _Cancelled(Exception):
    pass


def test_stream_callback_exceptions_propagate():
    provider = ScriptedProvider([reply("hello")])

    def on_event(event):
        if isinstance(event, TextDeltaEvent):
            raise _Cancelled

    with pytest.raises(_Cancelled):
        run_async(Runner().run_stream(_prompt(), provider, on_event))
