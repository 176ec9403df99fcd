from __future__ import annotations

import json

import pytest

from fakes import ScriptedProvider, call, registry, reply, run_async
from promptloop.core import (
    ConfirmAllPolicy,
    ContinuationCodec,
    ContinuationFormatError,
    DeferAllToolExecutor,
    Prompt,
    Runner,
    RunnerConfig,
)
from promptloop.llms import Message, ToolCall, Usage
from promptloop.tools import ToolResult


def _prompt(reg) -> Prompt:
    return Prompt(
        system_prompt="sys",
        messages=[Message(role="user", content=[{"type": "text", "text": "hello"}])],
        tools=reg.definitions(),
        options={"model": "m", "temperature": 0.5},
    )


def _confirm_pause(context=None):
    reg = registry()
    provider = ScriptedProvider(
        [
            reply(
                "thinking",
                call("c1", "echo", {"text": "é"}),
                ToolCall.from_raw(id="c2", name="add", raw_arguments="[1, 2]"),
                usage=Usage(input_tokens=11, output_tokens=4, cache_read_tokens=2),
            )
        ]
    )
    return run_async(
        Runner().run(_prompt(reg), provider, tools=reg, policy=ConfirmAllPolicy(), context=context or {})
    ).continuation


def _results_pause():
    reg = registry()
    provider = ScriptedProvider(
        [reply("", call("c1", "echo", {"text": "x"}), call("c2", "echo", {"text": "y"})), reply("ok")]
    )
    paused = run_async(Runner().run(_prompt(reg), provider, tools=reg, executor=DeferAllToolExecutor()))
    partial = run_async(
        Runner().resume_with_tool_results(
            paused.continuation, {"c1": ToolResult.ok("one")}, provider, tools=reg, allow_partial=True
        )
    )
    return partial.continuation


def test_confirmation_continuation_round_trips():
    continuation = _confirm_pause()

    payload = ContinuationCodec.dump(continuation)
    restored = ContinuationCodec.load(payload)

    assert restored == continuation
    assert restored.pending_tool_calls[1].arguments_parse_error == "not_an_object"
    assert restored.aggregated_usage == Usage(input_tokens=11, output_tokens=4, cache_read_tokens=2)
    assert [item.tool_call_id for item in restored.pending_tool_confirmations] == ["c1"]


def test_results_continuation_round_trips_through_json_text():
    continuation = _results_pause()

    restored = ContinuationCodec.load(ContinuationCodec.dumps(continuation))

    assert restored == continuation
    assert restored.buffered_tool_results == {"c1": ToolResult.ok("one")}
    assert [item.tool_call_id for item in restored.outstanding_tool_executions] == ["c2"]
    assert restored.parent_continuation_id is not None


def test_dump_is_plain_json():
    payload = ContinuationCodec.dump(_confirm_pause())

    assert json.loads(json.dumps(payload)) == payload
    assert payload["schema_version"] == 1
    assert payload["pause_reason"] == "awaiting_tool_confirmation"
    assert payload["started_at"].endswith("Z")
    assert len(payload["started_at"].split(".")[1]) == len("000000Z")
    assert "buffered_tool_results" not in payload


def test_traces_can_be_left_out():
    continuation = _confirm_pause()

    payload = ContinuationCodec.dump(continuation, include_traces=False)
    restored = ContinuationCodec.load(payload)

    assert "turn_traces" not in payload
    assert restored.turn_traces == []
    assert restored.messages == continuation.messages


def test_context_attributes_are_opt_in_and_truncated():
    continuation = _confirm_pause(context={"tenant": "acme", "blob": "x" * 1_000, "secret": "s3cr3t"})

    assert ContinuationCodec.dump(continuation)["context_attributes"] == {}

    selected = ContinuationCodec.dump(continuation, context_keys=["tenant", "blob", "missing"])["context_attributes"]
    assert selected["tenant"] == "acme"
    assert len(selected["blob"].encode("utf-8")) == 200
    assert "secret" not in selected
    assert "missing" not in selected


@pytest.mark.parametrize("version", [0, 2, "1", True])
def test_unsupported_schema_versions_are_rejected(version):
    payload = ContinuationCodec.dump(_confirm_pause())
    payload["schema_version"] = version

    with pytest.raises(ContinuationFormatError):
        ContinuationCodec.load(payload)


def test_malformed_payloads_are_rejected():
    payload = ContinuationCodec.dump(_confirm_pause())

    with pytest.raises(ContinuationFormatError, match="not valid JSON"):
        ContinuationCodec.load("{broken")
    with pytest.raises(ContinuationFormatError):
        ContinuationCodec.load(["not", "a", "dict"])

    missing = dict(payload)
    del missing["messages"]
    with pytest.raises(ContinuationFormatError, match="messages"):
        ContinuationCodec.load(missing)

    bad_reason = dict(payload, pause_reason="sleeping")
    with pytest.raises(ContinuationFormatError, match="pause_reason"):
        ContinuationCodec.load(bad_reason)

    bad_role = dict(payload, messages=[{"role": "robot", "content": "hi"}])
    with pytest.raises(ContinuationFormatError):
        ContinuationCodec.load(bad_role)


def test_pending_state_must_match_pause_reason():
    payload = ContinuationCodec.dump(_confirm_pause())

    no_calls = dict(payload, pending_tool_calls=[])
    with pytest.raises(ContinuationFormatError, match="requires pending_tool_calls"):
        ContinuationCodec.load(no_calls)

    no_decisions = dict(payload, pending_decisions={})
    with pytest.raises(ContinuationFormatError, match="pending_decisions missing"):
        ContinuationCodec.load(no_decisions)

    wrong_reason = dict(payload, pause_reason="awaiting_tool_results")
    with pytest.raises(ContinuationFormatError, match="requires pending_tool_executions"):
        ContinuationCodec.load(wrong_reason)


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("max_tool_output_bytes", 5),
        ("max_turns", -3),
        ("max_tool_calls_per_turn", 0),
        ("summary_mode", "verbose"),
    ],
)
def test_out_of_range_limits_are_rejected(key, value):
    payload = ContinuationCodec.dump(_confirm_pause())

    with pytest.raises(ContinuationFormatError, match=key):
        ContinuationCodec.load(dict(payload, **{key: value}))


def test_confirmation_summaries_follow_the_run_summary_mode():
    reg = registry()
    provider = ScriptedProvider([reply("", call("c1", "echo", {"text": "secret"}))])
    paused = run_async(
        Runner(RunnerConfig(summary_mode="debug")).run(_prompt(reg), provider, tools=reg, policy=ConfirmAllPolicy())
    )

    [pending] = paused.pending_tool_confirmations
    assert pending.arguments_summary == '{"text": "secret"}'

    loaded = ContinuationCodec.load(ContinuationCodec.dumps(paused.continuation))
    assert loaded.summary_mode == "debug"
    assert loaded.pending_tool_confirmations == paused.pending_tool_confirmations

    safe = _confirm_pause()
    assert safe.summary_mode == "safe"
    assert all("é" not in item.arguments_summary for item in safe.pending_tool_confirmations)

    legacy = ContinuationCodec.dump(paused.continuation)
    del legacy["summary_mode"]
    assert ContinuationCodec.load(legacy).summary_mode == "safe"
