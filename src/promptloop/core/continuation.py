"""
Paused-run snapshots and their versioned wire format.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..llms.types import JSONValue, Message, ToolCall, ToolDefinition, Usage
from ..tools.base import ToolResult
from ..tools.output import SummaryMode, summarize_tool_arguments
from .config import (
    SUMMARY_MODES,
    validate_max_turns,
    validate_tool_calls_per_turn,
    validate_tool_output_bytes,
)
from .errors import ContinuationFormatError, RunnerConfigurationError
from .policy import Decision, DecisionOutcome
from .serialization import (
    format_timestamp,
    json_safe,
    message_from_dict,
    message_to_dict,
    parse_timestamp,
    pending_execution_from_dict,
    pending_execution_to_dict,
    select_context_attributes,
    tool_call_from_dict,
    tool_call_record_from_dict,
    tool_call_record_to_dict,
    tool_call_to_dict,
    tool_result_from_dict,
    turn_trace_from_dict,
    turn_trace_to_dict,
    usage_from_dict,
)
from .types import (
    PAUSE_REASONS,
    PendingToolConfirmation,
    PendingToolExecution,
    ToolCallRecord,
    TurnTrace,
)

SCHEMA_VERSION = 1


@dataclass(frozen=True, slots=True)
class Continuation:
    """
    Everything needed to resume a paused run, possibly in another process.

    Exactly one of `pending_tool_calls` (with `pending_decisions`) or
    `pending_tool_executions` is populated, matching `pause_reason`.
    `pending_tool_calls` holds every call of the paused turn and
    `pending_decisions` the policy verdict for each. Every call that was not
    denied waits for confirmation, since one confirm-required call holds back
    the whole turn.

    `buffered_tool_results` holds external results received so far, plus the
    answers for calls denied in the paused turn. Those are appended to the
    transcript together, in call order, once every execution has a result.

    Continuations are never mutated. A resume that pauses again produces a
    new one whose `parent_continuation_id` points back here.
    """

    run_id: str
    continuation_id: str
    started_at: datetime
    duration_ms: float
    turn: int
    max_turns: int
    messages: list[Message]
    model: str | None
    options: dict[str, Any]
    tools: list[ToolDefinition] | None
    tools_enabled: bool
    pause_reason: str
    parent_continuation_id: str | None = None
    empty_final_fixup_attempted: bool = False
    any_tool_calls_seen: bool = False
    tool_calls_record: list[ToolCallRecord] = field(default_factory=list)
    aggregated_usage: Usage = field(default_factory=Usage)
    per_turn_usage: list[Usage] = field(default_factory=list)
    turn_traces: list[TurnTrace] = field(default_factory=list)
    pending_tool_calls: list[ToolCall] = field(default_factory=list)
    pending_decisions: dict[str, Decision] = field(default_factory=dict)
    pending_tool_executions: list[PendingToolExecution] = field(default_factory=list)
    buffered_tool_results: dict[str, ToolResult] = field(default_factory=dict)
    max_tool_output_bytes: int = 200_000
    max_tool_calls_per_turn: int | None = None
    fix_empty_final: bool = True
    fix_empty_final_user_text: str = "Please provide your final answer."
    fix_empty_final_disable_tools: bool = True
    summary_mode: SummaryMode = "safe"
    context_attributes: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def pending_tool_confirmations(self) -> list[PendingToolConfirmation]:
        pending = []
        for call in self.pending_tool_calls:
            decision = self.pending_decisions.get(call.id)
            if decision is None or decision.outcome is DecisionOutcome.DENY:
                continue
            pending.append(
                PendingToolConfirmation(
                    tool_call_id=call.id,
                    name=call.name,
                    arguments=dict(call.arguments),
                    reason=decision.reason,
                    arguments_summary=summarize_tool_arguments(call.arguments, mode=self.summary_mode),
                )
            )
        return pending

    @property
    def outstanding_tool_executions(self) -> list[PendingToolExecution]:
        """Pending executions that have no buffered result yet."""
        return [item for item in self.pending_tool_executions if item.tool_call_id not in self.buffered_tool_results]

    @property
    def awaiting_tool_confirmation(self) -> bool:
        return self.pause_reason == "awaiting_tool_confirmation"

    @property
    def awaiting_tool_results(self) -> bool:
        return self.pause_reason == "awaiting_tool_results"


class ContinuationCodec:
    """
    Versioned JSON-safe (de)serialization for `Continuation`.

    `load(dump(c)) == c` for every continuation produced by a paused run.
    Context attributes are only written for the keys the caller selects,
    each stringified and cut to a fixed byte budget.
    """

    SCHEMA_VERSION = SCHEMA_VERSION

    @staticmethod
    def dump(
        continuation: Continuation,
        *,
        include_traces: bool = True,
        context_keys: Any = (),
    ) -> dict[str, JSONValue]:
        if not isinstance(continuation, Continuation):
            raise TypeError(f"continuation must be a Continuation (got {type(continuation).__name__})")

        c = continuation
        payload: dict[str, JSONValue] = {
            "schema_version": SCHEMA_VERSION,
            "run_id": c.run_id,
            "continuation_id": c.continuation_id,
            "parent_continuation_id": c.parent_continuation_id,
            "started_at": format_timestamp(c.started_at),
            "duration_ms": float(c.duration_ms),
            "turn": c.turn,
            "max_turns": c.max_turns,
            "messages": [message_to_dict(message) for message in c.messages],
            "model": c.model,
            "options": json_safe(c.options),
            "tools": json_safe(c.tools),
            "tools_enabled": c.tools_enabled,
            "empty_final_fixup_attempted": c.empty_final_fixup_attempted,
            "any_tool_calls_seen": c.any_tool_calls_seen,
            "tool_calls_record": [tool_call_record_to_dict(record) for record in c.tool_calls_record],
            "aggregated_usage": c.aggregated_usage.to_dict(),
            "per_turn_usage": [usage.to_dict() for usage in c.per_turn_usage],
            "pause_reason": c.pause_reason,
            "pending_tool_calls": [tool_call_to_dict(call) for call in c.pending_tool_calls],
            "pending_decisions": {key: decision.to_dict() for key, decision in c.pending_decisions.items()},
            "pending_tool_executions": [pending_execution_to_dict(item) for item in c.pending_tool_executions],
            "buffered_tool_results": {key: json_safe(result.to_dict()) for key, result in c.buffered_tool_results.items()},
            "context_attributes": select_context_attributes(c.context_attributes, context_keys),
            "max_tool_output_bytes": c.max_tool_output_bytes,
            "max_tool_calls_per_turn": c.max_tool_calls_per_turn,
            "fix_empty_final": c.fix_empty_final,
            "fix_empty_final_user_text": c.fix_empty_final_user_text,
            "fix_empty_final_disable_tools": c.fix_empty_final_disable_tools,
            "summary_mode": c.summary_mode,
        }
        if include_traces:
            payload["turn_traces"] = [turn_trace_to_dict(trace) for trace in c.turn_traces]
        if not c.buffered_tool_results:
            del payload["buffered_tool_results"]
        return payload

    @staticmethod
    def dumps(continuation: Continuation, **kwargs: Any) -> str:
        return json.dumps(ContinuationCodec.dump(continuation, **kwargs), ensure_ascii=False)

    @staticmethod
    def load(payload: dict[str, Any] | str) -> Continuation:
        """
        Rebuild a `Continuation` from a dict or its JSON string.

        Raises:
            ContinuationFormatError: On invalid JSON, a missing or malformed
                field, an unknown pause reason, an out-of-range limit or an
                unsupported `schema_version`.
        """
        data = decode_payload(payload, what="continuation")
        check_schema_version(data)

        pause_reason = str(required_field(data, "pause_reason")).strip()
        if pause_reason not in PAUSE_REASONS:
            raise ContinuationFormatError(
                f"pause_reason must be one of: {', '.join(PAUSE_REASONS)} (got {pause_reason!r})"
            )

        try:
            run_id = str(required_field(data, "run_id"))
            if not run_id.strip():
                raise ContinuationFormatError("run_id is required")
            max_tool_calls = data.get("max_tool_calls_per_turn")
            decisions = required_field(data, "pending_decisions")
            if not isinstance(decisions, dict):
                raise TypeError("pending_decisions must be an object")
            buffered = data.get("buffered_tool_results") or {}
            if not isinstance(buffered, dict):
                raise TypeError("buffered_tool_results must be an object")
            tools = required_field(data, "tools")
            model = required_field(data, "model")

            continuation = Continuation(
                run_id=run_id,
                continuation_id=str(required_field(data, "continuation_id")),
                parent_continuation_id=data.get("parent_continuation_id"),
                started_at=parse_timestamp(required_field(data, "started_at")),
                duration_ms=float(required_field(data, "duration_ms")),
                turn=int(required_field(data, "turn")),
                max_turns=int(required_field(data, "max_turns")),
                messages=[message_from_dict(item) for item in required_list(data, "messages")],
                model=None if model is None else str(model),
                options=dict(required_field(data, "options")),
                tools=None if tools is None else list(tools),
                tools_enabled=bool(required_field(data, "tools_enabled")),
                empty_final_fixup_attempted=bool(required_field(data, "empty_final_fixup_attempted")),
                any_tool_calls_seen=bool(required_field(data, "any_tool_calls_seen")),
                tool_calls_record=[
                    tool_call_record_from_dict(item) for item in required_list(data, "tool_calls_record")
                ],
                aggregated_usage=usage_from_dict(data.get("aggregated_usage")),
                per_turn_usage=[usage_from_dict(item) for item in data.get("per_turn_usage") or []],
                turn_traces=[turn_trace_from_dict(item) for item in data.get("turn_traces") or []],
                pause_reason=pause_reason,
                pending_tool_calls=[tool_call_from_dict(item) for item in required_list(data, "pending_tool_calls")],
                pending_decisions={str(key): Decision.from_dict(value) for key, value in decisions.items()},
                pending_tool_executions=[
                    pending_execution_from_dict(item) for item in data.get("pending_tool_executions") or []
                ],
                buffered_tool_results={str(key): tool_result_from_dict(value) for key, value in buffered.items()},
                max_tool_output_bytes=int(required_field(data, "max_tool_output_bytes")),
                max_tool_calls_per_turn=None if max_tool_calls is None else int(max_tool_calls),
                fix_empty_final=bool(required_field(data, "fix_empty_final")),
                fix_empty_final_user_text=str(required_field(data, "fix_empty_final_user_text")),
                fix_empty_final_disable_tools=bool(required_field(data, "fix_empty_final_disable_tools")),
                summary_mode=_summary_mode(data.get("summary_mode", "safe")),
                context_attributes=dict(data.get("context_attributes") or {}),
            )
        except ContinuationFormatError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ContinuationFormatError(f"malformed continuation payload: {e}") from e

        check_limits(
            max_turns=continuation.max_turns,
            max_tool_output_bytes=continuation.max_tool_output_bytes,
            max_tool_calls_per_turn=continuation.max_tool_calls_per_turn,
        )
        _check_pending_state(continuation)
        return continuation


def decode_payload(payload: Any, *, what: str) -> dict[str, Any]:
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise ContinuationFormatError(f"{what} payload is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ContinuationFormatError(
            f"{what} payload must be a dict or JSON string (got {type(payload).__name__})"
        )
    return payload


def check_schema_version(data: dict[str, Any]) -> None:
    version = required_field(data, "schema_version")
    if isinstance(version, bool) or not isinstance(version, int):
        raise ContinuationFormatError(f"schema_version must be an integer (got {version!r})")
    if version != SCHEMA_VERSION:
        raise ContinuationFormatError(
            f"unsupported schema_version={version} (supported: {SCHEMA_VERSION})"
        )


def required_field(data: dict[str, Any], key: str) -> Any:
    if key not in data:
        raise ContinuationFormatError(f"missing required field: {key}")
    return data[key]


def required_list(data: dict[str, Any], key: str) -> list[Any]:
    value = required_field(data, key)
    if not isinstance(value, list):
        raise ContinuationFormatError(f"{key} must be a list")
    return value


def check_limits(
    *,
    max_tool_output_bytes: Any,
    max_turns: Any = 1,
    max_tool_calls_per_turn: Any = None,
) -> None:
    try:
        validate_max_turns(max_turns)
        validate_tool_output_bytes(max_tool_output_bytes)
        validate_tool_calls_per_turn(max_tool_calls_per_turn)
    except RunnerConfigurationError as e:
        raise ContinuationFormatError(str(e)) from e


def _summary_mode(value: Any) -> SummaryMode:
    if value not in SUMMARY_MODES:
        raise ContinuationFormatError(f"summary_mode must be one of: {', '.join(SUMMARY_MODES)} (got {value!r})")
    return value


def _check_pending_state(c: Continuation) -> None:
    if c.awaiting_tool_confirmation:
        if not c.pending_tool_calls or c.pending_tool_executions:
            raise ContinuationFormatError(
                "awaiting_tool_confirmation requires pending_tool_calls and no pending_tool_executions"
            )
        missing = [call.id for call in c.pending_tool_calls if call.id not in c.pending_decisions]
        if missing:
            raise ContinuationFormatError(f"pending_decisions missing for: {', '.join(missing)}")
    elif not c.pending_tool_executions or c.pending_tool_calls:
        raise ContinuationFormatError(
            "awaiting_tool_results requires pending_tool_executions and no pending_tool_calls"
        )
