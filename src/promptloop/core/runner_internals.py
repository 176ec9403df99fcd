"""
Loop state, per-call dependencies and result helpers shared by runner mixins.
"""

from __future__ import annotations

import inspect
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Awaitable, Callable

from ..llms.types import Message, Provider, ToolDefinition, Usage
from ..tools.output import SummaryMode
from ..tools.registry import ToolsRegistry
from .continuation import Continuation
from .events import Events
from .executors import ToolExecutor
from .policy import Policy
from .serialization import utc_now
from .stream import RunnerStreamEvent
from .telemetry import Instrumenter
from .token_counter import TokenCounter
from .types import (
    PendingToolConfirmation,
    PendingToolExecution,
    RunResult,
    ToolAuthorizationTrace,
    ToolCallRecord,
    ToolExecutionTrace,
    TurnTrace,
)

ToolNameResolver = Callable[[str], "str | None"]
EventCallback = Callable[[RunnerStreamEvent], "Awaitable[None] | None"]


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def default_tool_alias(name: str) -> str:
    """Map a dotted tool name such as `files.read` to `files_read`."""
    return name.replace(".", "_")


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass(slots=True)
class _LoopState:
    """Mutable state owned by one run or resume call."""

    run_id: str
    started_at: datetime
    max_turns: int
    messages: list[Message]
    model: str | None
    options: dict[str, Any]
    tools: list[ToolDefinition] | None
    tools_enabled: bool
    max_tool_output_bytes: int
    max_tool_calls_per_turn: int | None
    fix_empty_final: bool
    fix_empty_final_user_text: str
    fix_empty_final_disable_tools: bool
    context: dict[str, Any] = field(default_factory=dict)
    turn: int = 0
    continuation_id: str | None = None
    prior_duration_ms: float = 0.0
    clock_started: float = field(default_factory=time.perf_counter)
    empty_final_fixup_attempted: bool = False
    any_tool_calls_seen: bool = False
    tool_calls_record: list[ToolCallRecord] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    per_turn_usage: list[Usage] = field(default_factory=list)
    turn_traces: list[TurnTrace] = field(default_factory=list)
    final_message: Message | None = None
    stop_reason: str | None = None

    @property
    def duration_ms(self) -> float:
        return round(self.prior_duration_ms + (time.perf_counter() - self.clock_started) * 1000.0, 3)

    def put_record(self, record: ToolCallRecord) -> None:
        """Append `record`, replacing an earlier record for the same call."""
        for index, existing in enumerate(self.tool_calls_record):
            if existing.tool_call_id == record.tool_call_id:
                self.tool_calls_record[index] = record
                return
        self.tool_calls_record.append(record)

    def record_usage(self, usage: Usage | None) -> None:
        if usage is None:
            return
        self.per_turn_usage.append(usage)
        self.usage = self.usage + usage


@dataclass(slots=True)
class _TurnScratch:
    """Trace material collected while a turn is in flight."""

    turn_number: int
    started_at: datetime = field(default_factory=utc_now)
    clock_started: float = field(default_factory=time.perf_counter)
    stop_reason: str | None = None
    usage: Usage | None = None
    tool_calls_count: int = 0
    ignored_tool_call_ids: list[str] = field(default_factory=list)
    authorizations: list[ToolAuthorizationTrace] = field(default_factory=list)
    executions: list[ToolExecutionTrace] = field(default_factory=list)

    @classmethod
    def reopen(cls, trace: TurnTrace) -> "_TurnScratch":
        """Continue collecting into a paused turn's trace."""
        return cls(
            turn_number=trace.turn_number,
            started_at=trace.started_at,
            clock_started=time.perf_counter() - trace.duration_ms / 1000.0,
            stop_reason=trace.stop_reason,
            usage=trace.usage,
            tool_calls_count=trace.tool_calls_count,
            ignored_tool_call_ids=list(trace.ignored_tool_call_ids),
            authorizations=list(trace.authorizations),
            executions=list(trace.executions),
        )

    def close(self, *, pause_reason: str | None = None) -> TurnTrace:
        return TurnTrace(
            turn_number=self.turn_number,
            started_at=self.started_at,
            duration_ms=round((time.perf_counter() - self.clock_started) * 1000.0, 3),
            stop_reason=self.stop_reason,
            usage=self.usage,
            tool_calls_count=self.tool_calls_count,
            ignored_tool_call_ids=list(self.ignored_tool_call_ids),
            authorizations=list(self.authorizations),
            executions=list(self.executions),
            pause_reason=pause_reason,
        )


@dataclass(slots=True)
class _RunDeps:
    """Collaborators injected for one call; defaults are built fresh per call."""

    provider: Provider
    tools: ToolsRegistry
    policy: Policy
    executor: ToolExecutor
    events: Events
    instrumenter: Instrumenter
    token_counter: TokenCounter | None
    context_window: int | None
    reserved_output_tokens: int
    summary_mode: SummaryMode
    tool_name_resolver: ToolNameResolver | None


class RunnerInternalsMixin:
    """Result assembly, continuation snapshots and turn bookkeeping."""

    def _store_trace(self, state: _LoopState, trace: TurnTrace) -> None:
        for index, existing in enumerate(state.turn_traces):
            if existing.turn_number == trace.turn_number:
                state.turn_traces[index] = trace
                return
        state.turn_traces.append(trace)

    def _build_result(
        self,
        state: _LoopState,
        *,
        continuation: Continuation | None = None,
        pending_confirmations: list[PendingToolConfirmation] | None = None,
        pending_executions: list[PendingToolExecution] | None = None,
    ) -> RunResult:
        ended_at = utc_now()
        return RunResult(
            run_id=state.run_id,
            started_at=state.started_at,
            ended_at=ended_at,
            duration_ms=state.duration_ms,
            messages=list(state.messages),
            final_message=state.final_message,
            turns=state.turn,
            stop_reason=state.stop_reason or "end_turn",
            usage=state.usage,
            per_turn_usage=list(state.per_turn_usage),
            tool_calls_made=list(state.tool_calls_record),
            turn_traces=list(state.turn_traces),
            continuation=continuation,
            pending_tool_confirmations=list(pending_confirmations or []),
            pending_tool_executions=list(pending_executions or []),
        )

    def _snapshot(
        self,
        state: _LoopState,
        *,
        pause_reason: str,
        parent_continuation_id: str | None,
        pending_tool_calls: list[Any] | None = None,
        pending_decisions: dict[str, Any] | None = None,
        pending_tool_executions: list[PendingToolExecution] | None = None,
        buffered_tool_results: dict[str, Any] | None = None,
        summary_mode: SummaryMode = "safe",
    ) -> Continuation:
        return Continuation(
            run_id=state.run_id,
            continuation_id=new_id("cont"),
            parent_continuation_id=parent_continuation_id,
            started_at=state.started_at,
            duration_ms=state.duration_ms,
            turn=state.turn,
            max_turns=state.max_turns,
            messages=list(state.messages),
            model=state.model,
            options=dict(state.options),
            tools=None if state.tools is None else list(state.tools),
            tools_enabled=state.tools_enabled,
            pause_reason=pause_reason,
            empty_final_fixup_attempted=state.empty_final_fixup_attempted,
            any_tool_calls_seen=state.any_tool_calls_seen,
            tool_calls_record=list(state.tool_calls_record),
            aggregated_usage=state.usage,
            per_turn_usage=list(state.per_turn_usage),
            turn_traces=list(state.turn_traces),
            pending_tool_calls=list(pending_tool_calls or []),
            pending_decisions=dict(pending_decisions or {}),
            pending_tool_executions=list(pending_tool_executions or []),
            buffered_tool_results=dict(buffered_tool_results or {}),
            max_tool_output_bytes=state.max_tool_output_bytes,
            max_tool_calls_per_turn=state.max_tool_calls_per_turn,
            fix_empty_final=state.fix_empty_final,
            fix_empty_final_user_text=state.fix_empty_final_user_text,
            fix_empty_final_disable_tools=state.fix_empty_final_disable_tools,
            summary_mode=summary_mode,
            context_attributes=dict(state.context),
        )

    @staticmethod
    def _state_from_continuation(
        continuation: Continuation,
        *,
        context: dict[str, Any] | None,
        max_turns: int | None,
    ) -> _LoopState:
        return _LoopState(
            run_id=continuation.run_id,
            started_at=continuation.started_at,
            max_turns=continuation.max_turns if max_turns is None else max_turns,
            messages=list(continuation.messages),
            model=continuation.model,
            options=dict(continuation.options),
            tools=None if continuation.tools is None else list(continuation.tools),
            tools_enabled=continuation.tools_enabled,
            max_tool_output_bytes=continuation.max_tool_output_bytes,
            max_tool_calls_per_turn=continuation.max_tool_calls_per_turn,
            fix_empty_final=continuation.fix_empty_final,
            fix_empty_final_user_text=continuation.fix_empty_final_user_text,
            fix_empty_final_disable_tools=continuation.fix_empty_final_disable_tools,
            context=dict(continuation.context_attributes if context is None else context),
            turn=continuation.turn,
            continuation_id=continuation.continuation_id,
            prior_duration_ms=continuation.duration_ms,
            empty_final_fixup_attempted=continuation.empty_final_fixup_attempted,
            any_tool_calls_seen=continuation.any_tool_calls_seen,
            tool_calls_record=list(continuation.tool_calls_record),
            usage=continuation.aggregated_usage,
            per_turn_usage=list(continuation.per_turn_usage),
            turn_traces=list(continuation.turn_traces),
        )

    @staticmethod
    def _paused_turn_scratch(state: _LoopState) -> _TurnScratch:
        for trace in state.turn_traces:
            if trace.turn_number == state.turn:
                return _TurnScratch.reopen(trace)
        return _TurnScratch(turn_number=state.turn)

    @staticmethod
    def _with_tool_calls(message: Message, keep: list[Any]) -> Message:
        return replace(message, tool_calls=list(keep))
