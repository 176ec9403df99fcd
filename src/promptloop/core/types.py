"""
Runner value types: prompts, pending work, traces and run results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal

from ..llms.types import Message, ToolDefinition, Usage

if TYPE_CHECKING:
    from .continuation import Continuation

PauseReason = Literal["awaiting_tool_confirmation", "awaiting_tool_results"]
PAUSE_REASONS: tuple[str, ...] = ("awaiting_tool_confirmation", "awaiting_tool_results")

STOP_MAX_TURNS = "max_turns"
STOP_ERROR = "error"


@dataclass(frozen=True, slots=True)
class Prompt:
    """
    Already-built prompt handed to the runner.

    `options["model"]` names the model; every other option is forwarded to
    the provider unchanged.
    """

    system_prompt: str | None = None
    messages: list[Message] = field(default_factory=list)
    tools: list[ToolDefinition] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def model(self) -> str | None:
        model = self.options.get("model")
        return None if model is None else str(model)

    @property
    def provider_options(self) -> dict[str, Any]:
        return {key: value for key, value in self.options.items() if key != "model"}

    def initial_messages(self) -> list[Message]:
        messages = list(self.messages)
        if self.system_prompt:
            messages.insert(0, Message(role="system", content=self.system_prompt))
        return messages


@dataclass(frozen=True, slots=True)
class PendingToolConfirmation:
    """A tool call waiting for an allow/deny decision from a human."""

    tool_call_id: str
    name: str
    arguments: dict[str, Any]
    reason: str = ""
    arguments_summary: str = ""


@dataclass(frozen=True, slots=True)
class PendingToolExecution:
    """A tool call whose result will be produced outside this process."""

    tool_call_id: str
    name: str
    executed_name: str
    arguments: dict[str, Any]
    arguments_summary: str = ""
    source: str = "native"


@dataclass(frozen=True, slots=True)
class ToolCallRecord:
    """
    Per-call record kept on the run.

    `error` carries the denial, parse-error or ignore reason for calls that
    did not run, and the result text for calls that failed.
    """

    name: str
    tool_call_id: str
    executed_name: str | None = None
    arguments: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    pending: bool = False
    deferred: bool = False
    external: bool = False


@dataclass(frozen=True, slots=True)
class ToolAuthorizationTrace:
    tool_call_id: str
    name: str
    outcome: str
    reason: str = ""
    stage: str = "policy"


@dataclass(frozen=True, slots=True)
class ToolExecutionTrace:
    tool_call_id: str
    name: str
    executed_name: str
    source: str = "native"
    duration_ms: float = 0.0
    error: bool = False
    arguments_summary: str = ""
    result_summary: str = ""
    external: bool = False


@dataclass(frozen=True, slots=True)
class TurnTrace:
    """
    Audit record for one turn.

    A resume replaces the paused turn's trace with a copy that has the
    confirmation and execution records appended.
    """

    turn_number: int
    started_at: datetime
    duration_ms: float = 0.0
    stop_reason: str | None = None
    usage: Usage | None = None
    tool_calls_count: int = 0
    ignored_tool_call_ids: list[str] = field(default_factory=list)
    authorizations: list[ToolAuthorizationTrace] = field(default_factory=list)
    executions: list[ToolExecutionTrace] = field(default_factory=list)
    pause_reason: str | None = None


@dataclass(frozen=True, slots=True)
class RunTrace:
    run_id: str
    started_at: datetime
    duration_ms: float
    stop_reason: str
    usage: Usage
    turns: list[TurnTrace] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class RunResult:
    """
    Outcome of a run or resume call.

    Attributes:
        run_id: Stable identifier shared by a run and all of its resumes.
        messages: Full transcript, system message included.
        final_message: Last assistant message, or `None` when the run
            ended before the model produced one.
        turns: Number of LLM calls made across the run and its resumes.
        stop_reason: Provider stop reason, `max_turns`, `error`, or the
            pause reason when the run paused.
        continuation: Resumable state when paused, else `None`.
    """

    run_id: str
    started_at: datetime
    ended_at: datetime
    duration_ms: float
    messages: list[Message]
    final_message: Message | None
    turns: int
    stop_reason: str
    usage: Usage = field(default_factory=Usage)
    per_turn_usage: list[Usage] = field(default_factory=list)
    tool_calls_made: list[ToolCallRecord] = field(default_factory=list)
    turn_traces: list[TurnTrace] = field(default_factory=list)
    continuation: "Continuation | None" = None
    pending_tool_confirmations: list[PendingToolConfirmation] = field(default_factory=list)
    pending_tool_executions: list[PendingToolExecution] = field(default_factory=list)

    @property
    def text(self) -> str | None:
        return None if self.final_message is None else self.final_message.text

    @property
    def used_tools(self) -> bool:
        return bool(self.tool_calls_made)

    @property
    def max_turns_reached(self) -> bool:
        return self.stop_reason == STOP_MAX_TURNS

    @property
    def paused(self) -> bool:
        return self.continuation is not None

    @property
    def awaiting_tool_confirmation(self) -> bool:
        return self.paused and self.stop_reason == "awaiting_tool_confirmation"

    @property
    def awaiting_tool_results(self) -> bool:
        return self.paused and self.stop_reason == "awaiting_tool_results"

    @property
    def trace(self) -> RunTrace:
        return RunTrace(
            run_id=self.run_id,
            started_at=self.started_at,
            duration_ms=self.duration_ms,
            stop_reason=self.stop_reason,
            usage=self.usage,
            turns=list(self.turn_traces),
        )
