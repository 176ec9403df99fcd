"""
Events delivered to `on_event` callbacks by the streaming runner entrypoints.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, TypeAlias

from ..llms.types import Message, Usage

if TYPE_CHECKING:
    from ..tools.base import ToolResult
    from .types import PendingToolConfirmation, PendingToolExecution


@dataclass(frozen=True, slots=True)
class TurnStartEvent:
    turn_number: int
    type: Literal["turn_start"] = "turn_start"


@dataclass(frozen=True, slots=True)
class TextDeltaEvent:
    delta: str
    type: Literal["text_delta"] = "text_delta"


@dataclass(frozen=True, slots=True)
class MessageCompleteEvent:
    message: Message
    type: Literal["message_complete"] = "message_complete"


@dataclass(frozen=True, slots=True)
class ToolExecutionStartEvent:
    tool_call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    type: Literal["tool_execution_start"] = "tool_execution_start"


@dataclass(frozen=True, slots=True)
class ToolExecutionEndEvent:
    tool_call_id: str
    name: str
    result: "ToolResult"
    error: bool = False
    type: Literal["tool_execution_end"] = "tool_execution_end"


@dataclass(frozen=True, slots=True)
class AuthorizationRequiredEvent:
    """The turn paused; `pending` lists the calls awaiting confirmation."""

    pending: list["PendingToolConfirmation"]
    type: Literal["authorization_required"] = "authorization_required"


@dataclass(frozen=True, slots=True)
class ToolExecutionRequiredEvent:
    """The turn paused; `pending` lists executions handed to an external worker."""

    pending: list["PendingToolExecution"]
    type: Literal["tool_execution_required"] = "tool_execution_required"


@dataclass(frozen=True, slots=True)
class TurnEndEvent:
    turn_number: int
    stop_reason: str | None = None
    type: Literal["turn_end"] = "turn_end"


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    error: BaseException
    recoverable: bool = False
    type: Literal["error"] = "error"


@dataclass(frozen=True, slots=True)
class DoneEvent:
    """Final event of every streaming call, emitted exactly once."""

    stop_reason: str
    usage: Usage = field(default_factory=Usage)
    type: Literal["done"] = "done"


RunnerStreamEvent: TypeAlias = (
    TurnStartEvent
    | TextDeltaEvent
    | MessageCompleteEvent
    | ToolExecutionStartEvent
    | ToolExecutionEndEvent
    | AuthorizationRequiredEvent
    | ToolExecutionRequiredEvent
    | TurnEndEvent
    | ErrorEvent
    | DoneEvent
)
