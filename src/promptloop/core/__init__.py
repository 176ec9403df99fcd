"""
Core runtime exports.
"""

from .config import RunnerConfig
from .continuation import Continuation, ContinuationCodec
from .errors import (
    ContextWindowExceededError,
    ContinuationFormatError,
    MaxTurnsExceededError,
    ResumeValidationError,
    RunnerConfigurationError,
    RunnerError,
)
from .events import Events
from .executors import (
    CompletedExecution,
    DeferAllToolExecutor,
    ExecutionBatch,
    ExecutionContext,
    ExecutionRequest,
    InlineToolExecutor,
    ToolExecutor,
    WorkerPoolToolExecutor,
)
from .policy import (
    AllowAllPolicy,
    ConfirmAllPolicy,
    Decision,
    DecisionOutcome,
    DenyAllPolicy,
    Policy,
    PolicyRule,
    RulePolicy,
)
from .runner import Runner
from .stream import (
    AuthorizationRequiredEvent,
    DoneEvent,
    ErrorEvent,
    MessageCompleteEvent,
    RunnerStreamEvent,
    TextDeltaEvent,
    ToolExecutionEndEvent,
    ToolExecutionRequiredEvent,
    ToolExecutionStartEvent,
    TurnEndEvent,
    TurnStartEvent,
)
from .telemetry import (
    InMemoryTelemetrySink,
    Instrumenter,
    NullTelemetrySink,
    OpenTelemetrySink,
    TelemetryEvent,
    TelemetrySink,
    TelemetrySpan,
)
from .token_counter import HeuristicTokenCounter, TokenCounter
from .tool_tasks import ToolTask, ToolTaskBatch, ToolTaskCodec, execute_tool_task_batch
from .types import (
    PAUSE_REASONS,
    PauseReason,
    PendingToolConfirmation,
    PendingToolExecution,
    Prompt,
    RunResult,
    RunTrace,
    ToolAuthorizationTrace,
    ToolCallRecord,
    ToolExecutionTrace,
    TurnTrace,
)

__all__ = [
    "Runner",
    "RunnerConfig",
    "Prompt",
    "RunResult",
    "RunTrace",
    "TurnTrace",
    "ToolAuthorizationTrace",
    "ToolExecutionTrace",
    "ToolCallRecord",
    "PauseReason",
    "PAUSE_REASONS",
    "PendingToolConfirmation",
    "PendingToolExecution",
    "Continuation",
    "ContinuationCodec",
    "ToolTask",
    "ToolTaskBatch",
    "ToolTaskCodec",
    "execute_tool_task_batch",
    "Policy",
    "Decision",
    "DecisionOutcome",
    "AllowAllPolicy",
    "DenyAllPolicy",
    "ConfirmAllPolicy",
    "PolicyRule",
    "RulePolicy",
    "ToolExecutor",
    "ExecutionRequest",
    "ExecutionContext",
    "ExecutionBatch",
    "CompletedExecution",
    "InlineToolExecutor",
    "WorkerPoolToolExecutor",
    "DeferAllToolExecutor",
    "Events",
    "TokenCounter",
    "HeuristicTokenCounter",
    "RunnerStreamEvent",
    "TurnStartEvent",
    "TextDeltaEvent",
    "MessageCompleteEvent",
    "ToolExecutionStartEvent",
    "ToolExecutionEndEvent",
    "AuthorizationRequiredEvent",
    "ToolExecutionRequiredEvent",
    "TurnEndEvent",
    "ErrorEvent",
    "DoneEvent",
    "RunnerError",
    "RunnerConfigurationError",
    "ContextWindowExceededError",
    "ResumeValidationError",
    "ContinuationFormatError",
    "MaxTurnsExceededError",
    "TelemetrySink",
    "TelemetryEvent",
    "TelemetrySpan",
    "NullTelemetrySink",
    "InMemoryTelemetrySink",
    "OpenTelemetrySink",
    "Instrumenter",
]
