"""
Hand-off format for deferred tool executions.

A paused `awaiting_tool_results` run exposes only its pending tasks to an
external worker fleet. Workers load the batch, execute it against their own
registry and send back `{tool_call_id: ToolResult}` for
`Runner.resume_with_tool_results`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, TypeAlias

from ..llms.types import JSONValue
from ..tools.base import ToolResult
from ..tools.output import SummaryMode
from ..tools.registry import ToolsRegistry
from .continuation import (
    Continuation,
    ContinuationCodec,
    check_limits,
    check_schema_version,
    decode_payload,
    required_field,
)
from .errors import ContinuationFormatError, ResumeValidationError, RunnerConfigurationError
from .executors import ExecutionContext, ExecutionRequest, InlineToolExecutor, ToolExecutor
from .serialization import pending_execution_from_dict, pending_execution_to_dict, select_context_attributes
from .telemetry import Instrumenter
from .types import PendingToolExecution

SCHEMA_VERSION = 1

ToolTask: TypeAlias = PendingToolExecution


@dataclass(frozen=True, slots=True)
class ToolTaskBatch:
    run_id: str
    turn_number: int
    tasks: list[ToolTask] = field(default_factory=list)
    context_attributes: dict[str, Any] = field(default_factory=dict)
    max_tool_output_bytes: int = 200_000


class ToolTaskCodec:
    SCHEMA_VERSION = SCHEMA_VERSION

    @staticmethod
    def dump(continuation: Continuation | dict[str, Any] | str, *, context_keys: Any = ()) -> dict[str, JSONValue]:
        """
        Serialize the pending executions of a paused run.

        Raises:
            ResumeValidationError: If the run is not awaiting tool results or
                has nothing pending.
        """
        if not isinstance(continuation, Continuation):
            continuation = ContinuationCodec.load(continuation)
        if not continuation.awaiting_tool_results:
            raise ResumeValidationError(
                f"continuation pause_reason is {continuation.pause_reason!r} (expected 'awaiting_tool_results')"
            )
        outstanding = continuation.outstanding_tool_executions
        if not outstanding:
            raise ResumeValidationError("continuation has no pending tool executions")

        return {
            "schema_version": SCHEMA_VERSION,
            "run_id": continuation.run_id,
            "turn_number": continuation.turn,
            "tasks": [pending_execution_to_dict(task) for task in outstanding],
            "context_attributes": select_context_attributes(continuation.context_attributes, context_keys),
            "max_tool_output_bytes": continuation.max_tool_output_bytes,
        }

    @staticmethod
    def load(payload: dict[str, Any] | str) -> ToolTaskBatch:
        data = decode_payload(payload, what="tool task")
        check_schema_version(data)
        try:
            run_id = str(required_field(data, "run_id"))
            if not run_id.strip():
                raise ContinuationFormatError("run_id is required")
            tasks = required_field(data, "tasks")
            if not isinstance(tasks, list):
                raise TypeError("tasks must be a list")
            for index, task in enumerate(tasks):
                if not isinstance(task, dict) or not isinstance(task.get("arguments"), dict):
                    raise TypeError(f"tasks[{index}].arguments must be an object")
            batch = ToolTaskBatch(
                run_id=run_id,
                turn_number=int(required_field(data, "turn_number")),
                tasks=[pending_execution_from_dict(task) for task in tasks],
                context_attributes=dict(data.get("context_attributes") or {}),
                max_tool_output_bytes=int(required_field(data, "max_tool_output_bytes")),
            )
        except ContinuationFormatError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise ContinuationFormatError(f"malformed tool task payload: {e}") from e

        check_limits(max_tool_output_bytes=batch.max_tool_output_bytes)
        return batch


async def execute_tool_task_batch(
    batch: ToolTaskBatch,
    tools: ToolsRegistry,
    *,
    executor: ToolExecutor | None = None,
    instrumenter: Instrumenter | None = None,
    summary_mode: SummaryMode = "safe",
) -> dict[str, ToolResult]:
    """
    Execute every task of `batch` and key the results by tool call id.

    Results are capped to the batch's `max_tool_output_bytes`.

    Raises:
        RunnerConfigurationError: If the executor defers instead of executing.
    """
    executor = executor or InlineToolExecutor()
    requests = [
        ExecutionRequest(
            tool_call_id=task.tool_call_id,
            name=task.name,
            executed_name=task.executed_name,
            arguments=dict(task.arguments),
            arguments_summary=task.arguments_summary,
            source=task.source,
        )
        for task in batch.tasks
    ]
    context = ExecutionContext(
        run_id=batch.run_id,
        turn_number=batch.turn_number,
        attributes=dict(batch.context_attributes),
        instrumenter=instrumenter or Instrumenter(),
        max_tool_output_bytes=batch.max_tool_output_bytes,
        summary_mode=summary_mode,
    )
    outcome = await executor.execute(requests, tools=tools, context=context)
    if outcome.deferred:
        raise RunnerConfigurationError("tool task execution requires an executor that runs tools")
    return {item.tool_call_id: item.result for item in outcome.completed}
