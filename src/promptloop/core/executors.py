"""
Tool execution strategies.

An executor receives the authorized calls of one turn and either runs them
(returning completed executions in request order) or defers all of them to
an external worker. It never returns a mix of both.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..tools.base import ToolContext, ToolResult
from ..tools.errors import ToolNotFoundError
from ..tools.output import SummaryMode, limit_tool_result, summarize_tool_result
from ..tools.registry import ToolsRegistry
from .errors import RunnerConfigurationError
from .telemetry import Instrumenter
from .types import PendingToolExecution

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    tool_call_id: str
    name: str
    executed_name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    arguments_summary: str = ""
    source: str = "native"


@dataclass(frozen=True, slots=True)
class CompletedExecution:
    request: ExecutionRequest
    result: ToolResult
    result_summary: str = ""
    duration_ms: float = 0.0

    @property
    def tool_call_id(self) -> str:
        return self.request.tool_call_id

    @property
    def error(self) -> bool:
        return self.result.error


@dataclass(frozen=True, slots=True)
class ExecutionBatch:
    completed: list[CompletedExecution] = field(default_factory=list)
    deferred: list[PendingToolExecution] = field(default_factory=list)

    @property
    def is_deferred(self) -> bool:
        return bool(self.deferred)


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """Per-turn settings shared by every execution in a batch."""

    run_id: str | None = None
    turn_number: int | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    instrumenter: Instrumenter = field(default_factory=Instrumenter)
    max_tool_output_bytes: int = 200_000
    summary_mode: SummaryMode = "safe"


class ToolExecutor(Protocol):
    async def execute(
        self,
        requests: list[ExecutionRequest],
        *,
        tools: ToolsRegistry,
        context: ExecutionContext,
    ) -> ExecutionBatch: ...


async def execute_request(
    request: ExecutionRequest,
    *,
    tools: ToolsRegistry,
    context: ExecutionContext,
) -> CompletedExecution:
    """
    Run one request through the registry.

    Never raises for tool-local failures: unknown tools and tool exceptions
    become error results. The result is capped to the output budget.
    """
    payload = {
        "run_id": context.run_id,
        "tool_call_id": request.tool_call_id,
        "name": request.name,
        "executed_name": request.executed_name,
        "source": request.source,
        "arguments_summary": request.arguments_summary,
    }
    started = time.perf_counter()
    with context.instrumenter.instrument("promptloop.tool.execute", payload) as span:
        tool_ctx = ToolContext(
            run_id=context.run_id,
            turn_number=context.turn_number,
            tool_call_id=request.tool_call_id,
            attributes=dict(context.attributes),
        )
        try:
            result = await tools.execute(request.executed_name, dict(request.arguments), tool_ctx)
        except ToolNotFoundError as e:
            result = ToolResult.fail(str(e))
        except Exception as e:
            logger.warning("Tool %s raised during execution: %s", request.executed_name, e)
            result = ToolResult.fail(f"Tool '{request.name}' raised: {e}")

        if not isinstance(result, ToolResult):
            result = ToolResult.fail(
                f"Tool '{request.name}' returned an unsupported result type: {type(result).__name__}"
            )

        result = limit_tool_result(result, max_bytes=context.max_tool_output_bytes, tool_name=request.name)
        summary = summarize_tool_result(result, mode=context.summary_mode)
        span["result_error"] = result.error
        span["result_summary"] = summary

    duration_ms = round((time.perf_counter() - started) * 1000.0, 3)
    context.instrumenter.observe(
        "promptloop.tool.duration_ms", duration_ms, attributes={"name": request.name, "error": result.error}
    )
    return CompletedExecution(request=request, result=result, result_summary=summary, duration_ms=duration_ms)


class InlineToolExecutor:
    """Runs requests one at a time, in the order given."""

    async def execute(
        self,
        requests: list[ExecutionRequest],
        *,
        tools: ToolsRegistry,
        context: ExecutionContext,
    ) -> ExecutionBatch:
        completed = []
        for request in requests:
            completed.append(await execute_request(request, tools=tools, context=context))
        return ExecutionBatch(completed=completed)


class WorkerPoolToolExecutor:
    """
    Runs parallelizable tools concurrently on a bounded pool.

    Requests whose tool is not marked `parallelizable` run sequentially
    first; the rest are spread over at most `max_concurrency` concurrent
    executions. Results come back in the original request order.
    """

    def __init__(self, *, max_concurrency: int = 4) -> None:
        if isinstance(max_concurrency, bool) or not isinstance(max_concurrency, int) or max_concurrency < 1:
            raise RunnerConfigurationError(f"max_concurrency must be a positive integer (got {max_concurrency!r})")
        self.max_concurrency = max_concurrency

    async def execute(
        self,
        requests: list[ExecutionRequest],
        *,
        tools: ToolsRegistry,
        context: ExecutionContext,
    ) -> ExecutionBatch:
        slots: list[CompletedExecution | None] = [None] * len(requests)
        parallel: list[int] = []

        for index, request in enumerate(requests):
            tool = tools.find(request.executed_name)
            if tool is not None and getattr(tool, "parallelizable", False):
                parallel.append(index)
                continue
            slots[index] = await execute_request(request, tools=tools, context=context)

        if parallel:
            sem = asyncio.Semaphore(self.max_concurrency)

            async def _run(index: int) -> None:
                async with sem:
                    slots[index] = await execute_request(requests[index], tools=tools, context=context)

            await asyncio.gather(*(_run(index) for index in parallel))

        return ExecutionBatch(completed=[item for item in slots if item is not None])


class DeferAllToolExecutor:
    """Executes nothing; every request becomes a pending external execution."""

    async def execute(
        self,
        requests: list[ExecutionRequest],
        *,
        tools: ToolsRegistry,
        context: ExecutionContext,
    ) -> ExecutionBatch:
        return ExecutionBatch(
            deferred=[
                PendingToolExecution(
                    tool_call_id=request.tool_call_id,
                    name=request.name,
                    executed_name=request.executed_name,
                    arguments=dict(request.arguments),
                    arguments_summary=request.arguments_summary,
                    source=request.source,
                )
                for request in requests
            ]
        )
