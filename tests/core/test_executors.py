from __future__ import annotations

import asyncio

import pytest
from pydantic import BaseModel

from fakes import registry, run_async
from promptloop.core import (
    DeferAllToolExecutor,
    ExecutionContext,
    ExecutionRequest,
    InMemoryTelemetrySink,
    InlineToolExecutor,
    Instrumenter,
    RunnerConfigurationError,
    WorkerPoolToolExecutor,
)
from promptloop.core.executors import execute_request
from promptloop.tools import ToolContext, ToolRegistry, ToolResult, tool


class SleepArgs(BaseModel):
    label: str
    delay: float = 0.0


def _request(tool_call_id: str, name: str, arguments: dict | None = None) -> ExecutionRequest:
    return ExecutionRequest(tool_call_id=tool_call_id, name=name, executed_name=name, arguments=arguments or {})


def _timeline_registry(timeline: list[str], in_flight: list[int], peak: list[int]) -> ToolRegistry:
    @tool(args_model=SleepArgs, name="fast", parallelizable=True)
    async def fast(args: SleepArgs) -> str:
        in_flight[0] += 1
        peak[0] = max(peak[0], in_flight[0])
        timeline.append(f"start:{args.label}")
        await asyncio.sleep(args.delay)
        timeline.append(f"end:{args.label}")
        in_flight[0] -= 1
        return args.label

    @tool(args_model=SleepArgs, name="serial")
    async def serial(args: SleepArgs) -> str:
        timeline.append(f"serial:{args.label}")
        return args.label

    return ToolRegistry().register_many([fast, serial])


def test_inline_executor_runs_in_request_order():
    reg = registry()
    requests = [
        _request("c1", "add", {"a": 1, "b": 2}),
        _request("c2", "echo", {"text": "two"}),
    ]

    batch = run_async(InlineToolExecutor().execute(requests, tools=reg, context=ExecutionContext()))

    assert not batch.is_deferred
    assert [item.tool_call_id for item in batch.completed] == ["c1", "c2"]
    assert [item.result.text for item in batch.completed] == ["3", "two"]
    assert [call.tool_call_id for call in reg.recent_calls()] == ["c1", "c2"]


def test_worker_pool_runs_serial_tools_first_and_keeps_request_order():
    timeline: list[str] = []
    in_flight, peak = [0], [0]
    reg = _timeline_registry(timeline, in_flight, peak)
    requests = [
        _request("c1", "fast", {"label": "a", "delay": 0.03}),
        _request("c2", "serial", {"label": "s"}),
        _request("c3", "fast", {"label": "b", "delay": 0.01}),
        _request("c4", "fast", {"label": "c", "delay": 0.0}),
    ]

    batch = run_async(
        WorkerPoolToolExecutor(max_concurrency=2).execute(requests, tools=reg, context=ExecutionContext())
    )

    assert [item.tool_call_id for item in batch.completed] == ["c1", "c2", "c3", "c4"]
    assert [item.result.text for item in batch.completed] == ["a", "s", "b", "c"]
    assert timeline[0] == "serial:s"
    assert peak[0] == 2


def test_worker_pool_rejects_invalid_concurrency():
    for value in (0, -1, True, 1.5):
        with pytest.raises(RunnerConfigurationError):
            WorkerPoolToolExecutor(max_concurrency=value)


def test_defer_all_executor_returns_pending_executions_only():
    reg = registry()
    requests = [
        ExecutionRequest(
            tool_call_id="c1",
            name="tools.echo",
            executed_name="tools_echo",
            arguments={"text": "x"},
            arguments_summary="object keys=[text] bytes=12",
            source="mcp",
        )
    ]

    batch = run_async(DeferAllToolExecutor().execute(requests, tools=reg, context=ExecutionContext()))

    assert batch.is_deferred
    assert batch.completed == []
    [pending] = batch.deferred
    assert pending.tool_call_id == "c1"
    assert pending.name == "tools.echo"
    assert pending.executed_name == "tools_echo"
    assert pending.arguments == {"text": "x"}
    assert pending.source == "mcp"
    assert reg.recent_calls() == []


def test_execute_request_turns_failures_into_error_results():
    reg = registry()

    missing = run_async(execute_request(_request("c1", "nope"), tools=reg, context=ExecutionContext()))
    invalid = run_async(execute_request(_request("c2", "add", {"a": "x"}), tools=reg, context=ExecutionContext()))

    assert missing.error is True
    assert missing.result.text == "Tool not found: nope"
    assert invalid.error is True
    assert "Invalid arguments for tool 'add'" in invalid.result.text


class _RaisingRegistry:
    def find(self, name):
        return None

    def has(self, name):
        return True

    async def execute(self, name, arguments, context=None):
        raise ConnectionError("worker gone")


class _BadReturnRegistry(_RaisingRegistry):
    async def execute(self, name, arguments, context=None):
        return {"not": "a result"}


def test_execute_request_handles_misbehaving_registries():
    raised = run_async(execute_request(_request("c1", "remote"), tools=_RaisingRegistry(), context=ExecutionContext()))
    wrong = run_async(execute_request(_request("c2", "remote"), tools=_BadReturnRegistry(), context=ExecutionContext()))

    assert raised.result == ToolResult.fail("Tool 'remote' raised: worker gone")
    assert wrong.error is True
    assert "unsupported result type: dict" in wrong.result.text


def test_execute_request_passes_context_and_caps_output():
    seen: list[ToolContext] = []

    class BigArgs(BaseModel):
        size: int

    @tool(args_model=BigArgs, name="big")
    def big(args: BigArgs, ctx: ToolContext) -> str:
        seen.append(ctx)
        return "b" * args.size

    reg = ToolRegistry().register(big)
    sink = InMemoryTelemetrySink()
    context = ExecutionContext(
        run_id="run_1",
        turn_number=3,
        attributes={"tenant": "acme"},
        instrumenter=Instrumenter(sink),
        max_tool_output_bytes=128,
    )

    completed = run_async(execute_request(_request("c9", "big", {"size": 5_000}), tools=reg, context=context))

    assert seen == [ToolContext(run_id="run_1", turn_number=3, tool_call_id="c9", attributes={"tenant": "acme"})]
    assert completed.result.metadata["truncated"] is True
    assert completed.result_summary.endswith("truncated=true")
    assert completed.duration_ms >= 0

    [span] = sink.spans("promptloop.tool.execute")
    assert span["status"] == "ok"
    assert span["attributes"]["tool_call_id"] == "c9"
    assert span["attributes"]["result_error"] is False

    [histogram] = sink.histograms()
    assert histogram["name"] == "promptloop.tool.duration_ms"
    assert histogram["value"] == completed.duration_ms
    assert histogram["attributes"] == {"name": "big", "error": False}
