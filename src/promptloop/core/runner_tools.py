"""
Tool phase of a turn: authorization, execution, pausing and resume entry steps.
"""

from __future__ import annotations

import logging
from typing import Any

from ..llms.content import validate_content_blocks
from ..llms.types import Message, MessageContent, ToolCall
from ..tools.base import ToolResult
from ..tools.output import summarize_tool_arguments, summarize_tool_result
from .continuation import Continuation
from .errors import RunnerConfigurationError
from .executors import ExecutionBatch, ExecutionContext, ExecutionRequest
from .policy import Decision, DecisionOutcome
from .stream import (
    AuthorizationRequiredEvent,
    ToolExecutionEndEvent,
    ToolExecutionRequiredEvent,
    ToolExecutionStartEvent,
    TurnEndEvent,
)
from .types import (
    PendingToolExecution,
    RunResult,
    ToolAuthorizationTrace,
    ToolCallRecord,
    ToolExecutionTrace,
)
from .runner_internals import _LoopState, _RunDeps, _TurnScratch, maybe_await

logger = logging.getLogger(__name__)

CONFIRMATION_DENIED_REASON = "user denied confirmation"
CONFIRMATION_ALLOWED_REASON = "user confirmed"


class RunnerToolsMixin:
    """Authorization pipeline, executor hand-off and pause/resume bookkeeping."""

    # ''''''''''''''''''''''''''''''''''''''
    # Name resolution
    # ''''''''''''''''''''''''''''''''''''''

    def _resolve_tool_name(self, name: str, deps: _RunDeps) -> str:
        """
        Return the registry name a call executes under.

        Unregistered names go through the alias resolver once; when the
        candidate is not registered either, the requested name is kept and
        execution reports the tool as missing.
        """
        if deps.tool_name_resolver is None or deps.tools.has(name):
            return name
        candidate = deps.tool_name_resolver(name)
        if candidate and candidate != name and deps.tools.has(candidate):
            return candidate
        return name

    # ''''''''''''''''''''''''''''''''''''''
    # Authorization
    # ''''''''''''''''''''''''''''''''''''''

    async def _authorize(
        self,
        state: _LoopState,
        deps: _RunDeps,
        calls: list[ToolCall],
        scratch: _TurnScratch,
    ) -> dict[str, Decision]:
        decisions: dict[str, Decision] = {}
        for call in calls:
            deps.events.emit("tool_call", call.name, dict(call.arguments), call.id)
            if not call.arguments_valid:
                decision = Decision.deny(call.arguments_parse_error or "invalid_arguments")
                stage = "parse"
            else:
                executed_name = self._resolve_tool_name(call.name, deps)
                decision = await maybe_await(
                    deps.policy.authorize(executed_name, dict(call.arguments), dict(state.context))
                )
                if not isinstance(decision, Decision):
                    raise RunnerConfigurationError(
                        f"policy must return a Decision (got {type(decision).__name__})"
                    )
                stage = "policy"
            self._trace_authorization(state, deps, scratch, call, decision, stage)
            decisions[call.id] = decision
        return decisions

    def _trace_authorization(
        self,
        state: _LoopState,
        deps: _RunDeps,
        scratch: _TurnScratch,
        call: ToolCall,
        decision: Decision,
        stage: str,
    ) -> None:
        scratch.authorizations.append(
            ToolAuthorizationTrace(
                tool_call_id=call.id,
                name=call.name,
                outcome=decision.outcome.value,
                reason=decision.reason,
                stage=stage,
            )
        )
        deps.instrumenter.publish(
            "promptloop.tool.authorize",
            {
                "run_id": state.run_id,
                "turn_number": scratch.turn_number,
                "tool_call_id": call.id,
                "name": call.name,
                "outcome": decision.outcome.value,
                "reason": decision.reason,
                "stage": stage,
            },
        )
        deps.instrumenter.count("promptloop.tool_calls", attributes={"outcome": decision.outcome.value})

    # ''''''''''''''''''''''''''''''''''''''
    # Tool phase
    # ''''''''''''''''''''''''''''''''''''''

    async def _tool_phase(
        self,
        state: _LoopState,
        deps: _RunDeps,
        driver: Any,
        calls: list[ToolCall],
        scratch: _TurnScratch,
    ) -> RunResult | None:
        decisions = await self._authorize(state, deps, calls, scratch)

        if any(decision.requires_confirmation for decision in decisions.values()):
            for call in calls:
                if not decisions[call.id].denied:
                    state.put_record(
                        ToolCallRecord(
                            name=call.name,
                            tool_call_id=call.id,
                            executed_name=self._resolve_tool_name(call.name, deps),
                            arguments=dict(call.arguments),
                            pending=True,
                        )
                    )
            return await self._pause(
                state,
                deps,
                driver,
                scratch,
                pause_reason="awaiting_tool_confirmation",
                pending_tool_calls=calls,
                pending_decisions=decisions,
            )

        return await self._execute_decided(state, deps, driver, calls, decisions, scratch)

    async def _execute_decided(
        self,
        state: _LoopState,
        deps: _RunDeps,
        driver: Any,
        calls: list[ToolCall],
        decisions: dict[str, Decision],
        scratch: _TurnScratch,
    ) -> RunResult | None:
        """
        Run every allowed call, answer every denied one.

        Returns a paused result when the executor defers; otherwise one
        tool-result message per call is appended in call order.
        """
        denied: dict[str, ToolResult] = {}
        requests: list[ExecutionRequest] = []
        for call in calls:
            decision = decisions[call.id]
            if decision.denied:
                denied[call.id] = self._denied_result(call, decision)
                continue
            requests.append(
                ExecutionRequest(
                    tool_call_id=call.id,
                    name=call.name,
                    executed_name=self._resolve_tool_name(call.name, deps),
                    arguments=dict(call.arguments),
                    arguments_summary=summarize_tool_arguments(call.arguments, mode=deps.summary_mode),
                    source=self._tool_source(call.name, deps),
                )
            )

        completed = {}
        if requests:
            batch = await deps.executor.execute(
                requests,
                tools=deps.tools,
                context=ExecutionContext(
                    run_id=state.run_id,
                    turn_number=scratch.turn_number,
                    attributes=dict(state.context),
                    instrumenter=deps.instrumenter,
                    max_tool_output_bytes=state.max_tool_output_bytes,
                    summary_mode=deps.summary_mode,
                ),
            )
            self._check_batch(requests, batch)

            if batch.deferred:
                # Denied results are buffered and delivered in call order on resume.
                for call in calls:
                    if call.id in denied:
                        state.put_record(self._denied_record(call, decisions[call.id]))
                return await self._defer(state, deps, driver, scratch, batch.deferred, denied)

            completed = {item.tool_call_id: item for item in batch.completed}

        for call in calls:
            if call.id in denied:
                self._append_denied(state, deps, call, decisions[call.id], denied[call.id])
                continue
            item = completed[call.id]
            scratch.executions.append(
                ToolExecutionTrace(
                    tool_call_id=call.id,
                    name=call.name,
                    executed_name=item.request.executed_name,
                    source=item.request.source,
                    duration_ms=item.duration_ms,
                    error=item.result.error,
                    arguments_summary=item.request.arguments_summary,
                    result_summary=item.result_summary,
                )
            )
            state.put_record(
                ToolCallRecord(
                    name=call.name,
                    tool_call_id=call.id,
                    executed_name=item.request.executed_name,
                    arguments=dict(call.arguments),
                    error=item.result.text if item.result.error else None,
                )
            )
            await self._deliver_result(state, deps, driver, call.id, call.name, dict(call.arguments), item.result)
        return None

    async def _defer(
        self,
        state: _LoopState,
        deps: _RunDeps,
        driver: Any,
        scratch: _TurnScratch,
        deferred: list[PendingToolExecution],
        denied: dict[str, ToolResult],
    ) -> RunResult:
        for pending in deferred:
            state.put_record(
                ToolCallRecord(
                    name=pending.name,
                    tool_call_id=pending.tool_call_id,
                    executed_name=pending.executed_name,
                    arguments=dict(pending.arguments),
                    pending=True,
                    deferred=True,
                )
            )
            deps.instrumenter.publish(
                "promptloop.tool.task.created",
                {
                    "run_id": state.run_id,
                    "turn_number": scratch.turn_number,
                    "tool_call_id": pending.tool_call_id,
                    "name": pending.name,
                    "executed_name": pending.executed_name,
                    "source": pending.source,
                    "arguments_summary": pending.arguments_summary,
                },
            )
        return await self._pause(
            state,
            deps,
            driver,
            scratch,
            pause_reason="awaiting_tool_results",
            pending_tool_executions=deferred,
            buffered_tool_results=denied,
        )

    # ''''''''''''''''''''''''''''''''''''''
    # Pausing
    # ''''''''''''''''''''''''''''''''''''''

    async def _pause(
        self,
        state: _LoopState,
        deps: _RunDeps,
        driver: Any,
        scratch: _TurnScratch | None,
        *,
        pause_reason: str,
        pending_tool_calls: list[ToolCall] | None = None,
        pending_decisions: dict[str, Decision] | None = None,
        pending_tool_executions: list[PendingToolExecution] | None = None,
        buffered_tool_results: dict[str, ToolResult] | None = None,
    ) -> RunResult:
        state.stop_reason = pause_reason
        if scratch is not None:
            self._store_trace(state, scratch.close(pause_reason=pause_reason))

        continuation = self._snapshot(
            state,
            pause_reason=pause_reason,
            parent_continuation_id=state.continuation_id,
            pending_tool_calls=pending_tool_calls,
            pending_decisions=pending_decisions,
            pending_tool_executions=pending_tool_executions,
            buffered_tool_results=buffered_tool_results,
            summary_mode=deps.summary_mode,
        )
        confirmations = continuation.pending_tool_confirmations
        outstanding = continuation.outstanding_tool_executions

        deps.instrumenter.publish(
            "promptloop.pause",
            {
                "run_id": state.run_id,
                "turn_number": state.turn,
                "pause_reason": pause_reason,
                "continuation_id": continuation.continuation_id,
                "parent_continuation_id": continuation.parent_continuation_id,
                "pending_confirmations_count": len(confirmations),
                "pending_executions_count": len(outstanding),
            },
        )
        if pause_reason == "awaiting_tool_results":
            deps.instrumenter.publish(
                "promptloop.tool.task.deferred",
                {
                    "run_id": state.run_id,
                    "turn_number": state.turn,
                    "continuation_id": continuation.continuation_id,
                    "pending_count": len(outstanding),
                },
            )
            await driver.emit(ToolExecutionRequiredEvent(pending=outstanding))
        else:
            await driver.emit(AuthorizationRequiredEvent(pending=confirmations))
        logger.debug("Run %s paused at turn %d: %s", state.run_id, state.turn, pause_reason)

        if scratch is not None:
            deps.events.emit("turn_end", scratch.turn_number, pause_reason)
            await driver.emit(TurnEndEvent(turn_number=scratch.turn_number, stop_reason=pause_reason))

        return self._build_result(
            state,
            continuation=continuation,
            pending_confirmations=confirmations,
            pending_executions=outstanding,
        )

    # ''''''''''''''''''''''''''''''''''''''
    # Resume entry steps
    # ''''''''''''''''''''''''''''''''''''''

    async def _finish_confirmed_turn(
        self,
        state: _LoopState,
        deps: _RunDeps,
        driver: Any,
        continuation: Continuation,
        confirmations: dict[str, DecisionOutcome],
    ) -> RunResult | None:
        scratch = self._paused_turn_scratch(state)
        decisions: dict[str, Decision] = {}
        for call in continuation.pending_tool_calls:
            decision = continuation.pending_decisions[call.id]
            if not decision.denied:
                if confirmations[call.id] is DecisionOutcome.ALLOW:
                    decision = Decision.allow(CONFIRMATION_ALLOWED_REASON)
                else:
                    decision = Decision.deny(CONFIRMATION_DENIED_REASON)
                self._trace_authorization(state, deps, scratch, call, decision, "confirmation")
            decisions[call.id] = decision

        paused = await self._execute_decided(
            state, deps, driver, list(continuation.pending_tool_calls), decisions, scratch
        )
        if paused is not None:
            return paused
        await self._end_turn(state, deps, driver, scratch)
        return None

    async def _finish_deferred_turn(
        self,
        state: _LoopState,
        deps: _RunDeps,
        driver: Any,
        continuation: Continuation,
        buffered: dict[str, ToolResult],
    ) -> RunResult | None:
        """
        Deliver external results once every pending execution has one.

        `buffered` also holds the answers for calls denied in the paused
        turn; all results are appended in the turn's call order.
        """
        pending = {item.tool_call_id: item for item in continuation.pending_tool_executions}
        if any(tool_call_id not in buffered for tool_call_id in pending):
            return await self._pause(
                state,
                deps,
                driver,
                None,
                pause_reason="awaiting_tool_results",
                pending_tool_executions=list(pending.values()),
                buffered_tool_results=buffered,
            )

        scratch = self._paused_turn_scratch(state)
        for tool_call_id, name in self._paused_call_order(state, pending, buffered):
            result = buffered[tool_call_id]
            item = pending.get(tool_call_id)
            if item is None:
                deps.events.emit("tool_result", name, result, tool_call_id)
                state.messages.append(self._tool_result_message(name, tool_call_id, result))
                continue
            scratch.executions.append(
                ToolExecutionTrace(
                    tool_call_id=item.tool_call_id,
                    name=item.name,
                    executed_name=item.executed_name,
                    source=item.source,
                    error=result.error,
                    arguments_summary=item.arguments_summary,
                    result_summary=summarize_tool_result(result, mode=deps.summary_mode),
                    external=True,
                )
            )
            state.put_record(
                ToolCallRecord(
                    name=item.name,
                    tool_call_id=item.tool_call_id,
                    executed_name=item.executed_name,
                    arguments=dict(item.arguments),
                    error=result.text if result.error else None,
                    deferred=True,
                    external=True,
                )
            )
            await self._deliver_result(
                state, deps, driver, item.tool_call_id, item.name, dict(item.arguments), result
            )
        await self._end_turn(state, deps, driver, scratch)
        return None

    @staticmethod
    def _paused_call_order(
        state: _LoopState,
        pending: dict[str, PendingToolExecution],
        buffered: dict[str, ToolResult],
    ) -> list[tuple[str, str]]:
        """(tool_call_id, name) pairs to answer, in the paused turn's call order."""
        calls: list[ToolCall] = []
        for message in reversed(state.messages):
            if message.role == "assistant" and message.tool_calls:
                calls = list(message.tool_calls)
                break
        order = [(call.id, call.name) for call in calls if call.id in pending or call.id in buffered]
        listed = {tool_call_id for tool_call_id, _ in order}
        order.extend((tool_call_id, item.name) for tool_call_id, item in pending.items() if tool_call_id not in listed)
        return order

    # ''''''''''''''''''''''''''''''''''''''
    # Helpers
    # ''''''''''''''''''''''''''''''''''''''

    async def _deliver_result(
        self,
        state: _LoopState,
        deps: _RunDeps,
        driver: Any,
        tool_call_id: str,
        name: str,
        arguments: dict[str, Any],
        result: ToolResult,
    ) -> None:
        await driver.emit(ToolExecutionStartEvent(tool_call_id=tool_call_id, name=name, arguments=arguments))
        await driver.emit(
            ToolExecutionEndEvent(tool_call_id=tool_call_id, name=name, result=result, error=result.error)
        )
        deps.events.emit("tool_result", name, result, tool_call_id)
        state.messages.append(self._tool_result_message(name, tool_call_id, result))

    def _append_denied(
        self,
        state: _LoopState,
        deps: _RunDeps,
        call: ToolCall,
        decision: Decision,
        result: ToolResult,
    ) -> None:
        state.put_record(self._denied_record(call, decision))
        deps.events.emit("tool_result", call.name, result, call.id)
        state.messages.append(self._tool_result_message(call.name, call.id, result))

    @staticmethod
    def _denied_record(call: ToolCall, decision: Decision) -> ToolCallRecord:
        return ToolCallRecord(
            name=call.name,
            tool_call_id=call.id,
            executed_name=None,
            arguments=dict(call.arguments),
            error=decision.reason,
        )

    @staticmethod
    def _denied_result(call: ToolCall, decision: Decision) -> ToolResult:
        metadata: dict[str, Any] = {"denied": True, "reason": decision.reason}
        if not call.arguments_valid:
            metadata["parse_error"] = call.arguments_parse_error
        return ToolResult.fail(f"Tool call denied: {decision.reason}", metadata=metadata)

    @staticmethod
    def _ignored_record(call: ToolCall, limit: int) -> ToolCallRecord:
        return ToolCallRecord(
            name=call.name,
            tool_call_id=call.id,
            arguments=dict(call.arguments),
            error=f"ignored: max_tool_calls_per_turn={limit}",
        )

    def _tool_source(self, name: str, deps: _RunDeps) -> str:
        tool = deps.tools.find(self._resolve_tool_name(name, deps))
        return str(getattr(tool, "source", None) or "native")

    @staticmethod
    def _tool_result_message(name: str, tool_call_id: str, result: ToolResult) -> Message:
        """
        Convert a result to a `tool_result` message.

        Results with media blocks keep their validated blocks; text-only
        results become a plain string. Invalid blocks are replaced by an
        error text.
        """
        metadata = dict(result.metadata)
        metadata["error"] = result.error
        content: MessageContent
        if result.has_non_text_content:
            try:
                content = validate_content_blocks(list(result.content))
            except ValueError as e:
                content = f"Tool '{name}' returned invalid multimodal content: {e}"
                metadata["error"] = True
        else:
            content = result.text
        return Message(role="tool_result", content=content, tool_call_id=tool_call_id, name=name, metadata=metadata)

    @staticmethod
    def _check_batch(requests: list[ExecutionRequest], batch: ExecutionBatch) -> None:
        if batch.completed and batch.deferred:
            raise RunnerConfigurationError("executor returned both completed and deferred executions")
        expected = sorted(request.tool_call_id for request in requests)
        if batch.deferred:
            got = sorted(item.tool_call_id for item in batch.deferred)
        else:
            got = sorted(item.tool_call_id for item in batch.completed)
        if got != expected:
            raise RunnerConfigurationError(
                f"executor returned executions for {got} but was asked for {expected}"
            )

