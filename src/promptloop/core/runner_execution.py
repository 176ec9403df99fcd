"""
The turn loop shared by every runner entrypoint.

One loop serves sync and streaming calls (through a turn driver) and fresh
and resumed runs (through an optional entry step that finishes the paused
turn before regular turns continue).
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from ..llms.errors import ProviderError
from ..llms.types import (
    ChatRequest,
    LLMResponse,
    Message,
    StreamDoneEvent,
    StreamMessageCompleteEvent,
    StreamTextDeltaEvent,
)
from .errors import ContextWindowExceededError, MaxTurnsExceededError
from .events import Events
from .stream import (
    DoneEvent,
    ErrorEvent,
    MessageCompleteEvent,
    RunnerStreamEvent,
    TextDeltaEvent,
    TurnEndEvent,
    TurnStartEvent,
)
from .types import STOP_ERROR, STOP_MAX_TURNS, RunResult
from .runner_internals import EventCallback, _LoopState, _RunDeps, _TurnScratch, maybe_await

logger = logging.getLogger(__name__)

EntryStep = Callable[[], Awaitable["RunResult | None"]]


class _SyncDriver:
    """Single-response provider calls; stream events are dropped."""

    streaming = False

    async def call(self, deps: _RunDeps, request: ChatRequest) -> LLMResponse:
        return await deps.provider.chat(request)

    async def emit(self, event: RunnerStreamEvent) -> None:
        return None


class _StreamDriver:
    """Streaming provider calls; every runner event goes to `on_event` inline."""

    streaming = True

    def __init__(self, on_event: EventCallback, events: Events) -> None:
        self._on_event = on_event
        self._events = events

    async def call(self, deps: _RunDeps, request: ChatRequest) -> LLMResponse:
        message: Message | None = None
        stop_reason = "end_turn"
        usage = None
        async for event in deps.provider.chat_stream(request):
            if isinstance(event, StreamTextDeltaEvent):
                self._events.emit("stream_delta", event.delta)
                await self.emit(TextDeltaEvent(delta=event.delta))
            elif isinstance(event, StreamMessageCompleteEvent):
                message = event.message
                await self.emit(MessageCompleteEvent(message=event.message))
            elif isinstance(event, StreamDoneEvent):
                stop_reason = event.stop_reason
                usage = event.usage
        return LLMResponse(message=message, usage=usage, stop_reason=stop_reason)

    async def emit(self, event: RunnerStreamEvent) -> None:
        await maybe_await(self._on_event(event))


TurnDriver = _SyncDriver | _StreamDriver


class RunnerExecutionMixin:
    """Implements the unified turn loop."""

    async def _drive(
        self,
        state: _LoopState,
        deps: _RunDeps,
        driver: TurnDriver,
        *,
        entry: EntryStep | None = None,
    ) -> RunResult:
        with deps.instrumenter.instrument("promptloop.run", {"run_id": state.run_id}) as span:
            try:
                result = await self._loop(state, deps, driver, entry)
            finally:
                span["turns"] = state.turn
                span["stop_reason"] = state.stop_reason
                span["usage"] = state.usage.to_dict()

        deps.instrumenter.count("promptloop.runs", attributes={"stop_reason": result.stop_reason})
        logger.info("Run %s finished after %d turn(s): %s", state.run_id, result.turns, result.stop_reason)
        await driver.emit(DoneEvent(stop_reason=result.stop_reason, usage=result.usage))
        return result

    async def _loop(
        self,
        state: _LoopState,
        deps: _RunDeps,
        driver: TurnDriver,
        entry: EntryStep | None,
    ) -> RunResult:
        if entry is not None:
            paused = await entry()
            if paused is not None:
                return paused

        while True:
            if state.turn >= state.max_turns:
                state.stop_reason = STOP_MAX_TURNS
                error = MaxTurnsExceededError(state.max_turns)
                deps.events.emit("error", error, False)
                await driver.emit(ErrorEvent(error=error, recoverable=False))
                return self._build_result(state)

            result = await self._run_turn(state, deps, driver)
            if result is not None:
                return result

    async def _run_turn(self, state: _LoopState, deps: _RunDeps, driver: TurnDriver) -> RunResult | None:
        state.turn += 1
        scratch = _TurnScratch(turn_number=state.turn)
        logger.debug("Run %s: starting turn %d", state.run_id, state.turn)
        deps.events.emit("turn_start", state.turn)
        await driver.emit(TurnStartEvent(turn_number=state.turn))

        payload = {"run_id": state.run_id, "turn_number": state.turn}
        with deps.instrumenter.instrument("promptloop.turn", payload) as turn_span:
            request = ChatRequest(
                model=state.model,
                messages=list(state.messages),
                tools=list(state.tools) if state.tools_enabled and state.tools else None,
                options=dict(state.options),
            )
            await self._preflight(state, deps, driver, request)

            deps.events.emit("llm_request", request)
            llm_payload = {
                "run_id": state.run_id,
                "turn_number": state.turn,
                "model": state.model,
                "stream": driver.streaming,
                "tools_count": len(request.tools or []),
                "messages_count": len(request.messages),
            }
            logger.debug("Run %s: calling provider (turn %d)", state.run_id, state.turn)
            with deps.instrumenter.instrument("promptloop.llm.call", llm_payload) as llm_span:
                response = await driver.call(deps, request)
                llm_span["stop_reason"] = response.stop_reason
            deps.events.emit("llm_response", response)

            state.record_usage(response.usage)
            scratch.usage = response.usage
            scratch.stop_reason = response.stop_reason

            outcome = await self._handle_response(state, deps, driver, request, response, scratch)
            turn_span["stop_reason"] = state.stop_reason or response.stop_reason
            return outcome

    async def _handle_response(
        self,
        state: _LoopState,
        deps: _RunDeps,
        driver: TurnDriver,
        request: ChatRequest,
        response: LLMResponse,
        scratch: _TurnScratch,
    ) -> RunResult | None:
        message = response.message
        if message is None:
            reason = (
                "provider stream ended without a complete message"
                if driver.streaming
                else "provider returned no message"
            )
            error = ProviderError(reason)
            deps.events.emit("error", error, False)
            await driver.emit(ErrorEvent(error=error, recoverable=False))
            state.stop_reason = STOP_ERROR
            scratch.stop_reason = STOP_ERROR
            await self._end_turn(state, deps, driver, scratch)
            return self._build_result(state)

        calls = list(message.tool_calls)
        if calls and request.tools is None:
            logger.debug("Run %s: dropping %d tool call(s) from a turn without tools", state.run_id, len(calls))
            calls = []
        limit = self._effective_tool_call_limit(state)
        if limit is not None and len(calls) > limit:
            for ignored in calls[limit:]:
                scratch.ignored_tool_call_ids.append(ignored.id)
                state.put_record(self._ignored_record(ignored, limit))
                deps.instrumenter.count("promptloop.tool_calls", attributes={"outcome": "ignored"})
            calls = calls[:limit]
        if len(calls) != len(message.tool_calls):
            message = self._with_tool_calls(message, calls)
        state.messages.append(message)

        if calls:
            state.any_tool_calls_seen = True
            scratch.tool_calls_count = len(calls)
            paused = await self._tool_phase(state, deps, driver, calls, scratch)
            if paused is not None:
                return paused
            await self._end_turn(state, deps, driver, scratch)
            return None

        if self._should_fix_empty_final(state, message):
            state.empty_final_fixup_attempted = True
            state.messages.append(Message(role="user", content=state.fix_empty_final_user_text))
            if state.fix_empty_final_disable_tools:
                state.tools_enabled = False
            logger.debug("Run %s: empty final answer, asking once more", state.run_id)
            await self._end_turn(state, deps, driver, scratch)
            return None

        state.final_message = message
        state.stop_reason = response.stop_reason
        await self._end_turn(state, deps, driver, scratch)
        return self._build_result(state)

    async def _preflight(self, state: _LoopState, deps: _RunDeps, driver: TurnDriver, request: ChatRequest) -> None:
        if deps.token_counter is None or deps.context_window is None:
            return
        message_tokens = deps.token_counter.count_messages(request.messages)
        tool_tokens = deps.token_counter.count_tools(request.tools)
        if message_tokens + tool_tokens <= deps.context_window - deps.reserved_output_tokens:
            return
        error = ContextWindowExceededError(
            message_tokens=message_tokens,
            tool_tokens=tool_tokens,
            context_window=deps.context_window,
            reserved_output_tokens=deps.reserved_output_tokens,
        )
        deps.events.emit("error", error, False)
        await driver.emit(ErrorEvent(error=error, recoverable=False))
        raise error

    async def _end_turn(
        self,
        state: _LoopState,
        deps: _RunDeps,
        driver: TurnDriver,
        scratch: _TurnScratch,
        *,
        pause_reason: str | None = None,
    ) -> None:
        self._store_trace(state, scratch.close(pause_reason=pause_reason))
        stop_reason = pause_reason or scratch.stop_reason
        deps.events.emit("turn_end", scratch.turn_number, stop_reason)
        await driver.emit(TurnEndEvent(turn_number=scratch.turn_number, stop_reason=stop_reason))

    @staticmethod
    def _effective_tool_call_limit(state: _LoopState) -> int | None:
        limit = state.max_tool_calls_per_turn
        if state.options.get("parallel_tool_calls") is False:
            return 1 if limit is None else min(limit, 1)
        return limit

    @staticmethod
    def _should_fix_empty_final(state: _LoopState, message: Message) -> bool:
        return (
            state.fix_empty_final
            and not state.empty_final_fixup_attempted
            and state.any_tool_calls_seen
            and bool(state.tools)
            and not message.text.strip()
        )
