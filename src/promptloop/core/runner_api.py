"""
Public runner API: run, resume and their streaming variants.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ..llms.types import Provider
from ..tools.base import ToolResult
from ..tools.output import limit_tool_result
from ..tools.registry import ToolRegistry, ToolsRegistry
from .config import (
    RunnerConfig,
    validate_max_turns,
    validate_token_budget,
    validate_tool_calls_per_turn,
    validate_tool_output_bytes,
)
from .continuation import Continuation
from .errors import ResumeValidationError
from .events import Events
from .executors import InlineToolExecutor, ToolExecutor
from .policy import AllowAllPolicy, DecisionOutcome, Policy, coerce_confirmation
from .runner_execution import _StreamDriver, _SyncDriver
from .runner_internals import (
    EventCallback,
    ToolNameResolver,
    _LoopState,
    _RunDeps,
    default_tool_alias,
    new_id,
)
from .serialization import utc_now
from .telemetry import Instrumenter
from .token_counter import TokenCounter
from .types import Prompt, RunResult

logger = logging.getLogger(__name__)


class RunnerAPIMixin:
    """
    Public entrypoints.

    Every collaborator is injected per call; anything omitted is built fresh
    for that call (allow-all policy, inline executor, empty registry, no-op
    events and instrumenter). Limits passed per call override `config`.
    """

    def __init__(
        self,
        config: RunnerConfig | None = None,
        *,
        tool_name_resolver: ToolNameResolver | None = None,
    ) -> None:
        """
        Args:
            config: Runner configuration. Defaults to `RunnerConfig()`.
            tool_name_resolver: Maps an unregistered tool name to an alias
                candidate. Defaults to `default_tool_alias` unless
                `config.tool_name_aliases` is false.

        Raises:
            RunnerConfigurationError: If `config` holds invalid limits.
        """
        self.config = (config or RunnerConfig()).validate()
        self._tool_name_resolver = tool_name_resolver

    # ''''''''''''''''''''''''''''''''''''''
    # Fresh runs
    # ''''''''''''''''''''''''''''''''''''''

    async def run(
        self,
        prompt: Prompt,
        provider: Provider,
        *,
        tools: ToolsRegistry | None = None,
        policy: Policy | None = None,
        executor: ToolExecutor | None = None,
        events: Events | None = None,
        instrumenter: Instrumenter | None = None,
        token_counter: TokenCounter | None = None,
        context: dict[str, Any] | None = None,
        max_turns: int | None = None,
        context_window: int | None = None,
        reserved_output_tokens: int | None = None,
        max_tool_calls_per_turn: int | None = None,
        max_tool_output_bytes: int | None = None,
        tool_name_resolver: ToolNameResolver | None = None,
    ) -> RunResult:
        """
        Run `prompt` until a final answer, the turn budget, or a pause.

        Raises:
            RunnerConfigurationError: On invalid limits, before any LLM call.
            ContextWindowExceededError: When the preflight estimate does not
                fit the context window.
        """
        return await self._start(
            prompt,
            provider,
            on_event=None,
            tools=tools,
            policy=policy,
            executor=executor,
            events=events,
            instrumenter=instrumenter,
            token_counter=token_counter,
            context=context,
            max_turns=max_turns,
            context_window=context_window,
            reserved_output_tokens=reserved_output_tokens,
            max_tool_calls_per_turn=max_tool_calls_per_turn,
            max_tool_output_bytes=max_tool_output_bytes,
            tool_name_resolver=tool_name_resolver,
        )

    async def run_stream(
        self,
        prompt: Prompt,
        provider: Provider,
        on_event: EventCallback,
        *,
        tools: ToolsRegistry | None = None,
        policy: Policy | None = None,
        executor: ToolExecutor | None = None,
        events: Events | None = None,
        instrumenter: Instrumenter | None = None,
        token_counter: TokenCounter | None = None,
        context: dict[str, Any] | None = None,
        max_turns: int | None = None,
        context_window: int | None = None,
        reserved_output_tokens: int | None = None,
        max_tool_calls_per_turn: int | None = None,
        max_tool_output_bytes: int | None = None,
        tool_name_resolver: ToolNameResolver | None = None,
    ) -> RunResult:
        """
        Streaming variant of `run`.

        `on_event` (sync or async) receives runner stream events inline and
        exactly one `DoneEvent` when the call completes. Exceptions raised by
        `on_event` propagate to the caller.
        """
        return await self._start(
            prompt,
            provider,
            on_event=on_event,
            tools=tools,
            policy=policy,
            executor=executor,
            events=events,
            instrumenter=instrumenter,
            token_counter=token_counter,
            context=context,
            max_turns=max_turns,
            context_window=context_window,
            reserved_output_tokens=reserved_output_tokens,
            max_tool_calls_per_turn=max_tool_calls_per_turn,
            max_tool_output_bytes=max_tool_output_bytes,
            tool_name_resolver=tool_name_resolver,
        )

    # ''''''''''''''''''''''''''''''''''''''
    # Resume after confirmation
    # ''''''''''''''''''''''''''''''''''''''

    async def resume(
        self,
        continuation: Continuation,
        tool_confirmations: Mapping[str, Any],
        provider: Provider,
        *,
        tools: ToolsRegistry | None = None,
        policy: Policy | None = None,
        executor: ToolExecutor | None = None,
        events: Events | None = None,
        instrumenter: Instrumenter | None = None,
        token_counter: TokenCounter | None = None,
        context: dict[str, Any] | None = None,
        max_turns: int | None = None,
        context_window: int | None = None,
        reserved_output_tokens: int | None = None,
        tool_name_resolver: ToolNameResolver | None = None,
    ) -> RunResult:
        """
        Continue a run paused with `awaiting_tool_confirmation`.

        `tool_confirmations` maps every waiting tool call id to allow/deny
        (`"allow"`, `"deny"`, a bool, a `DecisionOutcome` or a `Decision`).
        Denied calls get a "Tool call denied" error result; allowed calls go
        to the executor. The loop then continues with the next turn.

        Raises:
            ResumeValidationError: On a wrong pause reason or missing,
                unexpected or invalid confirmations. Nothing is changed.
        """
        return await self._resume_confirmations(
            continuation,
            tool_confirmations,
            provider,
            on_event=None,
            tools=tools,
            policy=policy,
            executor=executor,
            events=events,
            instrumenter=instrumenter,
            token_counter=token_counter,
            context=context,
            max_turns=max_turns,
            context_window=context_window,
            reserved_output_tokens=reserved_output_tokens,
            tool_name_resolver=tool_name_resolver,
        )

    async def resume_stream(
        self,
        continuation: Continuation,
        tool_confirmations: Mapping[str, Any],
        provider: Provider,
        on_event: EventCallback,
        *,
        tools: ToolsRegistry | None = None,
        policy: Policy | None = None,
        executor: ToolExecutor | None = None,
        events: Events | None = None,
        instrumenter: Instrumenter | None = None,
        token_counter: TokenCounter | None = None,
        context: dict[str, Any] | None = None,
        max_turns: int | None = None,
        context_window: int | None = None,
        reserved_output_tokens: int | None = None,
        tool_name_resolver: ToolNameResolver | None = None,
    ) -> RunResult:
        """Streaming variant of `resume`."""
        return await self._resume_confirmations(
            continuation,
            tool_confirmations,
            provider,
            on_event=on_event,
            tools=tools,
            policy=policy,
            executor=executor,
            events=events,
            instrumenter=instrumenter,
            token_counter=token_counter,
            context=context,
            max_turns=max_turns,
            context_window=context_window,
            reserved_output_tokens=reserved_output_tokens,
            tool_name_resolver=tool_name_resolver,
        )

    # ''''''''''''''''''''''''''''''''''''''
    # Resume with external tool results
    # ''''''''''''''''''''''''''''''''''''''

    async def resume_with_tool_results(
        self,
        continuation: Continuation,
        tool_results: Mapping[str, Any],
        provider: Provider,
        *,
        allow_partial: bool = False,
        tools: ToolsRegistry | None = None,
        policy: Policy | None = None,
        executor: ToolExecutor | None = None,
        events: Events | None = None,
        instrumenter: Instrumenter | None = None,
        token_counter: TokenCounter | None = None,
        context: dict[str, Any] | None = None,
        max_turns: int | None = None,
        context_window: int | None = None,
        reserved_output_tokens: int | None = None,
        tool_name_resolver: ToolNameResolver | None = None,
    ) -> RunResult:
        """
        Continue a run paused with `awaiting_tool_results`.

        `tool_results` maps pending tool call ids to `ToolResult`s (or their
        dict/JSON form). With `allow_partial`, a subset may be supplied: the
        results are buffered and the run pauses again with a new
        continuation for the remainder.

        Raises:
            ResumeValidationError: On a wrong pause reason, unexpected ids,
                invalid results, results conflicting with buffered ones, or
                missing ids without `allow_partial`. Nothing is changed.
        """
        return await self._resume_results(
            continuation,
            tool_results,
            provider,
            on_event=None,
            allow_partial=allow_partial,
            tools=tools,
            policy=policy,
            executor=executor,
            events=events,
            instrumenter=instrumenter,
            token_counter=token_counter,
            context=context,
            max_turns=max_turns,
            context_window=context_window,
            reserved_output_tokens=reserved_output_tokens,
            tool_name_resolver=tool_name_resolver,
        )

    async def resume_stream_with_tool_results(
        self,
        continuation: Continuation,
        tool_results: Mapping[str, Any],
        provider: Provider,
        on_event: EventCallback,
        *,
        allow_partial: bool = False,
        tools: ToolsRegistry | None = None,
        policy: Policy | None = None,
        executor: ToolExecutor | None = None,
        events: Events | None = None,
        instrumenter: Instrumenter | None = None,
        token_counter: TokenCounter | None = None,
        context: dict[str, Any] | None = None,
        max_turns: int | None = None,
        context_window: int | None = None,
        reserved_output_tokens: int | None = None,
        tool_name_resolver: ToolNameResolver | None = None,
    ) -> RunResult:
        """Streaming variant of `resume_with_tool_results`."""
        return await self._resume_results(
            continuation,
            tool_results,
            provider,
            on_event=on_event,
            allow_partial=allow_partial,
            tools=tools,
            policy=policy,
            executor=executor,
            events=events,
            instrumenter=instrumenter,
            token_counter=token_counter,
            context=context,
            max_turns=max_turns,
            context_window=context_window,
            reserved_output_tokens=reserved_output_tokens,
            tool_name_resolver=tool_name_resolver,
        )

    # ''''''''''''''''''''''''''''''''''''''
    # Wiring
    # ''''''''''''''''''''''''''''''''''''''

    async def _start(
        self,
        prompt: Prompt,
        provider: Provider,
        *,
        on_event: EventCallback | None,
        max_turns: int | None,
        max_tool_calls_per_turn: int | None,
        max_tool_output_bytes: int | None,
        context: dict[str, Any] | None,
        **collaborators: Any,
    ) -> RunResult:
        cfg = self.config
        turns = validate_max_turns(cfg.max_turns if max_turns is None else max_turns)
        output_bytes = validate_tool_output_bytes(
            cfg.max_tool_output_bytes if max_tool_output_bytes is None else max_tool_output_bytes
        )
        calls_per_turn = validate_tool_calls_per_turn(
            cfg.max_tool_calls_per_turn if max_tool_calls_per_turn is None else max_tool_calls_per_turn
        )
        deps = self._deps(provider, **collaborators)

        state = _LoopState(
            run_id=new_id("run"),
            started_at=utc_now(),
            max_turns=turns,
            messages=prompt.initial_messages(),
            model=prompt.model,
            options=prompt.provider_options,
            tools=list(prompt.tools) if prompt.tools else None,
            tools_enabled=bool(prompt.tools),
            max_tool_output_bytes=output_bytes,
            max_tool_calls_per_turn=calls_per_turn,
            fix_empty_final=cfg.fix_empty_final,
            fix_empty_final_user_text=cfg.fix_empty_final_user_text,
            fix_empty_final_disable_tools=cfg.fix_empty_final_disable_tools,
            context=dict(context or {}),
        )
        return await self._drive(state, deps, self._driver(on_event, deps))

    async def _resume_confirmations(
        self,
        continuation: Continuation,
        tool_confirmations: Mapping[str, Any],
        provider: Provider,
        *,
        on_event: EventCallback | None,
        context: dict[str, Any] | None,
        max_turns: int | None,
        **collaborators: Any,
    ) -> RunResult:
        confirmations = self._validate_confirmations(continuation, tool_confirmations)
        turns = None if max_turns is None else validate_max_turns(max_turns)
        deps = self._deps(provider, **collaborators)

        state = self._state_from_continuation(continuation, context=context, max_turns=turns)
        self._publish_resume(deps, continuation)
        driver = self._driver(on_event, deps)

        async def entry() -> RunResult | None:
            return await self._finish_confirmed_turn(state, deps, driver, continuation, confirmations)

        return await self._drive(state, deps, driver, entry=entry)

    async def _resume_results(
        self,
        continuation: Continuation,
        tool_results: Mapping[str, Any],
        provider: Provider,
        *,
        on_event: EventCallback | None,
        allow_partial: bool,
        context: dict[str, Any] | None,
        max_turns: int | None,
        **collaborators: Any,
    ) -> RunResult:
        buffered = self._validate_tool_results(continuation, tool_results, allow_partial=allow_partial)
        turns = None if max_turns is None else validate_max_turns(max_turns)
        deps = self._deps(provider, **collaborators)

        state = self._state_from_continuation(continuation, context=context, max_turns=turns)
        self._publish_resume(deps, continuation)
        driver = self._driver(on_event, deps)

        async def entry() -> RunResult | None:
            return await self._finish_deferred_turn(state, deps, driver, continuation, buffered)

        return await self._drive(state, deps, driver, entry=entry)

    def _deps(
        self,
        provider: Provider,
        *,
        tools: ToolsRegistry | None,
        policy: Policy | None,
        executor: ToolExecutor | None,
        events: Events | None,
        instrumenter: Instrumenter | None,
        token_counter: TokenCounter | None,
        context_window: int | None,
        reserved_output_tokens: int | None,
        tool_name_resolver: ToolNameResolver | None,
    ) -> _RunDeps:
        cfg = self.config
        window = cfg.context_window if context_window is None else context_window
        reserved = cfg.reserved_output_tokens if reserved_output_tokens is None else reserved_output_tokens
        validate_token_budget(window, reserved)

        resolver = tool_name_resolver or self._tool_name_resolver
        if resolver is None and cfg.tool_name_aliases:
            resolver = default_tool_alias

        return _RunDeps(
            provider=provider,
            tools=tools if tools is not None else ToolRegistry(),
            policy=policy or AllowAllPolicy(),
            executor=executor or InlineToolExecutor(),
            events=events or Events(),
            instrumenter=instrumenter or Instrumenter(),
            token_counter=token_counter,
            context_window=window,
            reserved_output_tokens=reserved,
            summary_mode=cfg.summary_mode,  # type: ignore[arg-type]
            tool_name_resolver=resolver,
        )

    @staticmethod
    def _driver(on_event: EventCallback | None, deps: _RunDeps) -> _SyncDriver | _StreamDriver:
        if on_event is None:
            return _SyncDriver()
        return _StreamDriver(on_event, deps.events)

    @staticmethod
    def _publish_resume(deps: _RunDeps, continuation: Continuation) -> None:
        logger.debug("Resuming run %s from %s", continuation.run_id, continuation.pause_reason)
        deps.instrumenter.publish(
            "promptloop.resume",
            {
                "run_id": continuation.run_id,
                "paused_turn_number": continuation.turn,
                "pause_reason": continuation.pause_reason,
                "continuation_id": continuation.continuation_id,
                "resumed": True,
            },
        )

    # ''''''''''''''''''''''''''''''''''''''
    # Resume validation
    # ''''''''''''''''''''''''''''''''''''''

    @staticmethod
    def _validate_confirmations(
        continuation: Continuation,
        tool_confirmations: Mapping[str, Any],
    ) -> dict[str, DecisionOutcome]:
        if not isinstance(continuation, Continuation):
            raise ResumeValidationError(f"continuation must be a Continuation (got {type(continuation).__name__})")
        if not continuation.awaiting_tool_confirmation:
            raise ResumeValidationError(
                f"continuation pause_reason is {continuation.pause_reason!r} (expected 'awaiting_tool_confirmation')"
            )
        if not isinstance(tool_confirmations, Mapping):
            raise ResumeValidationError("tool_confirmations must be a mapping of tool_call_id to allow/deny")

        expected = [item.tool_call_id for item in continuation.pending_tool_confirmations]
        supplied = {str(key): value for key, value in tool_confirmations.items()}

        unexpected = sorted(set(supplied) - set(expected))
        if unexpected:
            raise ResumeValidationError(f"unexpected tool confirmations for: {', '.join(unexpected)}")
        missing = [tool_call_id for tool_call_id in expected if tool_call_id not in supplied]
        if missing:
            raise ResumeValidationError(f"missing tool confirmations for: {', '.join(missing)}")

        resolved: dict[str, DecisionOutcome] = {}
        invalid = []
        for tool_call_id in expected:
            outcome = coerce_confirmation(supplied[tool_call_id])
            if outcome is None:
                invalid.append(tool_call_id)
            else:
                resolved[tool_call_id] = outcome
        if invalid:
            raise ResumeValidationError(f"tool confirmations must be allow or deny: {', '.join(invalid)}")
        return resolved

    @staticmethod
    def _validate_tool_results(
        continuation: Continuation,
        tool_results: Mapping[str, Any],
        *,
        allow_partial: bool,
    ) -> dict[str, ToolResult]:
        if not isinstance(continuation, Continuation):
            raise ResumeValidationError(f"continuation must be a Continuation (got {type(continuation).__name__})")
        if not continuation.awaiting_tool_results:
            raise ResumeValidationError(
                f"continuation pause_reason is {continuation.pause_reason!r} (expected 'awaiting_tool_results')"
            )
        if not isinstance(tool_results, Mapping) or not tool_results:
            raise ResumeValidationError("tool_results must be a non-empty mapping of tool_call_id to ToolResult")

        names = {item.tool_call_id: item.name for item in continuation.pending_tool_executions}
        unexpected = sorted(str(key) for key in tool_results if str(key) not in names)
        if unexpected:
            raise ResumeValidationError(f"unexpected tool results for: {', '.join(unexpected)}")

        supplied: dict[str, ToolResult] = {}
        invalid = []
        for key, value in tool_results.items():
            tool_call_id = str(key)
            if isinstance(value, ToolResult):
                result = value
            else:
                try:
                    result = ToolResult.from_dict(value)
                except ValueError:
                    invalid.append(tool_call_id)
                    continue
            supplied[tool_call_id] = limit_tool_result(
                result,
                max_bytes=continuation.max_tool_output_bytes,
                tool_name=names[tool_call_id],
            )
        if invalid:
            raise ResumeValidationError(f"invalid tool results for: {', '.join(sorted(invalid))}")

        existing = continuation.buffered_tool_results
        conflicts = sorted(key for key, result in supplied.items() if key in existing and existing[key] != result)
        if conflicts:
            raise ResumeValidationError(f"conflicting tool results already buffered for: {', '.join(conflicts)}")

        buffered = {**existing, **supplied}
        missing = [key for key in names if key not in buffered]
        if missing and not allow_partial:
            raise ResumeValidationError(f"missing tool results for: {', '.join(missing)}")
        return buffered
