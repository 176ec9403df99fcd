"""
Observer hooks for runner lifecycle events.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from .errors import RunnerConfigurationError

logger = logging.getLogger(__name__)

HOOKS: tuple[str, ...] = (
    "turn_start",
    "turn_end",
    "llm_request",
    "llm_response",
    "stream_delta",
    "tool_call",
    "tool_result",
    "error",
)

Callback = Callable[..., Any]


class Events:
    """
    Best-effort observer registry.

    Callback arguments per hook:
        turn_start(turn_number)
        turn_end(turn_number, stop_reason)
        llm_request(request)
        llm_response(response)
        stream_delta(delta)
        tool_call(name, arguments, tool_call_id)
        tool_result(name, result, tool_call_id)
        error(error, recoverable)

    Callbacks run inline on the calling task. A failing callback never
    aborts the run: it is reported to the `error` hook with
    `recoverable=True`, and a failing `error` callback only ends that
    emission.
    """

    def __init__(self) -> None:
        self._callbacks: dict[str, list[Callback]] = {hook: [] for hook in HOOKS}

    def on(self, hook: str, callback: Callback) -> "Events":
        self._require_hook(hook)
        self._callbacks[hook].append(callback)
        return self

    def on_turn_start(self, callback: Callback) -> "Events":
        return self.on("turn_start", callback)

    def on_turn_end(self, callback: Callback) -> "Events":
        return self.on("turn_end", callback)

    def on_llm_request(self, callback: Callback) -> "Events":
        return self.on("llm_request", callback)

    def on_llm_response(self, callback: Callback) -> "Events":
        return self.on("llm_response", callback)

    def on_stream_delta(self, callback: Callback) -> "Events":
        return self.on("stream_delta", callback)

    def on_tool_call(self, callback: Callback) -> "Events":
        return self.on("tool_call", callback)

    def on_tool_result(self, callback: Callback) -> "Events":
        return self.on("tool_result", callback)

    def on_error(self, callback: Callback) -> "Events":
        return self.on("error", callback)

    def has_listeners(self, hook: str) -> bool:
        return bool(self._callbacks.get(hook))

    def emit(self, hook: str, *args: Any) -> None:
        self._require_hook(hook)
        if hook == "error":
            self._emit_error(*args)
            return
        for callback in list(self._callbacks[hook]):
            try:
                callback(*args)
            except Exception as e:
                logger.warning("Event callback for %s failed: %s", hook, e)
                self._emit_error(e, True)

    def _emit_error(self, *args: Any) -> None:
        for callback in list(self._callbacks["error"]):
            try:
                callback(*args)
            except Exception:
                logger.warning("Error hook callback failed; skipping remaining error callbacks", exc_info=True)
                return

    @staticmethod
    def _require_hook(hook: str) -> None:
        if hook not in HOOKS:
            raise RunnerConfigurationError(f"Unknown event hook: {hook!r}. Must be one of: {', '.join(HOOKS)}")
