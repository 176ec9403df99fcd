"""
Runner configuration and validation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from ..tools.output import MIN_TOOL_OUTPUT_BYTES
from .errors import RunnerConfigurationError

SUMMARY_MODES = ("safe", "debug")


@dataclass(frozen=True, slots=True)
class RunnerConfig:
    """
    Runtime configuration for turn-loop behavior and resource limits.

    Attributes:
        max_turns: Maximum LLM calls per run (resumes share the budget).
        max_tool_output_bytes: Byte budget for each tool result.
        max_tool_calls_per_turn: Optional cap on tool calls honored per
            turn; excess calls are ignored.
        max_tool_argument_bytes: Cap applied when providers parse raw tool
            arguments through `ToolCall.from_raw`.
        fix_empty_final: Retry once when the model returns a blank final
            answer after using tools.
        fix_empty_final_user_text: User message appended for that retry.
        fix_empty_final_disable_tools: Stop offering tools from the retry on.
        context_window: Optional context window (tokens) for the preflight
            check.
        reserved_output_tokens: Tokens reserved for the response when
            checking the context window.
        summary_mode: Fidelity of argument/result summaries (`safe` or
            `debug`).
        tool_name_aliases: Resolve unregistered dotted tool names to their
            underscored alias.
    """

    max_turns: int = 10
    max_tool_output_bytes: int = 200_000
    max_tool_calls_per_turn: int | None = None
    max_tool_argument_bytes: int = 200_000
    fix_empty_final: bool = True
    fix_empty_final_user_text: str = "Please provide your final answer."
    fix_empty_final_disable_tools: bool = True
    context_window: int | None = None
    reserved_output_tokens: int = 0
    summary_mode: str = "safe"
    tool_name_aliases: bool = True

    def validate(self) -> "RunnerConfig":
        """
        Check every limit and return `self`.

        Raises:
            RunnerConfigurationError: If any value is out of range.
        """
        validate_max_turns(self.max_turns)
        validate_tool_output_bytes(self.max_tool_output_bytes)
        validate_tool_calls_per_turn(self.max_tool_calls_per_turn)
        _require_positive_int("max_tool_argument_bytes", self.max_tool_argument_bytes)
        validate_token_budget(self.context_window, self.reserved_output_tokens)
        if self.summary_mode not in SUMMARY_MODES:
            raise RunnerConfigurationError(
                f"summary_mode must be one of: {', '.join(SUMMARY_MODES)} (got {self.summary_mode!r})"
            )
        return self

    @staticmethod
    def from_env() -> "RunnerConfig":
        """
        Build a validated config from `PROMPTLOOP_*` environment variables.

        Raises:
            RunnerConfigurationError: If a variable is not an integer where one
                is expected, or a value is out of range.
        """
        return RunnerConfig(
            max_turns=_env_int("PROMPTLOOP_MAX_TURNS", 10),
            max_tool_output_bytes=_env_int("PROMPTLOOP_MAX_TOOL_OUTPUT_BYTES", 200_000),
            max_tool_calls_per_turn=_env_int("PROMPTLOOP_MAX_TOOL_CALLS_PER_TURN", None),
            max_tool_argument_bytes=_env_int("PROMPTLOOP_MAX_TOOL_ARGUMENT_BYTES", 200_000),
            fix_empty_final=_env_flag("PROMPTLOOP_FIX_EMPTY_FINAL", True),
            fix_empty_final_user_text=os.getenv(
                "PROMPTLOOP_FIX_EMPTY_FINAL_USER_TEXT", "Please provide your final answer."
            ),
            fix_empty_final_disable_tools=_env_flag("PROMPTLOOP_FIX_EMPTY_FINAL_DISABLE_TOOLS", True),
            context_window=_env_int("PROMPTLOOP_CONTEXT_WINDOW", None),
            reserved_output_tokens=_env_int("PROMPTLOOP_RESERVED_OUTPUT_TOKENS", 0),
            summary_mode=os.getenv("PROMPTLOOP_SUMMARY_MODE", "safe"),
            tool_name_aliases=_env_flag("PROMPTLOOP_TOOL_NAME_ALIASES", True),
        ).validate()


def validate_max_turns(value: Any) -> int:
    return _require_positive_int("max_turns", value)


def validate_tool_output_bytes(value: Any) -> int:
    _require_positive_int("max_tool_output_bytes", value)
    if value < MIN_TOOL_OUTPUT_BYTES:
        raise RunnerConfigurationError(
            f"max_tool_output_bytes must be >= {MIN_TOOL_OUTPUT_BYTES} (got {value})"
        )
    return value


def validate_tool_calls_per_turn(value: Any) -> int | None:
    if value is None:
        return None
    return _require_positive_int("max_tool_calls_per_turn", value)


def validate_token_budget(context_window: Any, reserved_output_tokens: Any) -> None:
    if not _is_int(reserved_output_tokens) or reserved_output_tokens < 0:
        raise RunnerConfigurationError(
            f"reserved_output_tokens must be a non-negative integer (got {reserved_output_tokens!r})"
        )
    if context_window is None:
        return
    _require_positive_int("context_window", context_window)
    if reserved_output_tokens >= context_window:
        raise RunnerConfigurationError(
            f"reserved_output_tokens ({reserved_output_tokens}) must be smaller than "
            f"context_window ({context_window})"
        )


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_positive_int(name: str, value: Any) -> int:
    if not _is_int(value) or value < 1:
        raise RunnerConfigurationError(f"{name} must be a positive integer (got {value!r})")
    return value


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise RunnerConfigurationError(f"{name} must be an integer (got {raw!r})") from None
