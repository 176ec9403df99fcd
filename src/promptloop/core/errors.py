"""
Runner-layer error taxonomy.
"""

from __future__ import annotations


class RunnerError(Exception):
    """Base exception for all runner failures."""
    pass


class RunnerConfigurationError(RunnerError):
    """
    Raised when runner configuration is invalid.

    Typical cases:
    - non-positive `max_turns` or byte/turn limits
    - invalid token budget values
    - unknown event hook names
    - collaborators that break their contract (e.g. an executor returning
      both completed and deferred executions)
    """
    pass


class ContextWindowExceededError(RunnerError):
    """Raised by the preflight check when a request cannot fit the context window."""

    def __init__(
        self,
        *,
        message_tokens: int,
        tool_tokens: int,
        context_window: int,
        reserved_output_tokens: int,
    ) -> None:
        self.message_tokens = message_tokens
        self.tool_tokens = tool_tokens
        self.estimated_tokens = message_tokens + tool_tokens
        self.context_window = context_window
        self.reserved_output_tokens = reserved_output_tokens
        self.limit = context_window - reserved_output_tokens
        super().__init__(
            f"Estimated {self.estimated_tokens} prompt tokens exceed the limit of {self.limit} "
            f"(context_window={context_window}, reserved_output_tokens={reserved_output_tokens})"
        )


class ResumeValidationError(RunnerError):
    """Raised when resume input does not match the paused continuation. No state is changed."""
    pass


class ContinuationFormatError(RunnerError):
    """Raised when a serialized continuation or tool task batch cannot be loaded."""
    pass


class MaxTurnsExceededError(RunnerError):
    """Reported to the `error` event hook when a run exhausts its turn budget."""

    def __init__(self, max_turns: int) -> None:
        super().__init__(f"Max turns exceeded ({max_turns})")
        self.max_turns = max_turns
