"""
Canonical promptloop runner assembled from focused mixins.
"""

from __future__ import annotations

from .config import RunnerConfig
from .runner_api import RunnerAPIMixin
from .runner_execution import RunnerExecutionMixin
from .runner_internals import RunnerInternalsMixin
from .runner_tools import RunnerToolsMixin


class Runner(
    RunnerExecutionMixin,
    RunnerToolsMixin,
    RunnerInternalsMixin,
    RunnerAPIMixin,
):
    """
    Provider-agnostic tool-using turn loop.

    Composition:
        - `RunnerAPIMixin`: public API (`run`, `resume`, `resume_with_tool_results` and streaming variants)
        - `RunnerExecutionMixin`: turn loop, preflight and empty-final fixup
        - `RunnerToolsMixin`: authorization, execution, pauses and resume completion
        - `RunnerInternalsMixin`: loop state, snapshots and result assembly
    """


__all__ = ["Runner", "RunnerConfig"]
