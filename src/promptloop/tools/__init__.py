from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

promptloop Tools public API.

This package exposes:
- Core tool types (Tool, ToolSpec, ToolContext, ToolResult)
- The @tool decorator for authoring tools quickly
- ToolRegistry and the ToolsRegistry protocol consumed by the runner
- Output shaping helpers (size limiting and bounded summaries)
"""

from .base import Tool, ToolContext, ToolFn, ToolResult, ToolSpec, as_async
from .decorator import tool
from .errors import (
    ToolAlreadyRegisteredError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolTimeoutError,
    ToolValidationError,
)
from .output import (
    estimate_tool_result_bytes,
    limit_tool_result,
    summarize_tool_arguments,
    summarize_tool_result,
    truncate_utf8_bytes,
)
from .registry import RecentToolCall, ToolRegistry, ToolsRegistry

__all__ = [
    "RecentToolCall",
    "Tool",
    "ToolAlreadyRegisteredError",
    "ToolContext",
    "ToolError",
    "ToolExecutionError",
    "ToolFn",
    "ToolNotFoundError",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "ToolTimeoutError",
    "ToolValidationError",
    "ToolsRegistry",
    "as_async",
    "estimate_tool_result_bytes",
    "limit_tool_result",
    "summarize_tool_arguments",
    "summarize_tool_result",
    "tool",
    "truncate_utf8_bytes",
]
