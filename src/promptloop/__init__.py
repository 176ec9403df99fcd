"""
promptloop: a provider-agnostic, tool-using LLM turn loop with pause/resume.
"""

from .core import (
    Continuation,
    ContinuationCodec,
    Decision,
    Events,
    Prompt,
    RunResult,
    Runner,
    RunnerConfig,
    ToolTaskCodec,
)
from .llms import ChatRequest, LLMResponse, Message, Provider, ToolCall, ToolDefinition, Usage
from .tools import ToolRegistry, ToolResult, tool

__all__ = [
    "Runner",
    "RunnerConfig",
    "Prompt",
    "RunResult",
    "Continuation",
    "ContinuationCodec",
    "ToolTaskCodec",
    "Decision",
    "Events",
    "ChatRequest",
    "LLMResponse",
    "Message",
    "Provider",
    "ToolCall",
    "ToolDefinition",
    "Usage",
    "ToolRegistry",
    "ToolResult",
    "tool",
]
