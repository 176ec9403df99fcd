from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

promptloop LLM-facing value model and provider contract.
"""

from .content import normalize_media_type, validate_content_blocks
from .errors import LLMError, ProviderError
from .types import (
    ChatRequest,
    ContentBlock,
    JSONObject,
    JSONValue,
    LLMResponse,
    Message,
    MessageContent,
    Provider,
    ProviderStreamEvent,
    StreamDoneEvent,
    StreamMessageCompleteEvent,
    StreamTextDeltaEvent,
    ToolCall,
    ToolDefinition,
    Usage,
    parse_tool_arguments,
)

__all__ = [
    "ChatRequest",
    "ContentBlock",
    "JSONObject",
    "JSONValue",
    "LLMError",
    "LLMResponse",
    "Message",
    "MessageContent",
    "Provider",
    "ProviderError",
    "ProviderStreamEvent",
    "StreamDoneEvent",
    "StreamMessageCompleteEvent",
    "StreamTextDeltaEvent",
    "ToolCall",
    "ToolDefinition",
    "Usage",
    "normalize_media_type",
    "parse_tool_arguments",
    "validate_content_blocks",
]
