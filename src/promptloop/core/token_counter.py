"""
Token estimation for the context-window preflight check.
"""

from __future__ import annotations

import json
import math
from typing import Any, Protocol

from ..llms.types import Message, ToolDefinition

# Fixed per-message overhead for role and framing tokens.
MESSAGE_OVERHEAD_TOKENS = 4
CHARS_PER_TOKEN = 4


class TokenCounter(Protocol):
    def count_messages(self, messages: list[Message]) -> int: ...

    def count_tools(self, tools: list[ToolDefinition] | None) -> int: ...


class HeuristicTokenCounter:
    """Character-based estimate: roughly four characters per token."""

    def count_messages(self, messages: list[Message]) -> int:
        return sum(self._count_message(message) for message in messages)

    def count_tools(self, tools: list[ToolDefinition] | None) -> int:
        if not tools:
            return 0
        return _chars_to_tokens(len(json.dumps(tools, ensure_ascii=False, default=str)))

    def _count_message(self, message: Message) -> int:
        chars = len(_content_text(message.content))
        for call in message.tool_calls:
            chars += len(call.name) + len(json.dumps(call.arguments, ensure_ascii=False, default=str))
        return _chars_to_tokens(chars) + MESSAGE_OVERHEAD_TOKENS


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
        else:
            parts.append(json.dumps(block, ensure_ascii=False, default=str))
    return "".join(parts)


def _chars_to_tokens(chars: int) -> int:
    return math.ceil(chars / CHARS_PER_TOKEN)
