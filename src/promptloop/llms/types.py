from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines the provider-agnostic value types exchanged between the runner and an LLM provider.
"""

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal, NotRequired, Protocol, TypeAlias, TypedDict


JSONPrimitive: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]

Role = Literal["system", "user", "assistant", "tool_result"]
ROLES: tuple[str, ...] = ("system", "user", "assistant", "tool_result")

# Upper bound for a single tool call's raw argument payload.
DEFAULT_MAX_TOOL_ARGUMENT_BYTES = 200_000


class TextBlock(TypedDict):
    type: Literal["text"]
    text: str


class MediaBlock(TypedDict):
    type: Literal["image", "document", "audio"]
    source_type: Literal["base64", "url"]
    data: NotRequired[str]
    media_type: NotRequired[str]
    url: NotRequired[str]


ContentBlock: TypeAlias = TextBlock | MediaBlock
MessageContent: TypeAlias = str | list[ContentBlock]


class ToolFunctionSpec(TypedDict):
    name: str
    parameters: JSONObject
    description: NotRequired[str]


class ToolDefinition(TypedDict):
    type: Literal["function"]
    function: ToolFunctionSpec


@dataclass(frozen=True, slots=True)
class ToolCall:
    """
    Data-only representation of a model-returned tool call.

    `arguments_parse_error` is set when the raw arguments could not be turned
    into a JSON object; such calls are never authorized or executed.
    """

    id: str
    name: str
    arguments: JSONObject = field(default_factory=dict)
    arguments_parse_error: str | None = None

    @property
    def arguments_valid(self) -> bool:
        return self.arguments_parse_error is None

    @classmethod
    def from_raw(
        cls,
        *,
        id: str,
        name: str,
        raw_arguments: str | dict[str, Any] | None,
        max_bytes: int = DEFAULT_MAX_TOOL_ARGUMENT_BYTES,
    ) -> "ToolCall":
        arguments, error = parse_tool_arguments(raw_arguments, max_bytes=max_bytes)
        return cls(id=id, name=name, arguments=arguments, arguments_parse_error=error)


@dataclass(frozen=True, slots=True)
class Message:
    role: Role
    content: MessageContent
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Invalid role: {self.role!r}. Must be one of: {', '.join(ROLES)}")

    @property
    def text(self) -> str:
        """Text content; block content contributes only its text blocks."""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            str(block.get("text", ""))
            for block in self.content
            if isinstance(block, dict) and block.get("type") == "text"
        )

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @property
    def is_tool_result(self) -> bool:
        return self.role == "tool_result"


@dataclass(frozen=True, slots=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "Usage") -> "Usage":
        if not isinstance(other, Usage):
            return NotImplemented
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_creation_tokens=self.cache_creation_tokens + other.cache_creation_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cache_creation_tokens": self.cache_creation_tokens,
            "cache_read_tokens": self.cache_read_tokens,
            "total_tokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, value: dict[str, Any]) -> "Usage":
        return cls(
            input_tokens=int(value.get("input_tokens") or 0),
            output_tokens=int(value.get("output_tokens") or 0),
            cache_creation_tokens=int(value.get("cache_creation_tokens") or 0),
            cache_read_tokens=int(value.get("cache_read_tokens") or 0),
        )


@dataclass(frozen=True, slots=True)
class LLMResponse:
    message: Message | None
    usage: Usage | None = None
    stop_reason: str = "end_turn"


@dataclass(frozen=True, slots=True)
class ChatRequest:
    """
    Canonical request handed to a provider for one turn.

    `tools` is `None` when tools are not offered for the turn.
    """

    model: str | None
    messages: list[Message] = field(default_factory=list)
    tools: list[ToolDefinition] | None = None
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class StreamTextDeltaEvent:
    type: Literal["text_delta"] = "text_delta"
    delta: str = ""


@dataclass(frozen=True, slots=True)
class StreamMessageCompleteEvent:
    message: Message
    type: Literal["message_complete"] = "message_complete"


@dataclass(frozen=True, slots=True)
class StreamDoneEvent:
    type: Literal["done"] = "done"
    stop_reason: str = "end_turn"
    usage: Usage | None = None


ProviderStreamEvent: TypeAlias = StreamTextDeltaEvent | StreamMessageCompleteEvent | StreamDoneEvent


class Provider(Protocol):
    """
    LLM transport consumed by the runner.

    Retries, backoff and vendor translation belong to the provider; the
    runner propagates any exception raised here unchanged.
    """

    async def chat(self, request: ChatRequest) -> LLMResponse:
        """Return one complete response for `request`."""
        ...

    def chat_stream(self, request: ChatRequest) -> AsyncIterator[ProviderStreamEvent]:
        """Yield deltas, then a `StreamMessageCompleteEvent` and a `StreamDoneEvent`."""
        ...


def parse_tool_arguments(
    raw: str | dict[str, Any] | None,
    *,
    max_bytes: int = DEFAULT_MAX_TOOL_ARGUMENT_BYTES,
) -> tuple[JSONObject, str | None]:
    """
    Parse raw tool arguments into a JSON object.

    Returns:
        `(arguments, parse_error)` where `parse_error` is one of
        `invalid_json`, `not_an_object`, `arguments_too_large` or `None`.
    """
    if raw is None:
        return {}, None

    if isinstance(raw, dict):
        try:
            size = len(json.dumps(raw, ensure_ascii=False).encode("utf-8"))
        except (TypeError, ValueError):
            return {}, "invalid_json"
        if size > max_bytes:
            return {}, "arguments_too_large"
        return dict(raw), None

    text = str(raw)
    if len(text.encode("utf-8")) > max_bytes:
        return {}, "arguments_too_large"
    if not text.strip():
        return {}, None
    try:
        parsed = json.loads(text)
    except ValueError:
        return {}, "invalid_json"
    if not isinstance(parsed, dict):
        return {}, "not_an_object"
    return parsed, None
