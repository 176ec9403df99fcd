"""
JSON-safe conversion helpers for runner records.

Every `*_to_dict` output contains only strings, numbers, booleans, `None`,
lists and string-keyed dicts. Every `*_from_dict` raises `KeyError`,
`TypeError` or `ValueError` on malformed input; codecs translate those into
`ContinuationFormatError`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from ..llms.types import JSONValue, Message, ToolCall, Usage
from ..tools.base import ToolResult
from ..tools.output import truncate_utf8_bytes
from .types import (
    PendingToolExecution,
    ToolAuthorizationTrace,
    ToolCallRecord,
    ToolExecutionTrace,
    TurnTrace,
)

CONTEXT_ATTRIBUTE_MAX_BYTES = 200


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with microsecond precision, e.g. `2026-01-02T03:04:05.000006Z`."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_timestamp(value: Any) -> datetime:
    if not isinstance(value, str):
        raise TypeError(f"timestamp must be a string (got {type(value).__name__})")
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def json_safe(value: Any) -> JSONValue:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [json_safe(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): json_safe(item) for key, item in value.items()}
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return json_safe(to_dict())
    return str(value)


def select_context_attributes(
    attributes: Mapping[str, Any] | None,
    keys: Any,
    *,
    max_bytes: int = CONTEXT_ATTRIBUTE_MAX_BYTES,
) -> dict[str, str]:
    """Pick `keys` from `attributes`, each stringified and cut to `max_bytes`."""
    if keys is None:
        return {}
    if isinstance(keys, str):
        keys = [keys]
    selected: dict[str, str] = {}
    for key in keys:
        name = str(key).strip()
        if not name or name in selected or not attributes or name not in attributes:
            continue
        selected[name] = truncate_utf8_bytes(str(attributes[name]), max_bytes=max_bytes)
    return selected


def _require_dict(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise TypeError(f"{what} must be an object (got {type(value).__name__})")
    return value


def _require_list(value: Any, what: str) -> list[Any]:
    if not isinstance(value, list):
        raise TypeError(f"{what} must be a list (got {type(value).__name__})")
    return value


def tool_call_to_dict(call: ToolCall) -> dict[str, JSONValue]:
    return {
        "id": call.id,
        "name": call.name,
        "arguments": json_safe(call.arguments),
        "arguments_parse_error": call.arguments_parse_error,
    }


def tool_call_from_dict(value: Any) -> ToolCall:
    data = _require_dict(value, "tool call")
    return ToolCall(
        id=str(data["id"]),
        name=str(data["name"]),
        arguments=dict(_require_dict(data.get("arguments") or {}, "tool call arguments")),
        arguments_parse_error=data.get("arguments_parse_error"),
    )


def message_to_dict(message: Message) -> dict[str, JSONValue]:
    return {
        "role": message.role,
        "content": json_safe(message.content),
        "tool_calls": [tool_call_to_dict(call) for call in message.tool_calls],
        "tool_call_id": message.tool_call_id,
        "name": message.name,
        "metadata": json_safe(message.metadata),
    }


def message_from_dict(value: Any) -> Message:
    data = _require_dict(value, "message")
    content = data.get("content", "")
    if content is None:
        content = ""
    if not isinstance(content, (str, list)):
        raise TypeError("message content must be a string or a list of blocks")
    return Message(
        role=data["role"],
        content=content,
        tool_calls=[tool_call_from_dict(item) for item in _require_list(data.get("tool_calls") or [], "tool_calls")],
        tool_call_id=data.get("tool_call_id"),
        name=data.get("name"),
        metadata=dict(_require_dict(data.get("metadata") or {}, "message metadata")),
    )


def tool_result_from_dict(value: Any) -> ToolResult:
    return ToolResult.from_dict(_require_dict(value, "tool result"))


def usage_from_dict(value: Any) -> Usage:
    return Usage.from_dict(_require_dict(value or {}, "usage"))


def pending_execution_to_dict(pending: PendingToolExecution) -> dict[str, JSONValue]:
    return {
        "tool_call_id": pending.tool_call_id,
        "name": pending.name,
        "executed_name": pending.executed_name,
        "arguments": json_safe(pending.arguments),
        "arguments_summary": pending.arguments_summary,
        "source": pending.source,
    }


def pending_execution_from_dict(value: Any) -> PendingToolExecution:
    data = _require_dict(value, "pending tool execution")
    return PendingToolExecution(
        tool_call_id=str(data["tool_call_id"]),
        name=str(data["name"]),
        executed_name=str(data.get("executed_name") or data["name"]),
        arguments=dict(_require_dict(data.get("arguments") or {}, "pending execution arguments")),
        arguments_summary=str(data.get("arguments_summary") or ""),
        source=str(data.get("source") or "native"),
    )


def tool_call_record_to_dict(record: ToolCallRecord) -> dict[str, JSONValue]:
    return {
        "name": record.name,
        "tool_call_id": record.tool_call_id,
        "executed_name": record.executed_name,
        "arguments": json_safe(record.arguments),
        "error": record.error,
        "pending": record.pending,
        "deferred": record.deferred,
        "external": record.external,
    }


def tool_call_record_from_dict(value: Any) -> ToolCallRecord:
    data = _require_dict(value, "tool call record")
    return ToolCallRecord(
        name=str(data["name"]),
        tool_call_id=str(data["tool_call_id"]),
        executed_name=data.get("executed_name"),
        arguments=dict(data.get("arguments") or {}),
        error=data.get("error"),
        pending=bool(data.get("pending", False)),
        deferred=bool(data.get("deferred", False)),
        external=bool(data.get("external", False)),
    )


def turn_trace_to_dict(trace: TurnTrace) -> dict[str, JSONValue]:
    return {
        "turn_number": trace.turn_number,
        "started_at": format_timestamp(trace.started_at),
        "duration_ms": float(trace.duration_ms),
        "stop_reason": trace.stop_reason,
        "usage": None if trace.usage is None else trace.usage.to_dict(),
        "tool_calls_count": trace.tool_calls_count,
        "ignored_tool_call_ids": list(trace.ignored_tool_call_ids),
        "authorizations": [
            {
                "tool_call_id": item.tool_call_id,
                "name": item.name,
                "outcome": item.outcome,
                "reason": item.reason,
                "stage": item.stage,
            }
            for item in trace.authorizations
        ],
        "executions": [
            {
                "tool_call_id": item.tool_call_id,
                "name": item.name,
                "executed_name": item.executed_name,
                "source": item.source,
                "duration_ms": float(item.duration_ms),
                "error": item.error,
                "arguments_summary": item.arguments_summary,
                "result_summary": item.result_summary,
                "external": item.external,
            }
            for item in trace.executions
        ],
        "pause_reason": trace.pause_reason,
    }


def turn_trace_from_dict(value: Any) -> TurnTrace:
    data = _require_dict(value, "turn trace")
    usage = data.get("usage")
    return TurnTrace(
        turn_number=int(data["turn_number"]),
        started_at=parse_timestamp(data["started_at"]),
        duration_ms=float(data.get("duration_ms") or 0.0),
        stop_reason=data.get("stop_reason"),
        usage=None if usage is None else usage_from_dict(usage),
        tool_calls_count=int(data.get("tool_calls_count") or 0),
        ignored_tool_call_ids=[str(item) for item in data.get("ignored_tool_call_ids") or []],
        authorizations=[
            ToolAuthorizationTrace(
                tool_call_id=str(item["tool_call_id"]),
                name=str(item["name"]),
                outcome=str(item["outcome"]),
                reason=str(item.get("reason") or ""),
                stage=str(item.get("stage") or "policy"),
            )
            for item in _require_list(data.get("authorizations") or [], "authorizations")
        ],
        executions=[
            ToolExecutionTrace(
                tool_call_id=str(item["tool_call_id"]),
                name=str(item["name"]),
                executed_name=str(item.get("executed_name") or item["name"]),
                source=str(item.get("source") or "native"),
                duration_ms=float(item.get("duration_ms") or 0.0),
                error=bool(item.get("error", False)),
                arguments_summary=str(item.get("arguments_summary") or ""),
                result_summary=str(item.get("result_summary") or ""),
                external=bool(item.get("external", False)),
            )
            for item in _require_list(data.get("executions") or [], "executions")
        ],
        pause_reason=data.get("pause_reason"),
    )
