from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module shapes tool input/output at the execution boundary: it caps oversized results to a byte
budget and builds bounded summaries of arguments and results for traces and telemetry.
"""

import json
import logging
from typing import Any, Literal

from .base import ToolResult

logger = logging.getLogger(__name__)

SummaryMode = Literal["safe", "debug"]

MAX_SUMMARY_BYTES = 2_000
TRUNCATION_MARKER = "\n\n[truncated]"

# Smallest budget that still fits an empty text result envelope.
MIN_TOOL_OUTPUT_BYTES = 64


def truncate_utf8_bytes(value: str, *, max_bytes: int) -> str:
    """Cut `value` to at most `max_bytes` UTF-8 bytes without splitting a character."""
    if max_bytes <= 0:
        return ""
    raw = value.encode("utf-8")
    if len(raw) <= max_bytes:
        return value
    return raw[:max_bytes].decode("utf-8", errors="ignore")


def estimate_tool_result_bytes(result: ToolResult) -> int:
    """Serialized size of a result's `content` and `error` fields."""
    try:
        payload = json.dumps(
            {"content": result.content, "error": result.error},
            ensure_ascii=False,
            separators=(",", ":"),
        )
    except (TypeError, ValueError):
        return len(result.text.encode("utf-8"))
    return len(payload.encode("utf-8"))


def limit_tool_result(result: ToolResult, *, max_bytes: int, tool_name: str) -> ToolResult:
    """
    Cap a tool result to `max_bytes`.

    Results within budget are returned unchanged. Oversized results keep their
    error flag but have their content replaced by a single text block (a
    truncated copy of the text, or an omission notice when there is no text),
    and gain `truncated`, `estimated_bytes` and `max_bytes` metadata.

    The replacement always fits the budget, so applying this function again
    returns the same object.

    Raises:
        ValueError: If `max_bytes` is below `MIN_TOOL_OUTPUT_BYTES`.
    """
    if not isinstance(result, ToolResult):
        return result
    if max_bytes < MIN_TOOL_OUTPUT_BYTES:
        raise ValueError(f"max_bytes must be >= {MIN_TOOL_OUTPUT_BYTES} (got {max_bytes})")

    estimated = estimate_tool_result_bytes(result)
    if estimated <= max_bytes:
        return result
    if result.metadata.get("truncated") is True and result.metadata.get("max_bytes") == max_bytes:
        return result

    empty = ToolResult(content=[{"type": "text", "text": ""}], error=result.error)
    budget = max_bytes - estimate_tool_result_bytes(empty)

    text = result.text
    if not text.strip():
        replacement = _fit_json_text(
            f"Tool '{tool_name}' output omitted because it exceeded the size limit (max_bytes={max_bytes}).",
            budget,
        )
    else:
        marker_bytes = _json_text_bytes(TRUNCATION_MARKER)
        if budget <= marker_bytes:
            replacement = _fit_json_text(TRUNCATION_MARKER, budget)
        else:
            replacement = _fit_json_text(text, budget - marker_bytes) + TRUNCATION_MARKER

    return ToolResult(
        content=[{"type": "text", "text": replacement}],
        error=result.error,
        metadata={
            **result.metadata,
            "truncated": True,
            "estimated_bytes": estimated,
            "max_bytes": max_bytes,
        },
    )


def summarize_tool_arguments(arguments: Any, *, mode: SummaryMode = "safe") -> str:
    """
    Bounded summary of tool arguments.

    `safe` mode reports shape only (type, key names, sizes); `debug` mode
    includes a JSON preview. Never raises.
    """
    try:
        if mode == "debug":
            text = json.dumps(arguments, ensure_ascii=False, default=str)
        else:
            text = _shape(arguments)
        return truncate_utf8_bytes(text, max_bytes=MAX_SUMMARY_BYTES)
    except Exception:
        logger.warning("Failed to summarize tool arguments", exc_info=True)
        return type(arguments).__name__


def summarize_tool_result(result: Any, *, mode: SummaryMode = "safe") -> str:
    """
    Bounded summary of a tool result.

    `safe` mode reports block types, byte counts and the error flag;
    `debug` mode adds a text preview. Never raises.
    """
    try:
        if not isinstance(result, ToolResult):
            preview = str(result) if mode == "debug" else type(result).__name__
            return truncate_utf8_bytes(preview, max_bytes=MAX_SUMMARY_BYTES)

        error = "true" if result.error else "false"
        text = result.text
        text_bytes = len(text.encode("utf-8"))

        if mode == "safe":
            types = sorted({str(block.get("type")) for block in result.content})
            summary = f"types={','.join(types)} text_bytes={text_bytes} error={error}"
            if result.metadata.get("truncated"):
                summary += " truncated=true"
            return truncate_utf8_bytes(summary, max_bytes=MAX_SUMMARY_BYTES)

        if result.has_non_text_content:
            types = sorted(
                {str(block.get("type")) for block in result.content if block.get("type") != "text"}
            )
            suffix = ""
            if text:
                suffix = " text=" + json.dumps(truncate_utf8_bytes(text, max_bytes=1_600), ensure_ascii=False)
            return truncate_utf8_bytes(
                f"non_text_types={','.join(types)} error={error}{suffix}",
                max_bytes=MAX_SUMMARY_BYTES,
            )
        return truncate_utf8_bytes(text, max_bytes=MAX_SUMMARY_BYTES)
    except Exception:
        logger.warning("Failed to summarize tool result", exc_info=True)
        return type(result).__name__


def _shape(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return f"string bytes={len(value.encode('utf-8'))}"
    size = len(json.dumps(value, ensure_ascii=False, default=str).encode("utf-8"))
    if isinstance(value, dict):
        keys = ",".join(sorted(str(k) for k in value.keys()))
        return f"object keys=[{keys}] bytes={size}"
    if isinstance(value, (list, tuple)):
        return f"array items={len(value)} bytes={size}"
    return type(value).__name__


def _json_text_bytes(value: str) -> int:
    return len(json.dumps(value, ensure_ascii=False)[1:-1].encode("utf-8"))


def _fit_json_text(value: str, budget: int) -> str:
    """Longest prefix of `value` whose JSON-escaped form fits in `budget` bytes."""
    out = truncate_utf8_bytes(value, max_bytes=budget)
    while out:
        excess = _json_text_bytes(out) - budget
        if excess <= 0:
            return out
        out = out[: max(0, len(out) - excess)]
    return out
