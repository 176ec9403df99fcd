from __future__ import annotations

import pytest

from promptloop.tools import (
    ToolResult,
    estimate_tool_result_bytes,
    limit_tool_result,
    summarize_tool_arguments,
    summarize_tool_result,
    truncate_utf8_bytes,
)


def test_truncate_utf8_bytes_never_splits_characters():
    assert truncate_utf8_bytes("héllo", max_bytes=2) == "h"
    assert truncate_utf8_bytes("héllo", max_bytes=3) == "hé"
    assert truncate_utf8_bytes("abc", max_bytes=10) == "abc"
    assert truncate_utf8_bytes("abc", max_bytes=0) == ""


def test_small_results_are_returned_unchanged():
    result = ToolResult.ok("tiny")

    assert limit_tool_result(result, max_bytes=1_000, tool_name="echo") is result


@pytest.mark.parametrize("max_bytes", [100, 257, 1_024])
def test_oversized_text_is_truncated_within_budget(max_bytes):
    result = ToolResult.fail("é\"\\" * 2_000, metadata={"source": "shell"})

    limited = limit_tool_result(result, max_bytes=max_bytes, tool_name="shell")

    assert estimate_tool_result_bytes(limited) <= max_bytes
    assert limited.error is True
    assert limited.text.endswith("[truncated]")
    assert limited.metadata["truncated"] is True
    assert limited.metadata["max_bytes"] == max_bytes
    assert limited.metadata["estimated_bytes"] == estimate_tool_result_bytes(result)
    assert limited.metadata["source"] == "shell"


def test_budgets_below_the_envelope_are_rejected():
    with pytest.raises(ValueError, match="max_bytes must be >= 64"):
        limit_tool_result(ToolResult.ok("x" * 500), max_bytes=10, tool_name="echo")

    limited = limit_tool_result(ToolResult.ok("x" * 500), max_bytes=64, tool_name="echo")
    assert estimate_tool_result_bytes(limited) <= 64
    assert limited.metadata["truncated"] is True


def test_limiting_is_idempotent():
    result = ToolResult.ok("x" * 5_000)

    once = limit_tool_result(result, max_bytes=256, tool_name="echo")
    twice = limit_tool_result(once, max_bytes=256, tool_name="echo")

    assert twice is once


def test_oversized_media_without_text_is_replaced_with_a_notice():
    result = ToolResult.with_content([{"type": "image", "source_type": "base64", "data": "A" * 4_000}])

    limited = limit_tool_result(result, max_bytes=512, tool_name="camera")

    assert not limited.has_non_text_content
    assert "Tool 'camera' output omitted" in limited.text
    assert estimate_tool_result_bytes(limited) <= 512


def test_argument_summaries_hide_values_in_safe_mode():
    arguments = {"path": "/etc/secret", "lines": [1, 2, 3]}

    safe = summarize_tool_arguments(arguments)
    debug = summarize_tool_arguments(arguments, mode="debug")

    assert safe.startswith("object keys=[lines,path]")
    assert "/etc/secret" not in safe
    assert "/etc/secret" in debug
    assert summarize_tool_arguments("abc") == "string bytes=3"
    assert summarize_tool_arguments(None) == "null"


def test_result_summaries_are_bounded():
    result = ToolResult.ok("y" * 10_000)

    assert summarize_tool_result(result) == "types=text text_bytes=10000 error=false"
    assert len(summarize_tool_result(result, mode="debug").encode("utf-8")) <= 2_000

    media = ToolResult.with_content(["caption", {"type": "image", "source_type": "url", "url": "u"}], error=True)
    assert summarize_tool_result(media, mode="debug") == 'non_text_types=image error=true text="caption"'


def test_summaries_never_raise():
    class Exploding:
        def __str__(self):
            raise RuntimeError("no")

    assert summarize_tool_arguments({"k": Exploding()}, mode="debug") == "dict"
    assert summarize_tool_result(Exploding(), mode="debug") == "Exploding"
