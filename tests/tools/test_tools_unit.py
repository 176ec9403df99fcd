from __future__ import annotations

import asyncio

import pytest
from pydantic import BaseModel

from promptloop.tools import (
    Tool,
    ToolAlreadyRegisteredError,
    ToolContext,
    ToolNotFoundError,
    ToolRegistry,
    ToolResult,
    ToolSpec,
    ToolTimeoutError,
    ToolValidationError,
    as_async,
    tool,
)


def run_async(coro):
    return asyncio.run(coro)


class EchoArgs(BaseModel):
    text: str


class AddArgs(BaseModel):
    a: int
    b: int


def test_as_async_supports_sync_and_async_functions():
    def sync_fn(value: int) -> int:
        return value + 1

    async def async_fn(value: int) -> int:
        return value + 2

    sync_wrapped = as_async(sync_fn)
    async_wrapped = as_async(async_fn)

    assert run_async(sync_wrapped(10)) == 11
    assert run_async(async_wrapped(10)) == 12


def test_tool_decorator_uses_docstring_for_default_description():
    @tool(args_model=EchoArgs)
    def doc_tool(args: EchoArgs) -> str:
        """Echoes transformed user text."""
        return args.text

    assert doc_tool.spec.name == "doc_tool"
    assert doc_tool.spec.description == "Echoes transformed user text."
    assert doc_tool.spec.parameters_schema["type"] == "object"
    assert doc_tool.parallelizable is False
    assert doc_tool.source == "native"


def test_tool_function_signature_variants_are_supported():
    @tool(args_model=EchoArgs, name="args_only")
    def args_only(args: EchoArgs) -> str:
        return args.text

    @tool(args_model=EchoArgs, name="args_ctx")
    def args_ctx(args: EchoArgs, ctx: ToolContext) -> str:
        return f"{ctx.run_id}:{args.text}"

    @tool(args_model=EchoArgs, name="ctx_args")
    def ctx_args(ctx: ToolContext, args: EchoArgs) -> str:
        return f"{ctx.tool_call_id}:{args.text}"

    result_1 = run_async(args_only.call({"text": "hello"}))
    result_2 = run_async(args_ctx.call({"text": "hello"}, ctx=ToolContext(run_id="run_1")))
    result_3 = run_async(ctx_args.call({"text": "hello"}, ctx=ToolContext(tool_call_id="tc_1")))

    assert not result_1.error and result_1.text == "hello"
    assert not result_2.error and result_2.text == "run_1:hello"
    assert not result_3.error and result_3.text == "tc_1:hello"


def test_invalid_tool_signature_is_rejected():
    with pytest.raises(ToolValidationError):

        @tool(args_model=EchoArgs, name="bad")
        def bad(first: EchoArgs, second: str) -> str:
            return first.text + second

        _ = bad


def test_tool_outputs_are_coerced_to_results():
    class Out(BaseModel):
        total: int

    @tool(args_model=AddArgs, name="as_dict")
    def as_dict(args: AddArgs) -> dict[str, int]:
        return {"total": args.a + args.b}

    @tool(args_model=AddArgs, name="as_model")
    def as_model(args: AddArgs) -> Out:
        return Out(total=args.a + args.b)

    @tool(args_model=AddArgs, name="as_none")
    def as_none(args: AddArgs) -> None:
        return None

    assert run_async(as_dict.call({"a": 1, "b": 2})).text == '{"total": 3}'
    assert run_async(as_model.call({"a": 1, "b": 2})).text == '{"total":3}'
    assert run_async(as_none.call({"a": 1, "b": 2})) == ToolResult.ok("")


def test_tool_validation_and_execution_errors_return_failed_tool_result():
    @tool(args_model=AddArgs, name="add")
    def add_tool(args: AddArgs) -> int:
        if args.b == 0:
            raise ValueError("b cannot be zero here")
        return args.a + args.b

    bad_validation = run_async(add_tool.call({"a": 1}))
    bad_execution = run_async(add_tool.call({"a": 1, "b": 0}))

    assert bad_validation.error is True
    assert "Invalid arguments" in bad_validation.text

    assert bad_execution.error is True
    assert "Error executing tool 'add'" in bad_execution.text


def test_tool_raise_on_error_raises_instead_of_returning_failure():
    @tool(args_model=AddArgs, name="must_add", raise_on_error=True)
    def must_add(args: AddArgs) -> int:
        return args.a + args.b

    with pytest.raises(ToolValidationError):
        run_async(must_add.call({"a": 1}))


def test_tool_timeout_behavior_with_and_without_raise_on_error():
    @tool(args_model=EchoArgs, name="slow", timeout=0.01)
    async def slow_tool(args: EchoArgs) -> str:
        await asyncio.sleep(0.05)
        return args.text

    failed = run_async(slow_tool.call({"text": "x"}))
    assert failed.error is True
    assert "execution exceeded timeout" in failed.text

    @tool(args_model=EchoArgs, name="slow_raise", timeout=0.01, raise_on_error=True)
    async def slow_raise(args: EchoArgs) -> str:
        await asyncio.sleep(0.05)
        return args.text

    with pytest.raises(ToolTimeoutError):
        run_async(slow_raise.call({"text": "x"}))


def test_registry_execute_records_recent_calls():
    @tool(args_model=AddArgs, name="add_two")
    def add_two(args: AddArgs) -> int:
        return args.a + args.b

    registry = ToolRegistry(default_timeout=1.0)
    registry.register(add_two)

    result = run_async(registry.execute("add_two", {"a": 1, "b": 3}, ToolContext(tool_call_id="tcid-1")))

    assert result == ToolResult.ok("4")
    calls = registry.recent_calls(limit=1)
    assert len(calls) == 1
    assert calls[0].tool_name == "add_two"
    assert calls[0].ok is True
    assert calls[0].tool_call_id == "tcid-1"


def test_registry_duplicate_and_unknown_tool_errors():
    @tool(args_model=EchoArgs, name="echo_dup")
    def echo_dup(args: EchoArgs) -> str:
        return args.text

    registry = ToolRegistry()
    registry.register(echo_dup)

    with pytest.raises(ToolAlreadyRegisteredError):
        registry.register(echo_dup)
    registry.register(echo_dup, overwrite=True)

    assert registry.has("echo_dup")
    assert "echo_dup" in registry
    assert registry.find("missing") is None
    with pytest.raises(ToolNotFoundError, match="Tool not found: missing"):
        run_async(registry.execute("missing", {"text": "x"}))

    registry.unregister("echo_dup")
    assert registry.names() == []


def test_registry_timeout_precedence():
    @tool(args_model=EchoArgs, name="slow_tool", timeout=0.5)
    async def slow_tool(args: EchoArgs) -> str:
        await asyncio.sleep(0.05)
        return args.text

    registry = ToolRegistry(default_timeout=0.01)
    registry.register(slow_tool)

    timed_out = run_async(registry.execute("slow_tool", {"text": "x"}, timeout=0.001))
    assert timed_out.error is True
    assert registry.recent_calls()[-1].ok is False

    completed = run_async(registry.execute("slow_tool", {"text": "ok"}))
    assert completed.text == "ok"


def test_registry_exports_function_definitions():
    @tool(args_model=EchoArgs, name="exportable", description="export me")
    def exportable(args: EchoArgs) -> str:
        return args.text

    registry = ToolRegistry().register(exportable)

    [definition] = registry.definitions()
    assert definition["type"] == "function"
    assert definition["function"]["name"] == "exportable"
    assert definition["function"]["description"] == "export me"
    assert definition["function"]["parameters"]["type"] == "object"
    assert registry.specs() == [exportable.spec]


def test_tool_class_direct_instantiation():
    def core_fn(args: EchoArgs) -> str:
        return args.text[::-1]

    direct = Tool(
        spec=ToolSpec(name="reverse", description="reverse text", parameters_schema=EchoArgs.model_json_schema()),
        fn=core_fn,
        args_model=EchoArgs,
        parallelizable=True,
        source="mcp",
    )

    assert direct.name == "reverse"
    assert direct.parallelizable is True
    assert direct.source == "mcp"
    assert run_async(direct.call({"text": "abc"})).text == "cba"


def test_tool_result_normalizes_blocks_and_loads_worker_payloads():
    result = ToolResult(content=["plain", {"text": "implicit"}, {"type": "image", "source_type": "url", "url": "u"}])

    assert result.content[0] == {"type": "text", "text": "plain"}
    assert result.content[1] == {"text": "implicit", "type": "text"}
    assert result.text == "plain\nimplicit"
    assert result.has_non_text_content

    loaded = ToolResult.from_dict('{"content": [{"type": "text", "text": "hi"}], "error": true, "metadata": {"k": 1}}')
    assert loaded == ToolResult.fail("hi", metadata={"k": 1})
    assert ToolResult.from_dict(loaded.to_dict()) == loaded

    with pytest.raises(ValueError):
        ToolResult.from_dict("not json")
    with pytest.raises(ValueError):
        ToolResult.from_dict({"content": "text"})
    with pytest.raises(ValueError):
        ToolResult.from_dict({"content": [], "metadata": []})
    with pytest.raises(ValueError):
        ToolResult.from_dict({"content": [], "metadata": ""})
    assert ToolResult.from_dict({"content": [], "metadata": None}).metadata == {}
