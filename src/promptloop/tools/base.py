from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines the types and base classes for tools that the runner can authorize and execute.
"""

import asyncio
import functools
import inspect
import json
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Type,
    TypeVar,
    Union,
)

from pydantic import BaseModel, ValidationError

from .errors import ToolExecutionError, ToolTimeoutError, ToolValidationError


ArgsT = TypeVar("ArgsT", bound=BaseModel)

AsyncToolFn = Callable[..., Awaitable[Any]]
SyncToolFn = Callable[..., Any]
ToolFn = Union[AsyncToolFn, SyncToolFn]


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """
    Stable tool metadata used for registry listing + model-facing export.
    """

    name: str
    description: str
    parameters_schema: Dict[str, Any]  # JSON Schema for the tool's arguments


@dataclass(frozen=True, slots=True)
class ToolContext:
    """
    Contextual information available to a tool during its execution.
    Keep it simple and serializable: deferred tasks rebuild it on another process from a tool task batch.
    """

    run_id: str | None = None
    turn_number: int | None = None
    tool_call_id: str | None = None
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolResult:
    """
    Standardized result of a tool execution.

    `content` is an ordered list of content blocks (`{"type": "text", "text": ...}`
    or media blocks); `error` marks a failed call the model should react to.
    """

    content: List[Dict[str, Any]] = field(default_factory=list)
    error: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "content", [_normalize_block(block) for block in self.content])
        object.__setattr__(self, "error", bool(self.error))
        object.__setattr__(self, "metadata", dict(self.metadata or {}))

    @property
    def text(self) -> str:
        return "\n".join(
            str(block.get("text", "")) for block in self.content if block.get("type") == "text"
        )

    @property
    def has_non_text_content(self) -> bool:
        return any(block.get("type") not in (None, "text") for block in self.content)

    def to_dict(self) -> Dict[str, Any]:
        return {"content": list(self.content), "error": self.error, "metadata": dict(self.metadata)}

    @classmethod
    def ok(cls, text: str, *, metadata: Optional[Dict[str, Any]] = None) -> "ToolResult":
        return cls(content=[{"type": "text", "text": text}], error=False, metadata=metadata or {})

    @classmethod
    def fail(cls, text: str, *, metadata: Optional[Dict[str, Any]] = None) -> "ToolResult":
        return cls(content=[{"type": "text", "text": text}], error=True, metadata=metadata or {})

    @classmethod
    def with_content(
        cls,
        blocks: List[Any],
        *,
        error: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "ToolResult":
        return cls(content=list(blocks), error=error, metadata=metadata or {})

    @classmethod
    def from_dict(cls, value: Dict[str, Any] | str) -> "ToolResult":
        """
        Build a ToolResult from a dict or its JSON string form.

        Intended for results produced by out-of-process workers.

        Raises:
            ValueError: If the payload is not a result-shaped object.
        """
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError as e:
                raise ValueError(f"tool result is not valid JSON: {e}") from e
        if not isinstance(value, dict):
            raise ValueError(f"tool result must be a dict or JSON string (got {type(value).__name__})")

        content = value.get("content")
        if not isinstance(content, list):
            raise ValueError("tool result content must be a list")
        metadata = value.get("metadata")
        if metadata is None:
            metadata = {}
        if not isinstance(metadata, dict):
            raise ValueError("tool result metadata must be a dict")
        return cls(content=content, error=bool(value.get("error", False)), metadata=metadata)


def _normalize_block(block: Any) -> Dict[str, Any]:
    if not isinstance(block, dict):
        return {"type": "text", "text": str(block)}
    out = {str(k): v for k, v in block.items()}
    if out.get("type") is None:
        return {**out, "type": "text"} if "text" in out else {"type": "text", "text": str(block)}
    out["type"] = str(out["type"])
    return out


def as_async(fn: ToolFn) -> AsyncToolFn:
    """
    Utility function to convert a synchronous function into an asynchronous one.
    This allows the registry and executors to treat all tools as async.
    """
    if asyncio.iscoroutinefunction(fn):
        return fn  # type: ignore[return-value]

    async def _wrapped(*args: Any, **kwargs: Any) -> Any:
        # run sync function in threadpool
        return await asyncio.to_thread(functools.partial(fn, *args, **kwargs))

    return _wrapped


def _infer_call_style(fn: Callable[..., Any]) -> str:
    """
    Determine how to call a tool based on the signature.

    Allowed:
      (args)
      (args, ctx)
      (ctx, args)

    We accept ctx by name "ctx" OR annotation ToolContext.
    """
    sig = inspect.signature(fn)
    params = list(sig.parameters.values())

    if any(p.kind in (p.VAR_KEYWORD, p.VAR_POSITIONAL) for p in params):
        raise ToolValidationError(
            f"Tool function '{getattr(fn, '__name__', 'unknown')}' cannot have *args or **kwargs."
        )

    if len(params) == 1:
        return "args"

    if len(params) == 2:
        p0, p1 = params

        if p0.annotation in (ToolContext, "ToolContext") or p0.name == "ctx":
            return "ctx_args"

        if p1.annotation in (ToolContext, "ToolContext") or p1.name == "ctx":
            return "args_ctx"

        raise ToolValidationError(
            f"Tool function '{getattr(fn, '__name__', 'unknown')}' must include ToolContext "
            f"as 'ctx' (by name or annotation). Signature: {sig}"
        )

    raise ToolValidationError(
        f"Tool function '{getattr(fn, '__name__', 'unknown')}' has invalid signature. "
        f"Expected (args) or (args, ctx) or (ctx, args). Got {sig}."
    )


def _coerce_output(output: Any) -> ToolResult:
    if isinstance(output, ToolResult):
        return output
    if output is None:
        return ToolResult.ok("")
    if isinstance(output, str):
        return ToolResult.ok(output)
    if isinstance(output, BaseModel):
        return ToolResult.ok(output.model_dump_json())
    return ToolResult.ok(json.dumps(output, ensure_ascii=False, default=str))


class Tool(Generic[ArgsT]):
    """
    Function-backed tool with a Pydantic v2 argument model.

    IMPORTANT: Tool.call returns ToolResult(error=True) and does NOT throw
    tool errors by default, so a failing tool never aborts a batch.

    `parallelizable` marks tools that a worker-pool executor may run
    concurrently with other parallelizable tools in the same turn.
    """

    def __init__(
        self,
        *,
        spec: ToolSpec,
        fn: ToolFn,
        args_model: Type[ArgsT],
        default_timeout: Optional[float] = None,
        parallelizable: bool = False,
        source: str = "native",
        raise_on_error: bool = False,
    ) -> None:
        self.spec = spec
        self._original_fn = fn
        self.fn = as_async(fn)
        self.args_model = args_model
        self.default_timeout = default_timeout
        self.parallelizable = parallelizable
        self.source = source
        self.raise_on_error = raise_on_error

        self._call_style = _infer_call_style(fn)

    @property
    def name(self) -> str:
        return self.spec.name

    def validate(self, raw_args: Dict[str, Any]) -> ArgsT:
        try:
            return self.args_model.model_validate(raw_args)
        except ValidationError as e:
            raise ToolValidationError(
                f"Invalid arguments for tool '{self.spec.name}': {e}"
            ) from e

    async def _invoke(self, args: ArgsT, ctx: ToolContext) -> Any:
        if self._call_style == "args":
            return await self.fn(args)
        if self._call_style == "args_ctx":
            return await self.fn(args, ctx)
        return await self.fn(ctx, args)

    async def call(
        self,
        raw_args: Dict[str, Any],
        *,
        ctx: Optional[ToolContext] = None,
        timeout: Optional[float] = None,
    ) -> ToolResult:
        ctx = ctx or ToolContext()

        try:
            args = self.validate(raw_args)
        except ToolValidationError as e:
            if self.raise_on_error:
                raise
            return ToolResult.fail(str(e))

        effective_timeout = timeout if timeout is not None else self.default_timeout

        try:
            if effective_timeout is not None:
                output = await asyncio.wait_for(self._invoke(args, ctx), timeout=effective_timeout)
            else:
                output = await self._invoke(args, ctx)
            return _coerce_output(output)

        except asyncio.TimeoutError:
            err = ToolTimeoutError(
                f"Tool '{self.spec.name}' execution exceeded timeout of {effective_timeout} seconds."
            )
            if self.raise_on_error:
                raise err
            return ToolResult.fail(str(err))

        except Exception as e:
            err = ToolExecutionError(f"Error executing tool '{self.spec.name}': {e}")
            if self.raise_on_error:
                raise err from e
            return ToolResult.fail(str(err))
