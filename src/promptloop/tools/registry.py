from __future__ import annotations
"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module implements the ToolRegistry.
It stores tools by name, executes them asynchronously with concurrency limiting and a registry-level
default timeout, records recent calls, and exports tool specs to LLM function-calling format.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol

from .base import Tool, ToolContext, ToolResult, ToolSpec
from .errors import ToolAlreadyRegisteredError, ToolNotFoundError

logger = logging.getLogger(__name__)


class ToolsRegistry(Protocol):
    """
    Capability interface the runner consumes.

    `find` returns an object exposing `parallelizable` and `source`
    attributes (or `None` when the name is unknown).
    """

    def find(self, name: str) -> Any | None: ...

    def has(self, name: str) -> bool: ...

    async def execute(
        self,
        name: str,
        arguments: Dict[str, Any],
        context: ToolContext | None = None,
    ) -> ToolResult: ...


@dataclass(frozen=True, slots=True)
class RecentToolCall:
    tool_name: str
    started_at_s: float
    ended_at_s: float
    ok: bool
    error: Optional[str] = None
    tool_call_id: Optional[str] = None


class ToolRegistry:
    """
    Stores tools by name and provides safe async execution with:
      - concurrency limiting
      - registry-level default timeout
      - tool spec export for LLM tool-calling
    """

    def __init__(
        self,
        *,
        max_concurrency: int = 32,
        default_timeout: float | None = None,
        max_recent_calls: int = 1000,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

        self._tools: Dict[str, Tool[Any]] = {}
        self._sem = asyncio.Semaphore(max_concurrency)
        self._default_timeout = default_timeout
        self._records: List[RecentToolCall] = []
        self._max_recent_calls = max_recent_calls

    # ''''''''''''''''''''''''''''''''''''''
    # Registration / discovery
    # ''''''''''''''''''''''''''''''''''''''

    def register(self, tool: Tool[Any], *, overwrite: bool = False) -> "ToolRegistry":
        name = tool.spec.name
        if name in self._tools:
            if not overwrite:
                raise ToolAlreadyRegisteredError(f"Tool already registered: {name}")
            logger.warning("Tool %s overwrites an existing registration", name)
        self._tools[name] = tool
        return self

    def register_many(self, tools: Iterable[Tool[Any]], *, overwrite: bool = False) -> "ToolRegistry":
        for t in tools:
            self.register(t, overwrite=overwrite)
        return self

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def find(self, name: str) -> Tool[Any] | None:
        return self._tools.get(name)

    def get(self, name: str) -> Tool[Any]:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def list(self) -> List[Tool[Any]]:
        return list(self._tools.values())

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def has(self, name: str) -> bool:
        return name in self._tools

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    # ''''''''''''''''''''''''''''''''''''''
    # Execution
    # ''''''''''''''''''''''''''''''''''''''

    async def execute(
        self,
        name: str,
        arguments: Dict[str, Any],
        context: ToolContext | None = None,
        *,
        timeout: float | None = None,
    ) -> ToolResult:
        """
        Execute a registered tool by name.

        Timeout precedence:
          1) execute(timeout=...)
          2) tool.default_timeout
          3) registry default_timeout

        Raises:
            ToolNotFoundError: If no tool is registered under `name`.
        """
        tool = self.get(name)
        ctx = context or ToolContext()
        effective_timeout = (
            timeout
            if timeout is not None
            else (tool.default_timeout if tool.default_timeout is not None else self._default_timeout)
        )

        started = time.time()
        async with self._sem:
            try:
                res = await tool.call(arguments, ctx=ctx, timeout=effective_timeout)
            except Exception as e:
                self._record(name, started, ok=False, error=str(e), tool_call_id=ctx.tool_call_id)
                raise

        self._record(
            name,
            started,
            ok=not res.error,
            error=res.text if res.error else None,
            tool_call_id=ctx.tool_call_id,
        )
        return res

    def _record(
        self,
        name: str,
        started: float,
        *,
        ok: bool,
        error: str | None,
        tool_call_id: str | None,
    ) -> None:
        self._records.append(
            RecentToolCall(
                tool_name=name,
                started_at_s=started,
                ended_at_s=time.time(),
                ok=ok,
                error=error,
                tool_call_id=tool_call_id,
            )
        )
        if len(self._records) > self._max_recent_calls:
            del self._records[: len(self._records) - self._max_recent_calls]

    # ''''''''''''''''''''''''''''''''''''''
    # Observability
    # ''''''''''''''''''''''''''''''''''''''

    def recent_calls(self, limit: int = 100) -> List[RecentToolCall]:
        return self._records[-limit:]

    # ''''''''''''''''''''''''''''''''''''''
    # Export / specs
    # ''''''''''''''''''''''''''''''''''''''

    def specs(self) -> List[ToolSpec]:
        return [t.spec for t in self._tools.values()]

    def definitions(self) -> List[Dict[str, Any]]:
        """
        Export registry tools in OpenAI function-tool format:
        [
          {"type":"function","function":{"name":...,"description":...,"parameters":...}},
          ...
        ]
        """
        out: List[Dict[str, Any]] = []
        for t in self._tools.values():
            out.append(
                {
                    "type": "function",
                    "function": {
                        "name": t.spec.name,
                        "description": t.spec.description,
                        "parameters": t.spec.parameters_schema,
                    },
                }
            )
        return out
