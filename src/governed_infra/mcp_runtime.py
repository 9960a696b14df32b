"""Line-delimited JSON-RPC tool server over stdio."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import IO, Any, cast

from pydantic import BaseModel

from governed_infra.utils.serialization import json_default

logger = logging.getLogger(__name__)

JSONRPC_SERVER_ERROR = -32000


@dataclass
class ToolSpec:
    name: str
    description: str
    input_schema: dict[str, object]
    handler: Callable[[dict[str, object]], "ToolResult | Awaitable[ToolResult]"]


class ToolResult(BaseModel):
    content: list[dict[str, object]]
    structured_content: dict[str, object] | None = None


async def call_tool(tool: ToolSpec, arguments: dict[str, object]) -> ToolResult:
    raw_result = tool.handler(arguments)
    if _is_awaitable(raw_result):
        result = await cast(Awaitable[ToolResult], raw_result)
    else:
        result = cast(ToolResult, raw_result)
    if not isinstance(result, ToolResult):
        raise TypeError("Tool handler did not return ToolResult")
    return result


class MCPServer:
    """Serves ``initialize``, ``tools/list`` and ``tools/call``, one request per line."""

    def __init__(self, name: str, version: str, instructions: str) -> None:
        self._name = name
        self._version = version
        self._instructions = instructions
        self._tools: dict[str, ToolSpec] = {}

    @property
    def tools(self) -> dict[str, ToolSpec]:
        return dict(self._tools)

    def add_tool(self, tool: ToolSpec) -> None:
        self._tools[tool.name] = tool

    def run(self, stdin: IO[str] | None = None, stdout: IO[str] | None = None) -> None:
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        loop = asyncio.new_event_loop()
        try:
            for line in stdin:
                line = line.strip()
                if not line:
                    continue
                try:
                    request = json.loads(line)
                except json.JSONDecodeError:
                    self._write(stdout, _error(None, "Invalid JSON"))
                    continue
                response = loop.run_until_complete(self.handle(request))
                if response is not None:
                    self._write(stdout, response)
        finally:
            loop.close()

    async def handle(self, request: object) -> dict[str, object] | None:
        """Response envelope for one decoded request; ``None`` for notifications."""
        if not isinstance(request, dict):
            return _error(None, "Invalid JSON-RPC request")

        request_id = request.get("id")
        method = request.get("method")
        raw_params = request.get("params", {})
        params = raw_params if isinstance(raw_params, dict) else {}

        if method == "initialize":
            return _result(
                request_id,
                {
                    "serverInfo": {"name": self._name, "version": self._version},
                    "instructions": self._instructions,
                    "capabilities": {"tools": {}},
                },
            )
        if method == "notifications/initialized":
            return None
        if method == "tools/list":
            tools = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "inputSchema": tool.input_schema,
                }
                for tool in self._tools.values()
            ]
            return _result(request_id, {"tools": tools})
        if method == "tools/call":
            name = params.get("name")
            if not isinstance(name, str):
                return _error(request_id, "Invalid tool name")
            if name not in self._tools:
                return _error(request_id, f"Unknown tool: {name}")
            raw_arguments = params.get("arguments", {})
            arguments = raw_arguments if isinstance(raw_arguments, dict) else {}
            try:
                tool_result = await call_tool(self._tools[name], arguments)
            except (KeyboardInterrupt, SystemExit):
                raise
            except Exception as exc:
                logger.exception("Tool execution error: %s", exc)
                return _error(request_id, "Internal tool error")
            return _result(
                request_id,
                {
                    "content": tool_result.content,
                    "structuredContent": tool_result.structured_content,
                },
            )

        method_name = method if isinstance(method, str) else repr(method)
        return _error(request_id, f"Unsupported method: {method_name[:256]}")

    @staticmethod
    def _write(stdout: IO[str], payload: dict[str, object]) -> None:
        stdout.write(json.dumps(payload, default=json_default) + "\n")
        stdout.flush()


def _result(request_id: object, result: dict[str, object]) -> dict[str, object]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _error(request_id: object, message: str) -> dict[str, object]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {"code": JSONRPC_SERVER_ERROR, "message": message},
    }


def _is_awaitable(value: object) -> bool:
    try:
        return inspect.isawaitable(value)
    except TypeError:
        return False
