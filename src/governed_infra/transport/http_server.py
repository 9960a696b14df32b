"""Starlette HTTP app exposing the tool registry."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from governed_infra import __version__
from governed_infra.mcp_runtime import ToolSpec, call_tool
from governed_infra.utils.serialization import json_default

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 1_000_000


def _json(payload: object, status_code: int = 200) -> Response:
    body = json.dumps(payload, ensure_ascii=True, default=json_default)
    return Response(body, status_code=status_code, media_type="application/json")


def _error(message: str, status_code: int, code: str) -> Response:
    return JSONResponse({"error": {"code": code, "message": message}}, status_code=status_code)


def create_http_app(registry: Callable[[], dict[str, ToolSpec]] | None = None) -> Starlette:
    """Create the HTTP app. ``registry`` defaults to the full tool registry."""
    if registry is None:
        from governed_infra.tools import get_tool_registry

        registry = get_tool_registry

    async def health_handler(request: Request) -> Response:
        return JSONResponse({"status": "healthy", "version": __version__})

    async def tools_handler(request: Request) -> Response:
        tools = [
            {"name": t.name, "description": t.description, "inputSchema": t.input_schema}
            for t in registry().values()
        ]
        return _json({"tools": tools})

    async def call_handler(request: Request) -> Response:
        raw = await request.body()
        if len(raw) > MAX_BODY_BYTES:
            return _error("Request body too large", 413, "payload_too_large")
        try:
            body = json.loads(raw or b"{}")
        except json.JSONDecodeError:
            return _error("Invalid JSON", 400, "invalid_json")
        if not isinstance(body, dict) or not isinstance(body.get("name"), str):
            return _error("Body must be an object with a string 'name'", 400, "invalid_request")

        tools = registry()
        tool = tools.get(body["name"])
        if tool is None:
            return _error(f"Unknown tool: {body['name'][:256]}", 404, "unknown_tool")
        arguments = body.get("arguments")
        arguments = arguments if isinstance(arguments, dict) else {}
        try:
            result = await call_tool(tool, arguments)
        except Exception:
            logger.exception("Tool execution error: %s", tool.name)
            return _error("Internal tool error", 500, "internal_error")
        return _json({"content": result.content, "structuredContent": result.structured_content})

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Starting HTTP tool server v%s", __version__)
        try:
            yield
        finally:
            logger.info("Stopping HTTP tool server")

    routes = [
        Route("/health", endpoint=health_handler, methods=["GET"]),
        Route("/tools", endpoint=tools_handler, methods=["GET"]),
        Route("/tools/call", endpoint=call_handler, methods=["POST"]),
    ]
    return Starlette(routes=routes, lifespan=lifespan)
