"""Tool registration helpers.

Three groups of tools are exposed:
- governed create actions (resource group, plan, web app, key vault, storage, workspace)
- read-only baseline scans
- governed remediation (web app, app plan, resource group autofix)
"""

from __future__ import annotations

from governed_infra.logging_utils import get_logger
from governed_infra.mcp_runtime import MCPServer, ToolSpec
from governed_infra.tools.remediation import remediation_tools
from governed_infra.tools.resources import create_tools
from governed_infra.tools.scan import scan_tools

__all__ = ["get_tool_registry", "get_tool_specs", "register_tools"]


def get_tool_specs() -> list[ToolSpec]:
    return [*create_tools, *scan_tools, *remediation_tools]


def get_tool_registry() -> dict[str, ToolSpec]:
    return {tool.name: tool for tool in get_tool_specs()}


def register_tools(server: MCPServer) -> None:
    logger = get_logger(__name__)
    specs = get_tool_specs()
    for tool in specs:
        server.add_tool(tool)
    logger.info("Registered %d tools: %s", len(specs), ", ".join(t.name for t in specs))
