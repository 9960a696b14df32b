"""Entrypoint for the governed infrastructure tool server."""

from __future__ import annotations

import logging
import threading

from governed_infra import __version__
from governed_infra.config import load_settings
from governed_infra.logging_utils import configure_logging
from governed_infra.mcp_runtime import MCPServer
from governed_infra.tools import register_tools

logger = logging.getLogger(__name__)


def build_server() -> MCPServer:
    """Create and configure the stdio tool server."""
    settings = load_settings()
    configure_logging()

    server = MCPServer(
        name="governed-infra",
        version=__version__,
        instructions=settings.server.instructions,
    )
    logger.info("Initializing governed infra server v%s", __version__)
    if settings.logging.file:
        logger.info("Log file configured at: %s", settings.logging.file)
    register_tools(server)
    return server


def run_entrypoint() -> None:
    """Run the server based on transport settings."""
    settings = load_settings()
    if settings.server.transport_mode == "http":
        _run_http()
        return
    get_server().run()


def _run_http() -> None:
    import uvicorn

    from governed_infra.transport.http_server import create_http_app

    settings = load_settings()
    configure_logging()
    uvicorn.run(
        create_http_app(),
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,
    )


_server: MCPServer | None = None
_server_lock = threading.Lock()


def get_server() -> MCPServer:
    """Lazily build the process-wide server; nothing runs at import time."""
    global _server
    if _server is not None:
        return _server
    with _server_lock:
        if _server is None:
            _server = build_server()
        return _server


if __name__ == "__main__":  # pragma: no cover
    run_entrypoint()
