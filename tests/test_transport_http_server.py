from unittest.mock import patch

import pytest
from starlette.testclient import TestClient

from governed_infra import __version__
from governed_infra.mcp_runtime import ToolResult, ToolSpec
from governed_infra.transport.http_server import MAX_BODY_BYTES, create_http_app


async def _echo(args):
    return ToolResult(content=[{"type": "text", "text": "ok"}], structured_content={"echo": args})


def _boom(args):
    raise RuntimeError("boom")


def _registry():
    return {
        "echo": ToolSpec("echo", "Echo arguments", {"type": "object"}, _echo),
        "boom": ToolSpec("boom", "Always fails", {"type": "object"}, _boom),
    }


@pytest.fixture
def client():
    with TestClient(create_http_app(_registry)) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "version": __version__}


def test_list_tools(client):
    tools = client.get("/tools").json()["tools"]
    assert [t["name"] for t in tools] == ["echo", "boom"]
    assert tools[0]["inputSchema"] == {"type": "object"}


def test_call_tool(client):
    response = client.post("/tools/call", json={"name": "echo", "arguments": {"a": 1}})
    assert response.status_code == 200
    assert response.json() == {
        "content": [{"type": "text", "text": "ok"}],
        "structuredContent": {"echo": {"a": 1}},
    }


def test_call_tool_without_arguments(client):
    response = client.post("/tools/call", json={"name": "echo"})
    assert response.json()["structuredContent"] == {"echo": {}}


@pytest.mark.parametrize(
    ("body", "status", "code"),
    [
        (b"{not json", 400, "invalid_json"),
        (b"[1, 2]", 400, "invalid_request"),
        (b'{"name": 3}', 400, "invalid_request"),
        (b'{"name": "missing"}', 404, "unknown_tool"),
        (b'{"name": "boom"}', 500, "internal_error"),
    ],
)
def test_call_tool_errors(client, body, status, code):
    response = client.post("/tools/call", content=body, headers={"content-type": "application/json"})
    assert response.status_code == status
    assert response.json()["error"]["code"] == code


def test_call_tool_rejects_large_body(client):
    body = b'{"name": "echo", "arguments": {"pad": "' + b"x" * MAX_BODY_BYTES + b'"}}'
    response = client.post("/tools/call", content=body)
    assert response.status_code == 413
    assert response.json()["error"]["code"] == "payload_too_large"


def test_default_registry_is_full_tool_set():
    with patch("governed_infra.tools.get_tool_registry", return_value=_registry()) as registry:
        with TestClient(create_http_app()) as test_client:
            names = [t["name"] for t in test_client.get("/tools").json()["tools"]]
    registry.assert_called()
    assert names == ["echo", "boom"]
