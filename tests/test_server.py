from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from governed_infra import __version__, server as server_module
from governed_infra.server import _run_http, build_server, get_server, run_entrypoint


def _settings(transport_mode: str = "stdio", log_file: str | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        server=SimpleNamespace(
            instructions="Instructions",
            transport_mode=transport_mode,
            host="127.0.0.1",
            port=8000,
        ),
        logging=SimpleNamespace(level="INFO", file=log_file),
    )


@patch("governed_infra.server.load_settings")
@patch("governed_infra.server.MCPServer")
@patch("governed_infra.server.register_tools")
@patch("governed_infra.server.configure_logging")
def test_build_server(mock_log, mock_register, mock_server_cls, mock_settings):
    mock_settings.return_value = _settings(log_file="test.log")
    mock_instance = MagicMock()
    mock_server_cls.return_value = mock_instance

    server = build_server()

    assert mock_server_cls.call_args.kwargs == {
        "name": "governed-infra",
        "version": __version__,
        "instructions": "Instructions",
    }
    mock_log.assert_called_once()
    mock_register.assert_called_once_with(mock_instance)
    assert server is mock_instance


def test_build_server_registers_every_tool():
    with patch("governed_infra.server.configure_logging"), patch(
        "governed_infra.tools.get_logger"
    ):
        server = build_server()
    assert "scan_resource_group_baseline" in server.tools
    assert len(server.tools) == 14


@patch("governed_infra.server.build_server")
def test_get_server_is_lazy_and_cached(mock_build, monkeypatch):
    monkeypatch.setattr(server_module, "_server", None)
    mock_build.return_value = MagicMock()

    first = get_server()
    second = get_server()

    assert first is second
    mock_build.assert_called_once()


@patch("governed_infra.server.load_settings")
@patch("governed_infra.server._run_http")
@patch("governed_infra.server.get_server")
def test_run_entrypoint_stdio(mock_get_server, mock_run_http, mock_settings):
    mock_settings.return_value = _settings("stdio")

    run_entrypoint()

    mock_get_server.return_value.run.assert_called_once_with()
    mock_run_http.assert_not_called()


@patch("governed_infra.server.load_settings")
@patch("governed_infra.server._run_http")
@patch("governed_infra.server.get_server")
def test_run_entrypoint_http(mock_get_server, mock_run_http, mock_settings):
    mock_settings.return_value = _settings("http")

    run_entrypoint()

    mock_run_http.assert_called_once_with()
    mock_get_server.assert_not_called()


@patch("governed_infra.server.load_settings")
@patch("governed_infra.server.configure_logging")
@patch("governed_infra.transport.http_server.create_http_app")
@patch("uvicorn.run")
def test_run_http(mock_uvicorn_run, mock_create_app, mock_log, mock_settings):
    mock_settings.return_value = _settings("http")
    app = MagicMock()
    mock_create_app.return_value = app

    _run_http()

    mock_log.assert_called_once()
    mock_uvicorn_run.assert_called_once_with(app, host="127.0.0.1", port=8000, log_config=None)
