import asyncio
from unittest import mock

import pytest

from echo_net import cli
from echo_net.protocol import BindError, CommunicationError, ResolveError
from echo_utils.config import DEFAULT_CONFIG


class TestRunExitCodes:

    @pytest.mark.parametrize("run, main_name, error", [
        (cli.run_client, "client_main", ResolveError("nowhere.invalid")),
        (cli.run_client, "client_main", CommunicationError("no reply")),
        (cli.run_client, "client_main", BindError("no free port")),
        (cli.run_server, "server_main", BindError("port taken")),
    ])
    def test_endpoint_errors_exit_with_status_1(self, run, main_name, error):
        with mock.patch('echo_net.cli.setup_logging'), \
             mock.patch(f'echo_net.cli.{main_name}', mock.AsyncMock(side_effect=error)), \
             mock.patch('echo_net.cli.logger') as mock_logger:
            with pytest.raises(SystemExit) as excinfo:
                run()
            assert excinfo.value.code == 1
            mock_logger.critical.assert_called_once()

    @pytest.mark.parametrize("run, main_name", [
        (cli.run_client, "client_main"),
        (cli.run_server, "server_main"),
    ])
    def test_keyboard_interrupt_exits_cleanly(self, run, main_name, capsys):
        with mock.patch('echo_net.cli.setup_logging'), \
             mock.patch(f'echo_net.cli.{main_name}', mock.AsyncMock(side_effect=KeyboardInterrupt)):
            run()  # Should not raise SystemExit
        assert "shutting down" in capsys.readouterr().out

    def test_normal_exit(self):
        with mock.patch('echo_net.cli.setup_logging'), \
             mock.patch('echo_net.cli.server_main', mock.AsyncMock(return_value=None)):
            cli.run_server()


class TestClientMain:

    @pytest.mark.asyncio
    async def test_cancellation_closes_client(self):
        with mock.patch('echo_net.cli.load_config', mock.AsyncMock(return_value=dict(DEFAULT_CONFIG))), \
             mock.patch('echo_net.cli.EchoClient') as mock_client_cls:
            client = mock_client_cls.return_value
            client.run = mock.AsyncMock(side_effect=asyncio.CancelledError)
            await cli.client_main()
        mock_client_cls.assert_called_once_with(
            "localhost", port=DEFAULT_CONFIG["port"], buffer_size=DEFAULT_CONFIG["buffer_size"],
            reply_timeout=None,
        )
        client.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_communication_error_closes_and_propagates(self):
        with mock.patch('echo_net.cli.load_config', mock.AsyncMock(return_value=dict(DEFAULT_CONFIG))), \
             mock.patch('echo_net.cli.EchoClient') as mock_client_cls:
            client = mock_client_cls.return_value
            client.run = mock.AsyncMock(side_effect=CommunicationError("no reply"))
            with pytest.raises(CommunicationError):
                await cli.client_main()
        client.close.assert_called_once()


class TestServerMain:

    def _mock_server(self, mock_server_cls):
        server = mock_server_cls.return_value
        server.start = mock.AsyncMock()
        server.serve = mock.AsyncMock()
        server.local_address = ("0.0.0.0", DEFAULT_CONFIG["port"])
        return server

    @pytest.mark.asyncio
    async def test_cancellation_stops_server(self):
        with mock.patch('echo_net.cli.load_config', mock.AsyncMock(return_value=dict(DEFAULT_CONFIG))), \
             mock.patch('echo_net.cli.get_own_ip', mock.AsyncMock(return_value="10.0.0.2")), \
             mock.patch('echo_net.cli.EchoServer') as mock_server_cls:
            server = self._mock_server(mock_server_cls)
            server.serve.side_effect = asyncio.CancelledError
            await cli.server_main()
        mock_server_cls.assert_called_once_with(
            host="0.0.0.0", port=DEFAULT_CONFIG["port"], buffer_size=DEFAULT_CONFIG["buffer_size"],
        )
        server.stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_bind_error_stops_and_propagates(self):
        with mock.patch('echo_net.cli.load_config', mock.AsyncMock(return_value=dict(DEFAULT_CONFIG))), \
             mock.patch('echo_net.cli.get_own_ip', mock.AsyncMock(return_value="10.0.0.2")), \
             mock.patch('echo_net.cli.EchoServer') as mock_server_cls:
            server = self._mock_server(mock_server_cls)
            server.start.side_effect = BindError("port taken")
            with pytest.raises(BindError):
                await cli.server_main()
        server.serve.assert_not_called()
        server.stop.assert_called_once()


def test_logger_is_module_scoped():
    assert cli.logger.name == "echo_net.cli"
