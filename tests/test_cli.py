"""
Tests for command line parsing and the entry point.
"""

from unittest.mock import MagicMock, patch

import pytest

from agentmail_mcp import cli


class TestParseArgs:
    """Tests for parse_args."""

    def test_no_arguments(self):
        assert cli.parse_args([]) == {}

    def test_port(self):
        assert cli.parse_args(["--port", "3000"]) == {"port": 3000}

    def test_stdio(self):
        assert cli.parse_args(["--stdio"]) == {"stdio": True}

    @pytest.mark.parametrize("argv", [
        ["--port", "5000", "--stdio"],
        ["--stdio", "--port", "5000"],
    ])
    def test_flags_in_any_order(self, argv):
        assert cli.parse_args(argv) == {"port": 5000, "stdio": True}

    @pytest.mark.parametrize("argv", [["--port"], ["--stdio", "--port"]])
    def test_port_requires_value(self, argv):
        with pytest.raises(SystemExit) as exc_info:
            cli.parse_args(argv)
        assert exc_info.value.code != 0

    def test_non_numeric_port(self):
        with pytest.raises(SystemExit):
            cli.parse_args(["--port", "abc"])

    def test_unknown_flags_ignored(self):
        assert cli.parse_args(["--unknown1", "--unknown2", "value"]) == {}

    def test_help(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.parse_args(["--help"])

        assert exc_info.value.code == 0
        out = capsys.readouterr().out
        assert "AgentMail MCP Server" in out
        assert "USAGE:" in out
        assert "OPTIONS:" in out
        assert "ENVIRONMENT VARIABLES:" in out


class TestMain:
    """Tests for main."""

    def test_missing_api_key_exits(self, monkeypatch, capsys):
        monkeypatch.delenv("AGENTMAIL_API_KEY", raising=False)
        monkeypatch.setattr("agentmail_mcp.config.load_dotenv", lambda: False)

        with pytest.raises(SystemExit) as exc_info:
            cli.main([])

        assert exc_info.value.code == 1
        assert "AGENTMAIL_API_KEY" in capsys.readouterr().err

    def test_stdio_mode(self, monkeypatch):
        monkeypatch.setenv("AGENTMAIL_API_KEY", "test-api-key")
        server = MagicMock()

        with patch("agentmail_mcp.server.create_standalone_server", return_value=server) as factory:
            cli.main(["--stdio"])

        factory.assert_called_once()
        server.run_stdio.assert_called_once()

    def test_http_mode_uses_cli_port(self, monkeypatch):
        monkeypatch.setenv("AGENTMAIL_API_KEY", "test-api-key")
        seen = {}

        async def fake_run(config):
            seen["port"] = config.port

        with patch("agentmail_mcp.http_transport.run_http_transport", fake_run):
            cli.main(["--port", "4321"])

        assert seen["port"] == 4321
