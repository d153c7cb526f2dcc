"""Tests for the vlessgate CLI."""

from __future__ import annotations

import json
import os
from unittest.mock import MagicMock, patch
from uuid import UUID

from click.testing import CliRunner

from vlessgate.cli import main

CLIENT_UUID = UUID("0d3c8f6e-3d5a-4c61-9a53-0b6f3c1b2a77")

CLEAN_ENV = {
    "VLESSGATE_UUID": None,
    "UUID": None,
    "VLESSGATE_PORT": None,
    "PORT": None,
    "VLESSGATE_NAME": None,
    "NAME": None,
}


class TestCLIBasics:
    """Basic CLI tests."""

    def test_main_with_help(self):
        """Test --help lists the commands."""
        runner = CliRunner()
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "VLESS over WebSocket" in result.output
        assert "serve" in result.output
        assert "config" in result.output

    def test_version_command(self):
        """Test version command."""
        runner = CliRunner()
        result = runner.invoke(main, ["version"])

        assert result.exit_code == 0
        assert "Version:" in result.output
        assert "Python:" in result.output

    def test_serve_help(self):
        runner = CliRunner()
        result = runner.invoke(main, ["serve", "--help"])

        assert result.exit_code == 0
        for option in ("--uuid", "--port", "--name", "--path-prefix", "--metrics"):
            assert option in result.output


class TestServeCommand:
    """Tests for serve command startup checks."""

    def test_missing_uuid(self):
        runner = CliRunner()
        result = runner.invoke(main, ["serve"], env=CLEAN_ENV)

        assert result.exit_code == 1
        assert "UUID is required" in result.output

    def test_invalid_uuid(self):
        runner = CliRunner()
        result = runner.invoke(main, ["serve", "--uuid", "not-a-uuid"], env=CLEAN_ENV)

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_invalid_port(self):
        runner = CliRunner()
        result = runner.invoke(
            main, ["serve", "--uuid", str(CLIENT_UUID), "--port", "70000"], env=CLEAN_ENV
        )

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_serve_runs_server(self):
        runner = CliRunner()
        run_server = MagicMock(return_value=None)

        with (
            patch("vlessgate.cli.run_server", run_server),
            patch("vlessgate.cli.asyncio.run") as mock_run,
        ):
            result = runner.invoke(
                main,
                ["serve", "--uuid", str(CLIENT_UUID), "--port", "8080", "--name", "edge"],
                env=CLEAN_ENV,
            )

        assert result.exit_code == 0, result.output
        mock_run.assert_called_once()
        config = run_server.call_args.args[0]
        assert config.port == 8080
        assert config.uuid == CLIENT_UUID
        assert config.ws_path == "/work-tunnel-edge"
        assert "/work-tunnel-edge" in result.output

    def test_uuid_from_env(self):
        runner = CliRunner()
        run_server = MagicMock(return_value=None)

        with patch("vlessgate.cli.run_server", run_server), patch("vlessgate.cli.asyncio.run"):
            result = runner.invoke(
                main, ["serve"], env={**CLEAN_ENV, "UUID": str(CLIENT_UUID), "PORT": "9000"}
            )

        assert result.exit_code == 0, result.output
        config = run_server.call_args.args[0]
        assert config.uuid == CLIENT_UUID
        assert config.port == 9000

    def test_port_unavailable(self):
        runner = CliRunner()

        with (
            patch("vlessgate.cli.run_server", MagicMock(return_value=None)),
            patch("vlessgate.cli.asyncio.run", side_effect=OSError("address already in use")),
        ):
            result = runner.invoke(main, ["serve", "--uuid", str(CLIENT_UUID)], env=CLEAN_ENV)

        assert result.exit_code == 1
        assert "Failed to start server" in result.output

    def test_missing_tls_files_exit(self, tmp_path, unused_tcp_port):
        """A bad certificate stops startup instead of serving plain HTTP."""
        runner = CliRunner()
        result = runner.invoke(
            main,
            [
                "serve",
                "--uuid", str(CLIENT_UUID),
                "--host", "127.0.0.1",
                "--port", str(unused_tcp_port),
                "--cert", str(tmp_path / "missing.pem"),
                "--key", str(tmp_path / "missing.key"),
            ],
            env=CLEAN_ENV,
        )

        assert result.exit_code == 1
        assert "Certificate file not found" in result.output
        assert "Server started" not in result.output

    def test_config_file(self, tmp_path):
        path = tmp_path / "gateway.yaml"
        path.write_text(
            f"uuid: {CLIENT_UUID}\nport: 4000\nmetrics: true\n"
            "timeouts:\n  connect_timeout: 3\n"
        )
        runner = CliRunner()
        run_server = MagicMock(return_value=None)

        with (
            patch.dict(os.environ, {}),
            patch("vlessgate.cli.run_server", run_server),
            patch("vlessgate.cli.asyncio.run"),
        ):
            os.environ.pop("VLESSGATE_CONNECT_TIMEOUT", None)
            result = runner.invoke(main, ["serve", "--config", str(path)], env=CLEAN_ENV)
            assert os.environ["VLESSGATE_CONNECT_TIMEOUT"] == "3"

        assert result.exit_code == 0, result.output
        config = run_server.call_args.args[0]
        assert config.port == 4000
        assert config.metrics_enabled is True

    def test_bad_config_file(self, tmp_path):
        path = tmp_path / "gateway.ini"
        path.write_text("uuid = x\n")
        runner = CliRunner()
        result = runner.invoke(main, ["serve", "--config", str(path)], env=CLEAN_ENV)

        assert result.exit_code == 1
        assert "Failed to load config" in result.output


class TestConfigCommand:
    """Tests for config show."""

    def test_config_show_json(self):
        runner = CliRunner()
        result = runner.invoke(main, ["config", "show", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["timeouts"]["connect_timeout"] == 10.0
        assert data["resources"]["max_sessions"] == 1024

    def test_config_show_section(self):
        runner = CliRunner()
        result = runner.invoke(main, ["config", "show", "--json", "--section", "timeouts"])

        assert result.exit_code == 0
        assert list(json.loads(result.output)) == ["timeouts"]

    def test_config_show_table(self):
        runner = CliRunner()
        result = runner.invoke(main, ["config", "show"])

        assert result.exit_code == 0
        assert "VLESSGATE_MAX_SESSIONS" in result.output

    def test_config_show_env(self):
        runner = CliRunner()
        result = runner.invoke(main, ["config", "show", "--env"])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert "VLESSGATE_CONNECT_TIMEOUT=10.0" in lines
        assert "VLESSGATE_MAX_SESSIONS=1024" in lines

    def test_config_show_env_section(self):
        runner = CliRunner()
        result = runner.invoke(main, ["config", "show", "--env", "--section", "resources"])

        assert result.exit_code == 0
        assert "VLESSGATE_MAX_SESSIONS=1024" in result.output
        assert "VLESSGATE_CONNECT_TIMEOUT" not in result.output

    def test_config_show_unknown_section(self):
        runner = CliRunner()
        result = runner.invoke(main, ["config", "show", "--section", "nope"])

        assert result.exit_code == 1
        assert "Unknown section" in result.output
