"""
Unit tests for configuration and the command-line entry point.
"""

import logging

import pytest

from cgiscript.__main__ import build_parser, config_from_args, main
from cgiscript.access_log import AccessLogger, RequestLog
from cgiscript.config import RuntimeConfig
from cgiscript.core.executor import ExecutionMode


class TestRuntimeConfig:
    """Tests for RuntimeConfig."""

    def test_defaults(self):
        """Test the default values."""
        config = RuntimeConfig()

        assert config.mode == "cached"
        assert config.execution_mode is ExecutionMode.CACHED
        assert config.debug is False
        assert config.allow_debug_param is False
        assert config.session_cookie == "CGISESSID"
        assert config.max_body_size == 10 * 1024 * 1024
        assert config.session_dir.endswith("sessions")
        config.validate()

    def test_from_env(self):
        """Test reading every variable."""
        config = RuntimeConfig.from_env({
            "CGISCRIPT_MODE": "Direct",
            "CGISCRIPT_DEBUG": "1",
            "CGISCRIPT_ALLOW_DEBUG_PARAM": "true",
            "CGISCRIPT_SESSION_DIR": "/s",
            "CGISCRIPT_UPLOAD_DIR": "/u",
            "CGISCRIPT_CACHE_DIR": "/c",
            "CGISCRIPT_SESSION_COOKIE": "SID",
            "CGISCRIPT_MAX_BODY_SIZE": "1024",
            "CGISCRIPT_LOG_LEVEL": "debug",
            "CGISCRIPT_LOG_FORMAT": "JSON",
        })

        assert config.mode == "direct"
        assert config.debug is True
        assert config.allow_debug_param is True
        assert (config.session_dir, config.upload_dir, config.cache_dir) == ("/s", "/u", "/c")
        assert config.session_cookie == "SID"
        assert config.max_body_size == 1024
        assert config.log_level == "DEBUG"
        assert config.log_format == "json"

    def test_plain_debug_variable(self):
        """Test that DEBUG=1 also enables diagnostics."""
        assert RuntimeConfig.from_env({"DEBUG": "1"}).debug is True
        assert RuntimeConfig.from_env({"DEBUG": "0"}).debug is False

    @pytest.mark.parametrize("changes", [
        {"mode": "turbo"},
        {"max_body_size": -1},
        {"read_chunk_size": 0},
        {"session_cookie": "bad name"},
        {"session_cookie": ""},
        {"log_level": "LOUD"},
        {"log_format": "xml"},
    ])
    def test_validate_rejects(self, changes):
        """Test fail-fast validation."""
        config = RuntimeConfig(**changes)
        with pytest.raises(ValueError):
            config.validate()

    def test_ensure_directories(self, tmp_path):
        """Test that all three directories are created."""
        config = RuntimeConfig(
            session_dir=str(tmp_path / "a" / "s"),
            upload_dir=str(tmp_path / "a" / "u"),
            cache_dir=str(tmp_path / "a" / "c"),
        )

        config.ensure_directories()

        assert all((tmp_path / "a" / name).is_dir() for name in ("s", "u", "c"))


class TestAccessLog:
    """Tests for the access log entries."""

    def test_text_format(self):
        """Test the Apache-style line."""
        entry = RequestLog(
            request_id="a1b2c3d4", method="GET", script="/p.cgs", query="",
            client_ip="10.0.0.7", user_agent="-", status_code=200, bytes=12,
            duration_ms=5.2, mode="cached", timestamp="18/Oct/2026:10:55:36 +0000",
        )

        assert entry.to_text() == (
            '10.0.0.7 - - [18/Oct/2026:10:55:36 +0000] "GET /p.cgs" 200 12 5.20ms cached a1b2c3d4'
        )

    def test_missing_values_become_dashes(self, caplog):
        """Test placeholders for absent request data."""
        caplog.set_level(logging.INFO, logger="cgiscript.access")
        access = AccessLogger()
        entry = access.entry("id", "", "", "", "", "", 500, 0, 1.0, "direct")

        access.log(entry)

        assert '- - - [' in caplog.records[-1].getMessage()
        assert '"- -" 500' in caplog.records[-1].getMessage()


class TestCommandLine:
    """Tests for python -m cgiscript."""

    def test_overrides(self):
        """Test that arguments override the environment."""
        args = build_parser().parse_args([
            "page.cgs", "--mode", "isolated", "--debug",
            "--cache-dir", "/tmp/c", "--log-level", "info", "--log-format", "json",
        ])

        config = config_from_args(args, {"CGISCRIPT_MODE": "direct"})

        assert args.script == "page.cgs"
        assert config.mode == "isolated"
        assert config.debug is True
        assert config.cache_dir == "/tmp/c"
        assert config.log_level == "INFO"
        assert config.log_format == "json"

    def test_invalid_mode_rejected(self):
        """Test that argparse rejects unknown modes."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--mode", "turbo"])

    def test_renders_script(self, tmp_path, monkeypatch, capsysbinary):
        """Test rendering a template from the command line."""
        for name in ("SESSION", "UPLOAD", "CACHE"):
            monkeypatch.setenv(f"CGISCRIPT_{name}_DIR", str(tmp_path / name.lower()))
        monkeypatch.setenv("QUERY_STRING", "name=Ada")
        monkeypatch.delenv("CONTENT_LENGTH", raising=False)
        monkeypatch.delenv("PATH_TRANSLATED", raising=False)
        script = tmp_path / "hello.cgs"
        script.write_text("Hello <? append(query['name']) ?>", encoding="utf-8")

        code = main([str(script), "--mode", "isolated"])

        out = capsysbinary.readouterr().out
        assert code == 0
        assert out.endswith(b"\r\n\r\nHello Ada")

    def test_bad_environment_exit_code(self, monkeypatch, capsys):
        """Test that an unusable configuration exits with status 2."""
        monkeypatch.setenv("CGISCRIPT_MAX_BODY_SIZE", "lots")

        assert main([]) == 2
        assert "Configuration error" in capsys.readouterr().err
