"""Tests for logger.py -- setup_logging() and JsonFormatter.

Covers:
- CLI mode logging (stderr handler, optional file handler)
- Service mode logging (file handler when configured, stderr otherwise)
- Debug level override and LOG_LEVEL handling
- JSON formatter output
- Third-party logger silencing

Strategy: Mock logging.basicConfig to verify setup_logging passes correct args,
since pytest's log capture plugin interferes with actual basicConfig calls.
"""

import json
import logging
import sys
from unittest.mock import patch

from docsflow_sync.logger import JsonFormatter, setup_logging


def _close_files(handlers):
    for h in handlers:
        if isinstance(h, logging.FileHandler):
            h.close()


# ---------------------------------------------------------------------------
# setup_logging tests
# ---------------------------------------------------------------------------


class TestSetupLogging:
    """Tests for setup_logging()."""

    @patch("docsflow_sync.logger.logging.basicConfig")
    def test_cli_mode_logs_to_stderr(self, mock_basic):
        """CLI mode logs to stderr only."""
        setup_logging(mode="cli")

        mock_basic.assert_called_once()
        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)
        assert handlers[0].stream is sys.stderr

    @patch("docsflow_sync.logger.logging.basicConfig")
    def test_cli_mode_with_log_file(self, mock_basic, tmp_path):
        """CLI mode with log_file creates both stderr and file handlers."""
        setup_logging(mode="cli", log_file=str(tmp_path / "cli.log"))

        handlers = mock_basic.call_args[1]["handlers"]
        assert [type(h) for h in handlers] == [
            logging.StreamHandler,
            logging.FileHandler,
        ]
        _close_files(handlers)

    @patch("docsflow_sync.logger.logging.basicConfig")
    def test_service_mode_logs_to_file_only(self, mock_basic, tmp_path):
        """Service mode with a file keeps stderr quiet."""
        log_file = str(tmp_path / "service.log")
        setup_logging(mode="service", log_file=log_file)

        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.FileHandler)
        assert handlers[0].baseFilename == log_file
        _close_files(handlers)

    @patch("docsflow_sync.logger.logging.basicConfig")
    def test_service_mode_log_file_from_env(self, mock_basic, tmp_path, monkeypatch):
        log_file = str(tmp_path / "env.log")
        monkeypatch.setenv("LOG_FILE", log_file)
        setup_logging(mode="service")

        handlers = mock_basic.call_args[1]["handlers"]
        assert handlers[0].baseFilename == log_file
        _close_files(handlers)

    @patch("docsflow_sync.logger.logging.basicConfig")
    def test_service_mode_without_file_uses_stderr(self, mock_basic, monkeypatch):
        """Service mode falls back to stderr when no file is set."""
        monkeypatch.delenv("LOG_FILE", raising=False)
        setup_logging(mode="service")

        handlers = mock_basic.call_args[1]["handlers"]
        assert handlers[0].stream is sys.stderr

    @patch("docsflow_sync.logger.logging.basicConfig")
    def test_debug_beats_env(self, mock_basic, monkeypatch):
        """The debug flag overrides LOG_LEVEL."""
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("docsflow_sync.logger.logging.basicConfig")
    def test_env_log_level_honored(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "error")
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.ERROR

    @patch("docsflow_sync.logger.logging.basicConfig")
    def test_config_level_used_when_env_unset(self, mock_basic, monkeypatch):
        """The configured level applies unless LOG_LEVEL is set."""
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="service", level="debug")
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="service", level="debug")
        assert mock_basic.call_args[1]["level"] == logging.ERROR

    @patch("docsflow_sync.logger.logging.basicConfig")
    def test_default_levels(self, mock_basic, monkeypatch):
        """INFO for the CLI, WARNING for the service."""
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.delenv("LOG_FILE", raising=False)
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.INFO
        setup_logging(mode="service")
        assert mock_basic.call_args[1]["level"] == logging.WARNING

    @patch("docsflow_sync.logger.logging.basicConfig")
    def test_json_format_uses_json_formatter(self, mock_basic):
        setup_logging(mode="cli", debug_format="json")
        handlers = mock_basic.call_args[1]["handlers"]
        assert isinstance(handlers[0].formatter, JsonFormatter)

    @patch("docsflow_sync.logger.logging.basicConfig")
    def test_third_party_silenced(self, _mock_basic, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="cli")
        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("requests").level == logging.WARNING


# ---------------------------------------------------------------------------
# JsonFormatter tests
# ---------------------------------------------------------------------------


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def _record(self, exc_info=None):
        return logging.LogRecord(
            name="docsflow_sync.sync.publish",
            level=logging.ERROR if exc_info else logging.INFO,
            pathname="publish.py",
            lineno=1,
            msg="Published %d document(s)",
            args=(2,),
            exc_info=exc_info,
        )

    def test_basic_output(self):
        """One JSON object with timestamp, level, logger and message."""
        data = json.loads(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S").format(self._record()))
        assert "ts" in data
        assert data["level"] == "INFO"
        assert data["logger"] == "docsflow_sync.sync.publish"
        assert data["msg"] == "Published 2 document(s)"
        assert "exc" not in data

    def test_includes_exception(self):
        """Tracebacks go into the ``exc`` field."""
        try:
            raise ValueError("test error")
        except ValueError:
            exc_info = sys.exc_info()

        data = json.loads(JsonFormatter().format(self._record(exc_info)))
        assert "ValueError: test error" in data["exc"]
