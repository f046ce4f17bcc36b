# =============================================================================
# tests/unit/test_logging.py
# Unit Tests for logging setup and LogContext
# =============================================================================

import logging

import pytest

from shoppe_core.logging import LogContext, get_logger, setup_logging
import shoppe_core.logging.config as log_config


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Application-wide logging configuration"""

    def test_writes_daily_file_and_quiets_http_clients(self, tmp_path, monkeypatch, restore_root_logger):
        """Writes daily file and quiets http clients"""
        monkeypatch.setattr(log_config, "LOG_DIR", tmp_path)

        setup_logging(level=logging.DEBUG, log_filename="sync.log")
        get_logger("shoppe_core.test").info("hello cache")
        for handler in restore_root_logger.handlers:
            handler.flush()

        assert "hello cache" in (tmp_path / "sync.log").read_text()
        assert logging.getLogger("httpx").level == logging.WARNING
        assert restore_root_logger.level == logging.DEBUG


class TestLogContext:
    """Timing and status of an operation"""

    def test_logs_completion(self, caplog):
        """LogContext logs started and completed"""
        logger = get_logger("shoppe_core.test")

        with caplog.at_level(logging.DEBUG, logger="shoppe_core.test"):
            with LogContext(logger, "Refreshing cignal"):
                pass

        assert "Refreshing cignal... started" in caplog.text
        assert "Refreshing cignal... completed" in caplog.text

    def test_logs_failure_and_reraises(self, caplog):
        """LogContext logs the failure and re-raises"""
        logger = get_logger("shoppe_core.test")

        with pytest.raises(RuntimeError):
            with LogContext(logger, "Refreshing gsat"):
                raise RuntimeError("remote down")

        assert "Refreshing gsat... failed" in caplog.text
