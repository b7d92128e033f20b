"""Tests for logging utilities."""

import logging
import time

import pytest

from simplotask.logging import (
    DEBUG_FORMAT,
    DEFAULT_FORMAT,
    DEV_FORMAT,
    TRACE,
    StructuredLogger,
    configure_logging,
    get_level_from_name,
    get_level_from_verbosity,
    get_logger,
    log_performance,
)


class TestLevels:
    """Tests for level helpers."""

    @pytest.mark.parametrize(
        "verbosity,level",
        [(0, logging.WARNING), (1, logging.INFO), (2, logging.DEBUG), (3, TRACE), (7, TRACE)],
    )
    def test_verbosity(self, verbosity, level):
        """Test -v counts map to levels."""
        assert get_level_from_verbosity(verbosity) == level

    def test_level_names(self):
        """Test level names are case-insensitive."""
        assert get_level_from_name("DEBUG") == logging.DEBUG
        assert get_level_from_name("trace") == TRACE

    def test_invalid_level_name(self):
        """Test an unknown level name fails."""
        with pytest.raises(ValueError, match="Invalid log level: loud"):
            get_level_from_name("loud")

    def test_trace_registered(self):
        """Test TRACE has a level name."""
        assert logging.getLevelName(TRACE) == "TRACE"


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_configure_default(self, restore_root_logger):
        """Test default logging configuration."""
        configure_logging()
        root = restore_root_logger
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert root.handlers[0].formatter._fmt == DEFAULT_FORMAT

    def test_configure_debug_format(self, restore_root_logger):
        """Test debug level selects the detailed format."""
        configure_logging(level=logging.DEBUG)
        assert restore_root_logger.handlers[0].formatter._fmt == DEBUG_FORMAT

    def test_configure_dev_format(self, restore_root_logger):
        """Test dev mode includes caller details."""
        configure_logging(level=logging.INFO, dev=True)
        assert restore_root_logger.handlers[0].formatter._fmt == DEV_FORMAT

    def test_configure_custom_format(self, restore_root_logger):
        """Test custom format string."""
        configure_logging(format_string="%(message)s")
        assert restore_root_logger.handlers[0].formatter._fmt == "%(message)s"

    def test_reconfigure_replaces_handlers(self, restore_root_logger):
        """Test calling twice doesn't stack handlers."""
        configure_logging()
        configure_logging(level=logging.INFO)
        assert len(restore_root_logger.handlers) == 1

    def test_log_file(self, restore_root_logger, tmp_path):
        """Test file logging with a separate level."""
        log_file = tmp_path / "logs" / "spt.log"
        configure_logging(level=logging.WARNING, log_file=log_file, file_level=logging.DEBUG)

        logging.getLogger("simplotask.test").debug("to the file only")
        for handler in restore_root_logger.handlers:
            handler.flush()

        assert restore_root_logger.level == logging.DEBUG
        assert "to the file only" in log_file.read_text()

    def test_asyncssh_quieted(self, restore_root_logger):
        """Test asyncssh is kept at WARNING or above."""
        configure_logging(level=logging.DEBUG)
        assert logging.getLogger("asyncssh").level == logging.WARNING


class TestLogPerformance:
    """Tests for log_performance context manager."""

    def test_log_performance_basic(self, caplog):
        """Test basic performance logging."""
        logger = logging.getLogger("test.perf")
        logger.setLevel(logging.INFO)

        with log_performance(logger, "Task deploy"):
            time.sleep(0.01)

        assert "Task deploy completed in 0." in caplog.text

    def test_log_performance_with_context(self, caplog):
        """Test performance logging with context."""
        logger = logging.getLogger("test.perf.context")
        logger.setLevel(logging.INFO)

        with log_performance(logger, "Task deploy", hosts=5):
            pass

        assert "hosts=5" in caplog.text

    def test_log_performance_threshold(self, caplog):
        """Test performance logging with threshold."""
        logger = logging.getLogger("test.perf.threshold")
        logger.setLevel(logging.INFO)

        with log_performance(logger, "Fast operation", threshold=1.0):
            pass

        assert "Fast operation" not in caplog.text

        with log_performance(logger, "Slow operation", threshold=0.001):
            time.sleep(0.01)

        assert "Slow operation completed" in caplog.text

    def test_log_performance_exception(self, caplog):
        """Test duration is logged even when the operation fails."""
        logger = logging.getLogger("test.perf.exception")
        logger.setLevel(logging.INFO)

        with pytest.raises(ValueError):
            with log_performance(logger, "Failing operation"):
                raise ValueError("test error")

        assert "Failing operation completed" in caplog.text


class TestStructuredLogger:
    """Tests for StructuredLogger class."""

    def test_create_logger_with_context(self):
        """Test creating logger with initial context."""
        logger = StructuredLogger("test", task="deploy", target="prod")
        assert logger.logger.name == "test"
        assert logger.context == {"task": "deploy", "target": "prod"}

    def test_log_with_extra_context(self, caplog):
        """Test logging with default and extra context."""
        logger = StructuredLogger("test.extra", task="deploy")
        logger.logger.setLevel(logging.INFO)

        logger.info("Running", hosts=3)

        assert "Running (task=deploy, hosts=3)" in caplog.text

    def test_log_without_context(self, caplog):
        """Test logging without any context."""
        logger = StructuredLogger("test.nocontext")
        logger.logger.setLevel(logging.INFO)

        logger.info("Simple message")

        assert "Simple message" in caplog.text
        assert "(" not in caplog.text

    def test_log_levels(self, caplog):
        """Test different log levels."""
        logger = StructuredLogger("test.levels")
        logger.logger.setLevel(logging.DEBUG)

        logger.debug("Debug message")
        logger.info("Info message")
        logger.warning("Warning message")
        logger.error("Error message")

        for level in ("DEBUG", "INFO", "WARNING", "ERROR"):
            assert level in [r.levelname for r in caplog.records]

    def test_scope_yields_child(self, caplog):
        """Test scope logs entry and exit with a child carrying the context."""
        logger = StructuredLogger("test.scope", task="deploy")
        logger.logger.setLevel(logging.DEBUG)

        with logger.scope("Host", host="web01") as child:
            child.info("Connected")

        assert "Entering: Host (task=deploy, host=web01)" in caplog.text
        assert "Connected (task=deploy, host=web01)" in caplog.text
        assert "Exiting: Host (task=deploy, host=web01)" in caplog.text

    def test_scope_context_isolation(self):
        """Test scope context doesn't leak into the parent."""
        logger = StructuredLogger("test.isolation", task="deploy")

        with logger.scope("Host", host="web01") as child:
            assert child.context == {"task": "deploy", "host": "web01"}

        assert logger.context == {"task": "deploy"}

    def test_scope_exception(self, caplog):
        """Test exit is logged when the scope raises."""
        logger = StructuredLogger("test.scope.exception")
        logger.logger.setLevel(logging.DEBUG)

        with pytest.raises(ValueError):
            with logger.scope("Failing"):
                raise ValueError("test error")

        assert "Exiting: Failing" in caplog.text


class TestGetLogger:
    """Tests for get_logger convenience function."""

    def test_get_logger_with_context(self, caplog):
        """Test using logger from get_logger."""
        logger = get_logger("test.usage", app="simplotask")
        logger.logger.setLevel(logging.INFO)

        logger.info("Test message")

        assert isinstance(logger, StructuredLogger)
        assert "Test message (app=simplotask)" in caplog.text
