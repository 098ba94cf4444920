"""Unit tests for the logging configuration module.

This test module validates the structured logging configuration,
context binding, and correlation ID management.
"""

import asyncio
import logging

import pytest
import structlog

from cotask.driver.handles import resolved
from cotask.driver.runner import run
from cotask.log_config import (
    bind_context,
    bound_context,
    bind_correlation_id,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
    unbind_correlation_id,
)


def message_of(record: logging.LogRecord) -> str:
    return record.getMessage()


class TestLoggingConfiguration:
    """Test cases for logging configuration."""

    def test_configure_logging_info_level(self):
        """Test logging configuration with INFO level."""
        configure_logging(level="INFO", json_logs=True)
        logger = get_logger("test")
        assert logger is not None

    def test_configure_logging_lowercase_level(self):
        """Test that level names are case-insensitive."""
        configure_logging(level="debug", json_logs=True)
        assert get_logger("test") is not None

    def test_configure_logging_invalid_level(self):
        """Test logging configuration with invalid level."""
        with pytest.raises(ValueError, match="Invalid log level"):
            configure_logging(level="INVALID", json_logs=True)

    def test_configure_logging_console_renderer(self):
        """Test logging configuration with console renderer."""
        configure_logging(level="INFO", json_logs=False)
        logger = get_logger("test")
        assert logger is not None

    def test_get_logger_without_name(self):
        """Test getting a logger without a name."""
        configure_logging(level="INFO", json_logs=True)
        logger = get_logger()
        assert logger is not None

    def test_stdlib_bound_logger_configured(self):
        """Test that structlog is wired to the standard library."""
        configure_logging(level="INFO", json_logs=True)
        assert structlog.get_config()["wrapper_class"] is structlog.stdlib.BoundLogger


class TestContextBinding:
    """Test cases for context binding functionality."""

    def setup_method(self):
        """Set up test environment before each test."""
        configure_logging(level="INFO", json_logs=True)
        clear_context()

    def teardown_method(self):
        """Clean up after each test."""
        clear_context()

    def test_bind_correlation_id(self, caplog):
        """Test binding a correlation ID to the logging context."""
        caplog.set_level(logging.INFO)
        logger = get_logger("test")

        bind_correlation_id("run-12345")
        logger.info("test_event")

        assert len(caplog.records) == 1
        assert "run-12345" in message_of(caplog.records[0])

    def test_unbind_correlation_id(self, caplog):
        """Test unbinding the correlation ID from the logging context."""
        caplog.set_level(logging.INFO)
        logger = get_logger("test")

        bind_correlation_id("run-12345")
        logger.info("with_correlation")

        unbind_correlation_id()
        logger.info("without_correlation")

        assert len(caplog.records) == 2
        assert "run-12345" in message_of(caplog.records[0])
        assert "run-12345" not in message_of(caplog.records[1])

    def test_bind_context_multiple_variables(self, caplog):
        """Test binding multiple context variables."""
        caplog.set_level(logging.INFO)
        logger = get_logger("test")

        bind_context(driver="fetch-title", attempt=5, phase="suspended")
        logger.info("driver_event")

        message = message_of(caplog.records[0])
        assert "fetch-title" in message
        assert "5" in message
        assert "suspended" in message

    def test_unbind_context_specific_keys(self, caplog):
        """Test unbinding specific context variables."""
        caplog.set_level(logging.INFO)
        logger = get_logger("test")

        bind_context(driver="fetch-title", attempt=5)
        logger.info("with_full_context")

        unbind_context("driver")
        logger.info("without_driver")

        assert len(caplog.records) == 2
        assert "fetch-title" not in message_of(caplog.records[1])

    def test_clear_context(self, caplog):
        """Test clearing all context variables."""
        caplog.set_level(logging.INFO)
        logger = get_logger("test")

        bind_context(driver="fetch-title", phase="running")
        logger.info("with_context")

        clear_context()
        logger.info("without_context")

        assert len(caplog.records) == 2
        assert "fetch-title" not in message_of(caplog.records[1])


    def test_bound_context_restores_previous_values(self):
        """Test that bound_context binds for a block and restores on exit."""
        bind_context(driver="outer")

        with bound_context(driver="inner", phase="running"):
            assert structlog.contextvars.get_contextvars() == {
                "driver": "inner",
                "phase": "running",
            }

        assert structlog.contextvars.get_contextvars() == {"driver": "outer"}


class TestStructuredLogging:
    """Test cases for structured logging output."""

    def setup_method(self):
        """Set up test environment before each test."""
        configure_logging(level="INFO", json_logs=True)
        clear_context()

    def teardown_method(self):
        """Clean up after each test."""
        clear_context()

    def test_json_output_format(self, caplog):
        """Test that events render as JSON with their fields."""
        caplog.set_level(logging.INFO)
        logger = get_logger("test")

        logger.info("test_event", key1="value1", key2=42)

        message = message_of(caplog.records[0])
        assert '"event": "test_event"' in message
        assert '"key2": 42' in message

    def test_log_with_exception(self, caplog):
        """Test logging with exception information."""
        caplog.set_level(logging.ERROR)
        logger = get_logger("test")

        def _raise_test_error():
            msg = "Test exception"
            raise ValueError(msg)

        try:
            _raise_test_error()
        except ValueError:
            logger.exception("error_occurred", operation="test")

        assert len(caplog.records) > 0
        assert "error_occurred" in message_of(caplog.records[0])
        assert "Test exception" in message_of(caplog.records[0])

    def test_log_levels(self, caplog):
        """Test different log levels."""
        configure_logging(level="DEBUG", json_logs=True)
        caplog.set_level(logging.DEBUG)
        logger = get_logger("test")

        logger.debug("debug_message")
        logger.info("info_message")
        logger.warning("warning_message")
        logger.error("error_message")

        assert len(caplog.records) == 4


@pytest.mark.integration
class TestLoggingIntegration:
    """Integration tests for logging with the driver."""

    def setup_method(self):
        """Set up test environment before each test."""
        configure_logging(level="INFO", json_logs=True)
        clear_context()

    def teardown_method(self):
        """Clean up after each test."""
        clear_context()

    @pytest.mark.asyncio
    async def test_correlation_id_reaches_driver_callbacks(self, caplog):
        """Test that a bound correlation ID appears in logs from later resumes."""
        caplog.set_level(logging.INFO)

        def body():
            value = yield resolved(1)
            yield asyncio.sleep(0)
            return value

        bind_correlation_id("run-42")
        result = run(body, name="correlated")
        unbind_correlation_id()

        assert await result == 1

        completed = [r for r in caplog.records if "driver_completed" in message_of(r)]
        assert len(completed) == 1
        assert "run-42" in message_of(completed[0])
        assert "correlated" in message_of(completed[0])

    @pytest.mark.asyncio
    async def test_driver_name_bound_while_body_runs(self):
        """Test that code inside a body sees its driver's name in the logging context."""
        seen: list[tuple[str, str | None]] = []

        def child():
            seen.append(("child", structlog.contextvars.get_contextvars().get("driver")))
            yield resolved(None)
            seen.append(("child", structlog.contextvars.get_contextvars().get("driver")))

        def body():
            seen.append(("parent", structlog.contextvars.get_contextvars().get("driver")))
            yield child()
            seen.append(("parent", structlog.contextvars.get_contextvars().get("driver")))

        await run(body, name="outer")

        assert seen == [
            ("parent", "outer"),
            ("child", "outer/child"),
            ("child", "outer/child"),
            ("parent", "outer"),
        ]
        assert "driver" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_body_logs_carry_driver_name(self, caplog):
        """Test that log lines emitted by a body include the driver name."""
        caplog.set_level(logging.INFO)
        logger = get_logger("test")

        def body():
            yield resolved(None)
            logger.info("body_event")

        await run(body, name="named-run")

        body_events = [r for r in caplog.records if "body_event" in message_of(r)]
        assert len(body_events) == 1
        assert '"driver": "named-run"' in message_of(body_events[0])
