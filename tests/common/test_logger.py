# tests/common/test_logger.py
"""
Unit тесты для модуля логирования (src/common/logger.py).
"""

import json
import logging
import sys
from unittest.mock import patch

import pytest

from src.common.constants import TypeMsg
from src.common.logger import (
    ColoredFormatter,
    DateBasedRotatingFileHandler,
    JsonFormatter,
    _get_caller_info,
    get_logger,
    log_error,
    log_info,
    log_warning,
)


def _record(level: int = logging.INFO, msg: str = "Test message", exc_info=None) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test_logger",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    record.module = "test_module"
    record.funcName = "test_function"
    return record


class TestJsonFormatter:
    """Тесты для JsonFormatter."""

    def test_format_basic_record(self) -> None:
        """Тест форматирования базовой записи."""
        result = JsonFormatter().format(_record())

        assert '"level": "INFO"' in result
        assert '"message": "Test message"' in result
        assert '"function": "test_function"' in result
        assert '"line": 10' in result

    def test_tracking_context_lifted_to_root(self) -> None:
        """booking_id/agent_id выносятся в корень записи, остальное — в extra."""
        record = _record(logging.WARNING)
        record.extra_data = {"booking_id": "b-1", "agent_id": "d-1", "caller_line": 7}

        result = json.loads(JsonFormatter().format(record))

        assert result["booking_id"] == "b-1"
        assert result["agent_id"] == "d-1"
        assert result["extra"] == {"caller_line": 7}

    def test_no_extra_key_without_data(self) -> None:
        record = _record()
        record.extra_data = {"scope": "location:all"}

        result = json.loads(JsonFormatter().format(record))

        assert result["scope"] == "location:all"
        assert "extra" not in result

    def test_format_with_exception(self) -> None:
        """Тест форматирования записи с исключением."""
        try:
            raise ValueError("Test exception")
        except ValueError:
            exc_info = sys.exc_info()

        result = JsonFormatter().format(_record(logging.ERROR, "Error occurred", exc_info))

        assert '"exception"' in result
        assert "ValueError" in result

    def test_non_ascii_kept(self) -> None:
        result = JsonFormatter().format(_record(msg="Старт трекинга"))
        assert "Старт трекинга" in result


class TestColoredFormatter:
    """Тесты для ColoredFormatter."""

    def test_contains_level_and_message(self) -> None:
        result = ColoredFormatter().format(_record())
        assert "[INFO]" in result
        assert "Test message" in result

    def test_caller_info_rendered(self) -> None:
        record = _record()
        record.extra_data = {
            "caller_module": "src.core.tracking.heartbeat",
            "caller_function": "start",
            "caller_file": "heartbeat.py",
            "caller_line": 42,
        }
        result = ColoredFormatter().format(record)
        assert "src.core.tracking.heartbeat.start()" in result
        assert "heartbeat.py:42" in result

    def test_tracking_context_suffix(self) -> None:
        record = _record()
        record.extra_data = {"booking_id": "b-1", "agent_id": "d-1"}

        result = ColoredFormatter().format(record)

        assert "(booking_id=b-1, agent_id=d-1)" in result


class TestDateBasedRotatingFileHandler:
    """Тесты ротации файлов логов."""

    def test_rollover_archives_file(self, tmp_path) -> None:
        handler = DateBasedRotatingFileHandler(log_dir=str(tmp_path), max_bytes=10, logger_name="tracking")
        try:
            handler.emit(_record(msg="x" * 50))
            handler.doRollover()
        finally:
            handler.close()

        archived = [p for p in tmp_path.iterdir() if p.name.startswith("tracking_")]
        assert archived
        assert (tmp_path / "tracking.log").exists()


class TestGetLogger:
    """Тесты для get_logger."""

    def test_cached(self) -> None:
        assert get_logger("tracking_test_cache") is get_logger("tracking_test_cache")

    def test_no_propagation(self) -> None:
        assert get_logger("tracking_test_propagate").propagate is False


class TestLogHelpers:
    """Тесты асинхронных функций логирования."""

    @pytest.mark.asyncio
    async def test_log_info_routes_by_level(self) -> None:
        logger = get_logger("tracking_test_levels")
        with patch.object(logger, "warning") as mock_warning, patch.object(logger, "debug") as mock_debug:
            await log_info("warn", type_msg=TypeMsg.WARNING, logger_name="tracking_test_levels")
            await log_info("dbg", type_msg=TypeMsg.DEBUG, logger_name="tracking_test_levels")

        mock_warning.assert_called_once()
        mock_debug.assert_called_once()

    @pytest.mark.asyncio
    async def test_log_warning_includes_extra(self) -> None:
        logger = get_logger("tracking_test_extra")
        with patch.object(logger, "warning") as mock_warning:
            await log_warning("msg", logger_name="tracking_test_extra", extra={"booking_id": "b-1"})

        extra = mock_warning.call_args.kwargs["extra"]["extra_data"]
        assert extra["booking_id"] == "b-1"

    @pytest.mark.asyncio
    async def test_log_error_passes_exc_info(self) -> None:
        logger = get_logger("tracking_test_error")
        with patch.object(logger, "error") as mock_error:
            await log_error("boom", logger_name="tracking_test_error", exc_info=True)

        assert mock_error.call_args.kwargs["exc_info"] is True

    def test_caller_info_points_to_caller(self) -> None:
        def log_something():
            return _get_caller_info()

        info = log_something()
        assert info["caller_function"] == "test_caller_info_points_to_caller"
