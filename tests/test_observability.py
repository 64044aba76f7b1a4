"""Tests for logging setup and operation metrics."""
import logging
from logging.handlers import RotatingFileHandler

import pytest

from memento.exceptions import ConfigurationError, ErrorCode
from memento.observability import (
    MetricsCollector, configure_logging, is_logging_configured, metrics,
    resolve_log_level, timed_operation, traced
)


@pytest.fixture
def memento_logger():
    logger = logging.getLogger("memento")
    handlers = list(logger.handlers)
    level = logger.level
    yield logger
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers = handlers
    logger.setLevel(level)


class TestLogging:
    def test_configure_logging_writes_file(self, tmp_path, memento_logger):
        log_dir = configure_logging(tmp_path / "logs", level="debug", console=False)

        logging.getLogger("memento.storage.test").debug("hello from the store")
        for handler in memento_logger.handlers:
            handler.flush()

        assert log_dir == tmp_path / "logs"
        assert is_logging_configured()
        assert memento_logger.level == logging.DEBUG
        assert any(isinstance(h, RotatingFileHandler) for h in memento_logger.handlers)
        assert "hello from the store" in (log_dir / "memento.log").read_text(encoding="utf-8")

    def test_resolve_log_level(self):
        assert resolve_log_level("warning") == logging.WARNING
        assert resolve_log_level(logging.ERROR) == logging.ERROR

    def test_unknown_level(self):
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_log_level("chatty")
        assert exc_info.value.code == ErrorCode.CONFIG_INVALID


class TestMetrics:
    def test_record_and_summarize(self):
        collector = MetricsCollector()
        collector.record_operation("save", 10.0, True)
        collector.record_operation("save", 30.0, False, "boom")

        snapshot = collector.get_metrics()["save"]
        assert snapshot["count"] == 2
        assert snapshot["error_count"] == 1
        assert snapshot["avg_duration_ms"] == 20.0
        assert snapshot["max_duration_ms"] == 30.0
        assert snapshot["last_error"] == "boom"

        summary = collector.get_summary()
        assert summary["total_operations"] == 2
        assert summary["operations_tracked"] == ["save"]

        collector.reset()
        assert collector.get_metrics() == {}

    def test_timed_operation_records_failure(self):
        with pytest.raises(RuntimeError):
            with timed_operation("explode", note_id="n1"):
                raise RuntimeError("kaboom")

        recorded = metrics.get_metrics()["explode"]
        assert recorded["error_count"] == 1
        assert recorded["last_error"] == "kaboom"

    def test_traced_counts_results(self):
        @traced()
        def list_things():
            return [1, 2, 3]

        assert list_things() == [1, 2, 3]
        assert metrics.get_metrics()["list_things"]["success_count"] == 1
