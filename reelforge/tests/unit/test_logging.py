"""Tests for structured logging."""
import logging

import pytest

from reelforge.services.shared.logging import get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_levels():
    names = ["reelforge", "reelforge.tracking", "reelforge.execution.cloud_api", "httpx", "httpcore"]
    saved = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)


class TestGetLogger:
    def test_returns_logger(self):
        logger = get_logger("test.module")
        assert isinstance(logger, logging.Logger)

    def test_prefixes_namespace(self):
        assert get_logger("execution.orchestrator").name == "reelforge.execution.orchestrator"

    def test_full_name_used_as_is(self):
        assert get_logger("reelforge.tracking").name == "reelforge.tracking"
        assert get_logger("reelforge").name == "reelforge"

    def test_lookalike_prefix_is_namespaced(self):
        assert get_logger("reelforgery").name == "reelforge.reelforgery"

    def test_same_name_returns_same_logger(self):
        assert get_logger("test.same") is get_logger("test.same")

    def test_modules_log_under_namespace(self):
        from reelforge.services.execution import orchestrator
        from reelforge.services.tracking import tracker

        assert orchestrator.logger.name == "reelforge.execution.orchestrator"
        assert tracker.logger.name == "reelforge.tracking.tracker"


class TestSetupLogging:
    def test_setup_with_level(self):
        setup_logging(level="DEBUG")
        assert logging.getLogger("reelforge").level == logging.DEBUG

    def test_level_is_case_insensitive(self):
        setup_logging(level="warning")
        assert logging.getLogger("reelforge").level == logging.WARNING

    def test_setup_file_handler(self, tmp_dir):
        log_file = tmp_dir / "logs" / "test.log"
        setup_logging(level="INFO", log_file=str(log_file))
        get_logger("test_file").info("test message")
        for handler in logging.getLogger("reelforge").handlers:
            handler.flush()
        assert log_file.exists()
        assert "test message" in log_file.read_text()

    def test_repeated_setup_does_not_stack_handlers(self):
        setup_logging(level="INFO")
        setup_logging(level="INFO")
        assert len(logging.getLogger("reelforge").handlers) == 1

    def test_invalid_level_raises(self):
        with pytest.raises(ValueError):
            setup_logging(level="INVALID_LEVEL")


class TestAreaLevels:
    def test_area_override(self):
        setup_logging(level="INFO", levels={"tracking": "debug", "execution.cloud_api": "ERROR"})
        assert get_logger("tracking.tracker").isEnabledFor(logging.DEBUG)
        assert not get_logger("execution.orchestrator").isEnabledFor(logging.DEBUG)
        assert not get_logger("execution.cloud_api").isEnabledFor(logging.WARNING)

    def test_area_debug_reaches_file(self, tmp_dir):
        log_file = tmp_dir / "area.log"
        setup_logging(level="WARNING", log_file=str(log_file), levels={"tracking": "DEBUG"})
        get_logger("tracking.feeds").debug("poll tick")
        for handler in logging.getLogger("reelforge").handlers:
            handler.flush()
        assert "poll tick" in log_file.read_text()

    def test_invalid_area_level_raises(self):
        with pytest.raises(ValueError):
            setup_logging(level="INFO", levels={"tracking": "LOUD"})

    def test_http_client_logs_quiet_unless_debug(self):
        setup_logging(level="INFO")
        assert logging.getLogger("httpx").level == logging.WARNING
        setup_logging(level="DEBUG")
        assert logging.getLogger("httpx").level == logging.DEBUG
