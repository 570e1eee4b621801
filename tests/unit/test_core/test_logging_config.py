"""Unit tests for logging configuration, correlation IDs and card number masking."""
import json
import logging
import sys

import pytest

from cardocr.core.logging_config import (
    CorrelationContext, CorrelationIDFilter, HumanReadableFormatter, LoggingManager,
    StructuredFormatter, get_correlation_id, mask_card_numbers,
)


def make_record(message: str) -> logging.LogRecord:
    record = logging.LogRecord("cardocr.test", logging.INFO, __file__, 1, message, None, None)
    CorrelationIDFilter().filter(record)
    return record


class TestMasking:

    def test_full_number_is_masked(self):
        assert mask_card_numbers("read 4242424242424242 ok") == "read ************4242 ok"

    def test_separated_number_is_masked(self):
        assert mask_card_numbers("4242 4242 4242 4242") == "************4242"

    def test_short_digit_runs_are_kept(self):
        assert mask_card_numbers("latency 1234ms, 20 boxes") == "latency 1234ms, 20 boxes"

    def test_formatters_mask(self):
        record = make_record("number 378282246310005")
        assert "378282246310005" not in HumanReadableFormatter().format(record)
        entry = json.loads(StructuredFormatter().format(record))
        assert entry["message"] == "number ***********0005"

    def test_structured_exception_is_masked(self):
        try:
            raise ValueError("bad number 4242424242424242")
        except ValueError:
            record = logging.LogRecord("cardocr.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
        entry = json.loads(StructuredFormatter().format(record))
        assert "4242424242424242" not in entry["exception"]
        assert "ValueError" in entry["exception"]


class TestCorrelation:

    def test_context_sets_and_restores(self):
        assert get_correlation_id() is None
        with CorrelationContext("frame-1") as corr_id:
            assert corr_id == "frame-1"
            assert get_correlation_id() == "frame-1"
            with CorrelationContext() as inner:
                assert inner != "frame-1"
            assert get_correlation_id() == "frame-1"
        assert get_correlation_id() is None

    def test_filter_adds_id(self):
        with CorrelationContext("abc"):
            record = make_record("hello")
        assert record.correlation_id == "abc"
        assert make_record("hello").correlation_id == "no-correlation-id"


class TestLoggingManager:

    @pytest.fixture
    def manager(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        manager = LoggingManager()
        yield manager
        manager.shutdown()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
        for name in ("cardocr.core", "cardocr.services", "cardocr.backends"):
            logging.getLogger(name).setLevel(logging.NOTSET)

    def test_file_logging(self, manager, tmp_path):
        manager.configure(log_level="DEBUG", log_dir=tmp_path, enable_file_logging=True,
                          enable_console_logging=False)
        assert manager.is_configured
        logging.getLogger("cardocr.test").error("failure for 4242424242424242")
        for handler in logging.getLogger().handlers:
            handler.flush()
        text = (tmp_path / "cardocr-errors.log").read_text(encoding="utf-8")
        assert "************4242" in text
        assert (tmp_path / "cardocr.log").exists()

    def test_configure_once(self, manager):
        manager.configure(enable_console_logging=True)
        handlers = len(logging.getLogger().handlers)
        manager.configure(enable_console_logging=True)
        assert len(logging.getLogger().handlers) == handlers
