"""Tests for logging utility functions."""

import logging
from unittest.mock import MagicMock

from core.errors.exceptions import StreamDecodeError, TransportError
from core.logging.utilities import (
    _RESERVED_LOG_KEYS,
    format_export_summary,
    log_exception,
    log_with_context,
)
from core.types import ErrorCategory


class TestLogWithContext:

    def test_logs_message_at_given_level(self):
        logger = MagicMock()
        log_with_context(logger, logging.INFO, "test message")

        logger.log.assert_called_once_with(
            logging.INFO, "test message", exc_info=None, extra={}
        )

    def test_passes_extra_fields(self):
        logger = MagicMock()
        log_with_context(
            logger, logging.WARNING, "slow export",
            export_id="x-1", duration_ms=500,
        )

        logger.log.assert_called_once_with(
            logging.WARNING, "slow export",
            exc_info=None,
            extra={"export_id": "x-1", "duration_ms": 500},
        )

    def test_handles_exc_info_separately(self):
        logger = MagicMock()
        log_with_context(logger, logging.ERROR, "failed", exc_info=True, event_type="signup")

        logger.log.assert_called_once_with(
            logging.ERROR, "failed",
            exc_info=True,
            extra={"event_type": "signup"},
        )

    def test_filters_all_reserved_keys(self):
        logger = MagicMock()
        # "msg" and "args" are also positional params of log_with_context
        safe_reserved = {k: "value" for k in _RESERVED_LOG_KEYS if k not in ("msg", "args")}
        safe_reserved["custom_field"] = "kept"

        log_with_context(logger, logging.INFO, "test", **safe_reserved)

        _, kwargs = logger.log.call_args
        assert kwargs["extra"] == {"custom_field": "kept"}


class TestLogException:

    def test_logs_exception_with_traceback(self):
        logger = MagicMock()
        exc = ValueError("bad value")

        log_exception(logger, exc, "Operation failed")

        args, kwargs = logger.log.call_args
        assert args == (logging.ERROR, "Operation failed")
        assert kwargs["exc_info"] is exc
        assert kwargs["extra"]["error_message"] == "bad value"
        assert kwargs["extra"]["error_type"] == "ValueError"

    def test_logs_exception_without_traceback(self):
        logger = MagicMock()
        log_exception(logger, ValueError("x"), "failed", include_traceback=False)

        _, kwargs = logger.log.call_args
        assert "exc_info" not in kwargs

    def test_uses_custom_log_level(self):
        logger = MagicMock()
        log_exception(logger, ValueError("x"), "warn", level=logging.WARNING)

        assert logger.log.call_args[0][0] == logging.WARNING

    def test_extracts_error_category_from_export_error(self):
        logger = MagicMock()
        log_exception(logger, TransportError("HTTP 401", status_code=401, category=ErrorCategory.AUTH), "rejected")

        assert logger.log.call_args[1]["extra"]["error_category"] == "auth"

    def test_does_not_override_explicit_error_category(self):
        logger = MagicMock()
        log_exception(logger, StreamDecodeError("bad"), "failed", error_category="custom")

        assert logger.log.call_args[1]["extra"]["error_category"] == "custom"

    def test_truncates_long_error_messages(self):
        logger = MagicMock()
        log_exception(logger, ValueError("x" * 600), "failed")

        message = logger.log.call_args[1]["extra"]["error_message"]
        assert len(message) == 503
        assert message.endswith("...")

    def test_passes_extra_kwargs_and_drops_reserved(self):
        logger = MagicMock()
        log_exception(logger, ValueError("x"), "failed", event_type="signup", name="dropped")

        extra = logger.log.call_args[1]["extra"]
        assert extra["event_type"] == "signup"
        assert "name" not in extra


class TestFormatExportSummary:

    def test_basic(self):
        assert format_export_summary(3, 3) == "read=3 emitted=3"

    def test_includes_nonzero_invalid_and_failed(self):
        assert (
            format_export_summary(5, 3, records_invalid=1, records_failed=1)
            == "read=5 emitted=3 invalid=1 failed=1"
        )

    def test_per_event_breakdown_sorted(self):
        summary = format_export_summary(3, 3, per_event={"signup": 2, "purchase": 1})
        assert summary == "read=3 emitted=3 | purchase=1, signup=2"

    def test_empty_export(self):
        assert format_export_summary(0, 0, per_event={}) == "read=0 emitted=0"
