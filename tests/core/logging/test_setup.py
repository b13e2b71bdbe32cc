"""Tests for logging setup and configuration."""

import json
import logging
import re
import sys
from logging.handlers import TimedRotatingFileHandler

import pytest

from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import (
    DEFAULT_BACKUP_COUNT,
    NOISY_LOGGERS,
    generate_export_id,
    get_logger,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:

    def test_console_handler_on_stderr(self):
        setup_logging(level=logging.WARNING)

        root = logging.getLogger()
        assert len(root.handlers) == 1
        handler = root.handlers[0]
        assert handler.stream is sys.stderr
        assert handler.level == logging.WARNING
        assert isinstance(handler.formatter, ConsoleFormatter)

    def test_json_console(self):
        setup_logging(json_format=True)

        assert isinstance(logging.getLogger().handlers[0].formatter, JSONFormatter)

    def test_replaces_existing_handlers(self):
        setup_logging()
        setup_logging()

        assert len(logging.getLogger().handlers) == 1

    def test_returns_named_logger(self):
        logger = setup_logging(name="mixpanel_export.test")
        assert logger.name == "mixpanel_export.test"

    def test_file_handler_writes_json(self, tmp_path):
        log_file = tmp_path / "nested" / "export.log"
        setup_logging(log_file=log_file)

        file_handlers = [
            h for h in logging.getLogger().handlers if isinstance(h, TimedRotatingFileHandler)
        ]
        assert len(file_handlers) == 1
        assert file_handlers[0].backupCount == DEFAULT_BACKUP_COUNT

        logging.getLogger("mixpanel_export.test").info(
            "Export complete", extra={"records_emitted": 3}
        )
        file_handlers[0].flush()

        lines = log_file.read_text().strip().splitlines()
        entry = json.loads(lines[-1])
        assert entry["message"] == "Export complete"
        assert entry["records_emitted"] == 3

    def test_suppresses_noisy_loggers(self):
        setup_logging()

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING


class TestGetLogger:
    def test_returns_standard_logger(self):
        assert get_logger("mixpanel_export.x") is logging.getLogger("mixpanel_export.x")


class TestGenerateExportId:
    def test_format(self):
        assert re.fullmatch(r"x-\d{8}-\d{6}-[0-9a-f]{4}", generate_export_id())

    def test_unique(self):
        assert len({generate_export_id() for _ in range(20)}) > 1
