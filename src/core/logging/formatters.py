"""Log formatters for JSON and console output."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.utils.json_serializers import json_serializer


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    Sanitizes URLs so the API key and request signature never reach a log.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Correlation
        "export_id",
        "event_type",
        "duration_ms",
        # HTTP
        "http_status",
        "http_method",
        "http_url",
        "api_endpoint",
        "response_body",
        # Errors
        "error_category",
        "error_message",
        "error_type",
        "error",
        "offset",
        "retryable",
        # Export window
        "start_date",
        "end_date",
        "extra_params",
        # Processing metrics
        "records_read",
        "records_dispatched",
        "records_emitted",
        "records_invalid",
        "records_failed",
        "records_missing_distinct_id",
        "fields_overwritten",
        "event_types",
        "queue_maxsize",
        "queue_size",
        "chunk_size",
        "bytes_read",
        "records_per_second",
        # Operation tracking
        "operation",
        "state",
        "overwritten_fields",
        "validation_errors",
    ]

    # Type mapping for numeric fields so aggregations don't see strings
    NUMERIC_FIELDS = {
        "duration_ms": float,
        "http_status": int,
        "offset": int,
        "records_read": int,
        "records_dispatched": int,
        "records_emitted": int,
        "records_invalid": int,
        "records_failed": int,
        "records_missing_distinct_id": int,
        "fields_overwritten": int,
        "event_types": int,
        "queue_maxsize": int,
        "queue_size": int,
        "chunk_size": int,
        "bytes_read": int,
        "records_per_second": float,
    }

    # Fields that contain URLs and should be sanitized
    URL_FIELDS = ["http_url", "api_endpoint"]

    # Pattern to match sensitive query parameters
    SENSITIVE_PARAMS_PATTERN = re.compile(
        r"([?&])(sig|api_key|api_secret|secret|token|password)=[^&]*",
        re.IGNORECASE,
    )

    def _sanitize_url(self, url: str) -> str:
        return self.SENSITIVE_PARAMS_PATTERN.sub(r"\1\2=[REDACTED]", url)

    def _sanitize_value(self, key: str, value: Any) -> Any:
        if key in self.URL_FIELDS and isinstance(value, str):
            return self._sanitize_url(value)
        return value

    def _ensure_type(self, field: str, value: Any) -> Any:
        """
        Ensure field has its declared numeric type.

        Returns None if conversion fails; a null is preferable to a field
        whose type drifts between records.
        """
        if field not in self.NUMERIC_FIELDS or value is None:
            return value

        expected_type = self.NUMERIC_FIELDS[field]
        try:
            return expected_type(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _base_log_entry(record: logging.LogRecord) -> dict[str, Any]:
        return {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

    @staticmethod
    def _inject_context(log_entry: dict[str, Any], log_context: dict[str, Any]) -> None:
        for field in ("export_id", "stage", "worker_id", "product", "event_type"):
            if log_context.get(field):
                log_entry[field] = log_context[field]

    @staticmethod
    def _should_include_source_location(record: logging.LogRecord) -> bool:
        return record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL)

    def _inject_extra_fields(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                typed_value = self._ensure_type(field, value)
                log_entry[field] = self._sanitize_value(field, typed_value)

    def _inject_exception(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        if not record.exc_info:
            return

        exc_type, exc_value, _ = record.exc_info
        log_entry["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "stacktrace": self.formatException(record.exc_info),
        }

    def format(self, record: logging.LogRecord) -> str:
        log_entry = self._base_log_entry(record)

        self._inject_context(log_entry, get_log_context())

        if self._should_include_source_location(record):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        # Type coercion must happen before sanitizing
        self._inject_extra_fields(log_entry, record)

        self._inject_exception(log_entry, record)

        return json.dumps(log_entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with color-coded log levels.

    Colors are auto-disabled when output is not a TTY (pipes, files).
    """

    # ANSI color codes
    COLORS = {
        logging.DEBUG: "\033[36m",  # Cyan
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, *args, stream=None, **kwargs):
        super().__init__(*args, **kwargs)
        stream = stream if stream is not None else sys.stderr
        self._use_colors = hasattr(stream, "isatty") and stream.isatty()

    def _format_level_name(self, record: logging.LogRecord) -> str:
        level_name = record.levelname
        if not self._use_colors:
            return level_name

        color = self.COLORS.get(record.levelno, "")
        if not color:
            return level_name

        return f"{color}{level_name}{self.RESET}"

    @staticmethod
    def _build_prefix(level_name: str, log_context: dict[str, Any]) -> str:
        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            level_name,
        ]

        if log_context["stage"]:
            parts.append(f"[{log_context['stage']}]")
        if log_context["event_type"]:
            parts.append(f"[{log_context['event_type']}]")

        return " - ".join(parts)

    @staticmethod
    def _build_tags(record: logging.LogRecord, log_context: dict[str, Any]) -> list[str]:
        export_id = getattr(record, "export_id", None) or log_context.get("export_id")

        tags = []
        if export_id:
            tags.append(f"[{export_id}]")
        return tags

    def format(self, record: logging.LogRecord) -> str:
        log_context = get_log_context()

        level_name = self._format_level_name(record)
        prefix = self._build_prefix(level_name, log_context)
        tags = self._build_tags(record, log_context)

        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        if tags:
            return f"{prefix} - {' '.join(tags)} {message}"

        return f"{prefix} - {message}"
