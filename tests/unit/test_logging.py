from __future__ import annotations

import json
import logging
from datetime import datetime

from watermark_sync.utils.logging import JsonFormatter, _json_formatter, configure_logging

EXPECTED_ROWS = 3
EXPECTED_BATCH_SIZE = 1000


def _record(msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_json_formatter_promotes_standard_extra_fields() -> None:
    record = _record()
    record.rows = EXPECTED_ROWS
    record.source_name = "orders"

    payload = json.loads(_json_formatter(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "test.logger"
    assert payload["message"] == "hello"
    assert payload["rows"] == EXPECTED_ROWS
    assert payload["source_name"] == "orders"
    assert "pathname" not in payload


def test_json_formatter_supports_legacy_nested_extra_field() -> None:
    record = _record()
    record.extra = {"batch_size": EXPECTED_BATCH_SIZE}

    payload = json.loads(_json_formatter(record))

    assert payload["batch_size"] == EXPECTED_BATCH_SIZE


def test_json_formatter_serializes_non_json_values() -> None:
    record = _record()
    record.marker = datetime(2024, 1, 10)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["marker"] == "2024-01-10 00:00:00"


def test_configure_logging_installs_json_handler() -> None:
    configure_logging(level="DEBUG", json_logs=True)
    try:
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(isinstance(h.formatter, JsonFormatter) for h in root.handlers)
    finally:
        configure_logging(level="WARNING")
