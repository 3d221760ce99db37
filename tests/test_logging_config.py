"""Tests for logging setup."""

import json
import logging
from collections.abc import Iterator

import pytest
from pythonjsonlogger.json import JsonFormatter

from writing_style.core.logging_config import configure_logging


@pytest.fixture(autouse=True)
def restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_json_format() -> None:
    configure_logging(log_format="json", log_level="debug")

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    formatter = root.handlers[0].formatter
    assert isinstance(formatter, JsonFormatter)

    record = logging.LogRecord("writing_style.test", logging.INFO, __file__, 1, "merged", None, None)
    payload = json.loads(formatter.format(record))
    assert payload["level"] == "INFO"
    assert payload["service"] == "writing_style.test"
    assert payload["app"] == "writing-style-engine"
    assert payload["message"] == "merged"


def test_text_format() -> None:
    configure_logging(log_format="text", log_level="warning")

    root = logging.getLogger()
    assert root.level == logging.WARNING
    assert not isinstance(root.handlers[0].formatter, JsonFormatter)
