"""Tests for shared.logging."""
import json
import logging

from shared.logging import StructuredFormatter, setup_logging


def _record(**extra):
    record = logging.LogRecord(
        name="pipeline.orchestrator", level=logging.INFO, pathname=__file__,
        lineno=1, msg="Fetched %d trades", args=(3,), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_json_with_extras():
    line = StructuredFormatter().format(_record(count=3, key="stats.json"))
    data = json.loads(line)
    assert data["level"] == "INFO"
    assert data["logger"] == "pipeline.orchestrator"
    assert data["message"] == "Fetched 3 trades"
    assert data["count"] == 3
    assert data["key"] == "stats.json"
    assert data["timestamp"].endswith("Z")


def test_formatter_stringifies_unserializable_extras():
    data = json.loads(StructuredFormatter().format(_record(path=object())))
    assert isinstance(data["path"], str)


def test_setup_logging_installs_root_handler():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        logger = setup_logging("limitless-tracker", logging.DEBUG)
        assert logger.name == "limitless-tracker"
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)
