"""Tests for the logger module."""

import json
import logging
import stat
import sys

from credbag.log import reset_logging, sanitize_keys, setup_logging


def _handlers():
    return logging.getLogger().handlers


def test_sanitize_keys():
    """Test that sensitive keys are masked at any depth."""
    event = {
        "event": "added",
        "name": "prod-aws",
        "Passphrase": "hunter2",
        "nested": {"secret_access_key": "abc", "region": "us-east-1"},
        "items": [{"token": "t"}, "plain"],
    }
    sanitized = sanitize_keys(event)

    assert sanitized["name"] == "prod-aws"
    assert sanitized["Passphrase"] == "***"
    assert sanitized["nested"] == {"secret_access_key": "***", "region": "us-east-1"}
    assert sanitized["items"] == [{"token": "***"}, "plain"]
    # The input is not modified.
    assert event["Passphrase"] == "hunter2"


def test_sanitize_custom_keys():
    """Test masking a custom key set."""
    assert sanitize_keys({"pin": 1, "a": 2}, frozenset({"PIN"})) == {"pin": "***", "a": 2}


def test_setup_logging_console():
    """Test the default stderr handler."""
    setup_logging()
    [handler] = _handlers()
    assert handler.stream is sys.stderr
    assert handler.level == logging.WARNING


def test_setup_logging_debug():
    """Test that debug mode echoes everything."""
    setup_logging(debug=True)
    assert logging.getLogger().level == logging.DEBUG
    assert _handlers()[0].level == logging.DEBUG


def test_setup_logging_idempotent():
    """Test that repeated setup does not stack handlers."""
    setup_logging()
    setup_logging()
    assert len(_handlers()) == 1


def test_log_file(tmp_path):
    """Test JSON-lines output to the log file with secrets masked."""
    log_file = tmp_path / "logs" / "credbag.log"
    logger = setup_logging(log_file=log_file)

    logger.info("added_profile", name="prod-aws", passphrase="hunter2")
    for handler in _handlers():
        handler.flush()

    assert stat.S_IMODE(log_file.stat().st_mode) == 0o640
    [line] = log_file.read_text().splitlines()
    record = json.loads(line)
    assert record["event"] == "added_profile"
    assert record["name"] == "prod-aws"
    assert record["passphrase"] == "***"
    assert record["level"] == "info"
    assert "hunter2" not in line


def test_log_file_exception(tmp_path):
    """Test that exceptions are rendered into the record."""
    log_file = tmp_path / "credbag.log"
    logger = setup_logging(log_file=log_file)

    try:
        raise RuntimeError("boom")
    except RuntimeError:
        logger.exception("operation_failed")
    for handler in _handlers():
        handler.flush()

    record = json.loads(log_file.read_text().splitlines()[-1])
    assert record["event"] == "operation_failed"
    assert "RuntimeError: boom" in record["exception"]


def test_reset_logging():
    """Test that reset removes handlers."""
    setup_logging()
    reset_logging()
    assert _handlers() == []
    reset_logging()
