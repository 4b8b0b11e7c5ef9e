import contextlib
import json
import logging
import sys

import pytest
import structlog

from stargate.app import logging as logging_config


@contextlib.contextmanager
def _restored_root_logger():
    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    try:
        yield root
    finally:
        root.handlers = original_handlers
        root.setLevel(original_level)
        structlog.reset_defaults()


def test_setup_logging_installs_single_stdout_handler():
    with _restored_root_logger() as root:
        logging_config.setup_logging(level="DEBUG")

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert root.handlers[0].stream is sys.stdout


def test_setup_logging_falls_back_to_env(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "error")

    with _restored_root_logger() as root:
        logging_config.setup_logging()

        assert root.level == logging.ERROR


def test_unknown_level_defaults_to_info(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)

    with _restored_root_logger() as root:
        logging_config.setup_logging(level="chatty")

        assert root.level == logging.INFO


def test_structlog_renders_json_with_context(capsys):
    with _restored_root_logger():
        logging_config.setup_logging(level="INFO")
        logger = logging_config.get_logger("stargate.test")

        logging_config.bind_contextvars(request_id="req-1")
        try:
            logger.info("login_checked", user="u-1")
            logger.debug("dropped")
        finally:
            logging_config.clear_contextvars()

    lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["event"] == "login_checked"
    assert record["level"] == "info"
    assert record["user"] == "u-1"
    assert record["request_id"] == "req-1"
    assert "timestamp" in record


@pytest.mark.parametrize(
    ("phone", "expected"),
    [
        ("13812345678", "138****5678"),
        ("+8613812345678", "+86*******5678"),
        ("1234567", "123****"),
        ("12345", "****"),
        ("", ""),
        (None, ""),
    ],
)
def test_mask_phone(phone, expected):
    assert logging_config.mask_phone(phone) == expected


@pytest.mark.parametrize(
    ("email", "expected"),
    [
        ("alice@example.com", "a****@example.com"),
        ("a@example.com", "a***@example.com"),
        ("@example.com", "***@example.com"),
        ("not-an-email", "***@***"),
        (None, ""),
    ],
)
def test_mask_email(email, expected):
    assert logging_config.mask_email(email) == expected
