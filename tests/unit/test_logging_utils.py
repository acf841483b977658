"""Unit tests for logging helpers."""

import logging

from adaptive_mfa.core.logging_utils import SecretRedactingFilter, get_logger


def _record(msg: str, *args: object) -> logging.LogRecord:
    return logging.LogRecord("test", logging.INFO, __file__, 1, msg, args, None)


class TestSecretRedactingFilter:
    """Tests for credential masking in log records."""

    def test_redacts_credential_pairs(self):
        """Test key=value pairs naming credentials are masked."""
        record = _record("login token=%s password: %s", "abc123", "hunter2")

        assert SecretRedactingFilter().filter(record)
        assert record.getMessage() == "login token=[REDACTED] password: [REDACTED]"

    def test_leaves_other_messages_alone(self):
        """Test unrelated messages keep their arguments."""
        record = _record("user %s logged in", "u1")

        SecretRedactingFilter().filter(record)

        assert record.args == ("u1",)
        assert record.getMessage() == "user u1 logged in"


def test_get_logger_defaults_to_package_name():
    """Test the helper returns the package logger by default."""
    assert get_logger().name == "adaptive_mfa"
    assert get_logger("adaptive_mfa.tests", level=logging.DEBUG).level == logging.DEBUG
