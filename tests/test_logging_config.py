"""
Unit tests for logging setup.
"""

import json
import logging

from otpverify.core.logging_config import CustomJsonFormatter, EmailMaskingFilter


def make_record(msg, *args, level=logging.INFO):
    return logging.LogRecord("otpverify.test", level, __file__, 10, msg, args, None)


class TestEmailMasking:

    def test_raw_email_masked(self):
        record = make_record("Resending code to %s", "jane.doe@example.com")

        assert EmailMaskingFilter().filter(record) is True
        assert record.getMessage() == "Resending code to ja******@example.com"

    def test_already_masked_email_unchanged(self):
        record = make_record("Verifying code for ja******@example.com")
        EmailMaskingFilter().filter(record)
        assert record.getMessage() == "Verifying code for ja******@example.com"

    def test_message_without_email_untouched(self):
        record = make_record("POST %s -> %d", "/api/auth/verify-otp", 400)
        EmailMaskingFilter().filter(record)
        assert record.args == ("/api/auth/verify-otp", 400)


class TestJsonFormatter:

    def test_standard_fields(self):
        formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(logger)s %(message)s')
        data = json.loads(formatter.format(make_record("Code expired", level=logging.WARNING)))

        assert data["message"] == "Code expired"
        assert data["level"] == "WARNING"
        assert data["logger"] == "otpverify.test"
        assert data["service"] == "otpverify"
        assert data["timestamp"].endswith("Z")
        assert data["line"] == 10
