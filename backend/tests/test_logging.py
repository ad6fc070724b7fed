"""Tests for log formatting and token redaction."""

import json
import logging

import jwt

from otpgate.core.logging import (
    JSONFormatter,
    TokenRedactionFilter,
    get_logger,
    redact_tokens,
    token_fingerprint,
)


def make_record(msg: str, *args, **extra) -> logging.LogRecord:
    record = logging.LogRecord("otpgate.test", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRedaction:
    def test_jwt_replaced_with_fingerprint(self):
        token = jwt.encode({"sub": "abc"}, "x" * 40, algorithm="HS256")

        redacted = redact_tokens(f"bad token {token} received")

        assert token not in redacted
        assert f"<token:{token_fingerprint(token)}>" in redacted

    def test_plain_text_untouched(self):
        assert redact_tokens("OTP sent to a@example.com") == "OTP sent to a@example.com"

    def test_filter_rewrites_formatted_message(self):
        token = jwt.encode({"sub": "abc"}, "x" * 40, algorithm="HS256")
        record = make_record("Authorization: Bearer %s", token)

        assert TokenRedactionFilter().filter(record) is True
        assert token not in record.getMessage()

    def test_fingerprint_is_stable_and_short(self):
        assert token_fingerprint("abc") == token_fingerprint("abc")
        assert len(token_fingerprint("abc")) == 12


class TestJSONFormatter:
    def test_fields_and_extras(self):
        record = make_record('quote " and\nnewline', purpose="login")

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "otpgate.test"
        assert entry["message"] == 'quote " and\nnewline'
        assert entry["purpose"] == "login"
        assert "lineno" not in entry

    def test_get_logger_namespace(self):
        assert get_logger("otp").name == "otpgate.otp"
