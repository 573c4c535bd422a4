"""
Tests for the PHI log sanitization filter and logging configuration.
"""

import logging

import pytest

from dental_edi.hipaa.log_sanitizer import (
    REDACTED,
    PHISanitizationFilter,
    sanitize_dict,
    sanitize_text,
)


def _record(msg, args=None):
    return logging.LogRecord("dental_edi.test", logging.INFO, __file__, 1, msg, args, None)


class TestSanitizeText:
    def test_phone_and_ssn_redacted(self):
        text = sanitize_text("Call (555) 123-4567 re SSN 123-45-6789")
        assert "123-4567" not in text
        assert "123-45-6789" not in text
        assert text.count(REDACTED) == 2

    def test_member_id_redacted(self):
        text = sanitize_text('{"memberId": "M123456", "payer": "DDCA1"}')
        assert "M123456" not in text
        assert "DDCA1" in text

    def test_non_string_passthrough(self):
        assert sanitize_text(42) == 42


class TestSanitizeDict:
    def test_nested_phi_keys(self):
        payload = {
            "tradingPartnerServiceId": "DDCA1",
            "subscriber": {"memberId": "M1", "firstName": "Jane", "dateOfBirth": "19850412"},
            "claims": [{"first_name": "Tim"}],
        }

        clean = sanitize_dict(payload)

        assert clean["tradingPartnerServiceId"] == "DDCA1"
        assert clean["subscriber"] == {"memberId": REDACTED, "firstName": REDACTED, "dateOfBirth": REDACTED}
        assert clean["claims"] == [{"first_name": REDACTED}]
        # Input is not mutated
        assert payload["subscriber"]["memberId"] == "M1"


class TestFilter:
    def test_filter_redacts_args(self):
        record = _record("Payload: %s for %s", ({"memberId": "M1"}, "555-123-4567"))

        assert PHISanitizationFilter().filter(record) is True
        assert record.getMessage() == f"Payload: {{'memberId': '{REDACTED}'}} for {REDACTED}"

    def test_configure_logging_attaches_filter(self):
        from dental_edi.logging_config import configure_logging

        root = configure_logging("DEBUG")
        try:
            assert root.level == logging.DEBUG
            assert all(
                any(isinstance(f, PHISanitizationFilter) for f in handler.filters)
                for handler in root.handlers
            )
        finally:
            root.setLevel(logging.WARNING)

    def test_configure_logging_is_idempotent(self):
        from dental_edi.logging_config import configure_logging

        root = configure_logging("INFO")
        configure_logging("INFO")
        for handler in root.handlers:
            assert sum(isinstance(f, PHISanitizationFilter) for f in handler.filters) == 1
