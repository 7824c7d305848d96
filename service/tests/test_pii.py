"""Tests for PII detection, log redaction and the logging filter."""

import logging

import pytest
from linguaroute.core.config import Settings
from linguaroute.core.logging_config import configure_logging
from linguaroute.core.pii_filter import PIIFilter, add_pii_filter_to_logger
from linguaroute.core.pii_utils import (
    compile_patterns,
    contains_pii,
    detect_pii,
    redact_for_logs,
)


@pytest.mark.unit
def test_detect_pii_reports_type_and_match():
    findings = detect_pii("Contact jane@contoso.com or jane@contoso.com today")

    assert findings == [("email", "jane@contoso.com")]


@pytest.mark.unit
def test_detect_pii_finds_phone_numbers():
    findings = detect_pii("Call me at +81 90-1234-5678 tomorrow")

    assert [pii_type for pii_type, _ in findings] == ["phone"]
    assert findings[0][1].endswith("90-1234-5678")


@pytest.mark.unit
def test_text_without_pii():
    assert detect_pii("Please restart the service") == []
    assert detect_pii("") == []
    assert contains_pii("Hello world") is False


@pytest.mark.unit
def test_custom_patterns():
    patterns = compile_patterns({"employee_id": r"EMP-\d{5}"})

    assert detect_pii("Assigned to EMP-12345", patterns) == [("employee_id", "EMP-12345")]
    assert detect_pii("jane@contoso.com", patterns) == []


@pytest.mark.unit
def test_redact_for_logs():
    redacted = redact_for_logs("mail jane@contoso.com card 4111 1111 1111 1111")

    assert "jane@contoso.com" not in redacted
    assert "[EMAIL]" in redacted
    assert "[CARD]" in redacted


@pytest.mark.unit
def test_pii_filter_redacts_message_and_args():
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="User %s wrote from jane@contoso.com",
        args=("bob@example.org",),
        exc_info=None,
    )

    assert PIIFilter().filter(record) is True
    message = record.getMessage()
    assert "jane@contoso.com" not in message
    assert "bob@example.org" not in message


@pytest.mark.unit
def test_filter_added_once():
    logger = logging.getLogger("linguaroute.test.pii")
    add_pii_filter_to_logger(logger)
    add_pii_filter_to_logger(logger)

    assert sum(isinstance(f, PIIFilter) for f in logger.filters) == 1


@pytest.mark.unit
def test_configure_logging_installs_filter_on_existing_loggers():
    root = logging.getLogger()
    existing = logging.getLogger("linguaroute.test.configured")
    root_filters = list(root.filters)
    try:
        configure_logging(Settings(LOG_LEVEL="warning"))

        assert any(isinstance(f, PIIFilter) for f in root.filters)
        assert any(isinstance(f, PIIFilter) for f in existing.filters)
    finally:
        root.filters = root_filters
