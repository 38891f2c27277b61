"""Unit tests for contact and payment detail detection."""

from __future__ import annotations

import pytest

from task_market_service.core.exceptions import ValidationError
from task_market_service.services.content_filter import (
    BLOCKED_MESSAGE,
    check_for_contact_info,
    ensure_clean,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    "text",
    [
        None,
        "",
        "I can do this tomorrow",
        "Halfway there, the shelves are up",
        "Bringing my own ladder and drill",
    ],
)
def test_clean_text(text: str | None) -> None:
    """Ordinary messages pass."""
    result = check_for_contact_info(text)
    assert result.is_clean
    assert result.message == ""


@pytest.mark.unit
@pytest.mark.parametrize(
    "text",
    [
        "mail me at jane.doe@example.com",
        "jane [at] example [dot] com",
        "jane (at) example (dot) com",
        "jane at example dot com",
        "ping me @jane",
    ],
)
def test_email_detection(text: str) -> None:
    """Plain and obfuscated emails are detected."""
    result = check_for_contact_info(text)
    assert not result.is_clean
    assert result.contains_email
    assert result.message == BLOCKED_MESSAGE


@pytest.mark.unit
@pytest.mark.parametrize(
    "text",
    [
        "call +353 87 123 4567",
        "my number is 087-123-4567",
        "(087) 123 4567 after six",
        "text 0871234567",
        "+1-555-123-4567",
    ],
)
def test_phone_detection(text: str) -> None:
    """Common phone number layouts are detected."""
    result = check_for_contact_info(text)
    assert not result.is_clean
    assert result.contains_phone


@pytest.mark.unit
@pytest.mark.parametrize(
    "text",
    [
        "I will do it for $50",
        "costs 40 EUR",
        "send it via PayPal",
        "just pay me directly",
        "what is your IBAN",
        "we can settle off-platform",
        "cash only",
        "20 zł is fine",
    ],
)
def test_payment_detection(text: str) -> None:
    """Currency symbols, codes and payment talk are detected."""
    result = check_for_contact_info(text)
    assert not result.is_clean
    assert result.contains_payment_info


@pytest.mark.unit
def test_payment_words_need_word_boundaries() -> None:
    """Words merely containing a payment term are not flagged."""
    assert check_for_contact_info("ten percent of the shelves are otherwise fine").is_clean


@pytest.mark.unit
def test_ensure_clean_reports_flags() -> None:
    """ensure_clean raises CONTACT_INFO_DETECTED with the field and flags."""
    ensure_clean("All good", "message")
    with pytest.raises(ValidationError) as exc_info:
        ensure_clean("mail jane@example.com or pay cash", "comment")

    error = exc_info.value
    assert error.error == "CONTACT_INFO_DETECTED"
    assert error.status_code == 400
    assert error.details == {
        "field": "comment",
        "contains_email": True,
        "contains_phone": False,
        "contains_payment_info": True,
    }
