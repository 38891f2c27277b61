"""
Detection of contact details and off-platform payment talk in user text.

Bid messages, progress updates and review comments pass through
check_for_contact_info before anything is persisted. Any "@" counts as
an email address.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from task_market_service.core.exceptions import ValidationError

BLOCKED_MESSAGE = (
    "For safety, do not share phone numbers or emails. All messages and payments must "
    "stay on the platform. After payment, you and your helper can exchange contact info "
    "if needed."
)

_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", re.IGNORECASE)

_OBFUSCATED_EMAIL_RES: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"[a-zA-Z0-9._%+-]+\s*\[\s*at\s*\]\s*[a-zA-Z0-9.-]+\s*\[\s*dot\s*\]\s*[a-zA-Z]{2,}",
        re.IGNORECASE,
    ),
    re.compile(
        r"[a-zA-Z0-9._%+-]+\s*\(\s*at\s*\)\s*[a-zA-Z0-9.-]+\s*\(\s*dot\s*\)\s*[a-zA-Z]{2,}",
        re.IGNORECASE,
    ),
    re.compile(r"[a-zA-Z0-9._%+-]+\s+at\s+[a-zA-Z0-9.-]+\s+dot\s+[a-zA-Z]{2,}", re.IGNORECASE),
)

# +353 87 123 4567, 087-123-4567, (087) 123 4567, 0871234567, +1-555-123-4567
_PHONE_RES: tuple[re.Pattern[str], ...] = (
    re.compile(r"\+?\d{1,4}[-.\s]?\(?\d{1,4}\)?[-.\s]?\d{1,4}[-.\s]?\d{1,9}"),
    re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b"),
    re.compile(r"\b\d{2,4}[-.\s]?\d{3}[-.\s]?\d{4}\b"),
    re.compile(r"\(\d{2,4}\)\s*\d{3}[-.\s]?\d{4}"),
    re.compile(r"\b0\d{2}[-.\s]?\d{3}[-.\s]?\d{4}\b"),
    re.compile(r"\+\d{1,4}\s?\d{2,4}\s?\d{3,4}\s?\d{3,4}"),
)
_SUSPICIOUS_DIGITS_RE = re.compile(r"\d{7,}|\d{3,4}[-.\s]\d{3,4}[-.\s]\d{3,4}")

_CURRENCY_SYMBOLS: tuple[str, ...] = (
    "$", "€", "£", "¥", "₹", "₽", "₿", "฿", "₴", "₦", "₱", "₫", "₩", "₪",
)
_CURRENCY_SYMBOL_WORDS: tuple[str, ...] = ("zł", "kr")

_CURRENCY_CODES: tuple[str, ...] = (
    "USD", "EUR", "GBP", "JPY", "CNY", "INR", "AUD", "CAD", "CHF", "NZD",
    "HKD", "SGD", "SEK", "NOK", "DKK", "MXN", "BRL", "ZAR", "RUB", "KRW",
    "THB", "PLN", "TRY", "AED", "SAR", "PHP", "IDR", "MYR", "VND", "CZK",
    "ILS", "CLP", "PEN", "COP", "ARS", "EGP", "PKR", "BDT", "NGN", "UAH",
)

_PAYMENT_WORDS: tuple[str, ...] = (
    "payment", "pay me", "pay you", "paying", "paid",
    "dollar", "dollars", "euro", "euros", "pound", "pounds", "sterling",
    "money", "cash", "currency", "transfer", "wire", "wiring",
    "venmo", "paypal", "zelle", "cashapp", "cash app", "revolut", "wise", "transferwise",
    "bank account", "bank details", "account number", "routing number", "sort code",
    "iban", "swift", "bic",
    "bitcoin", "btc", "crypto", "cryptocurrency", "ethereum", "eth",
    "credit card", "debit card", "card number",
    "invoice", "invoicing",
    "off platform", "off-platform", "outside the app", "outside platform",
    "direct payment", "pay directly", "pay direct",
    "cent", "cents", "pence", "quid", "buck", "bucks",
)  # fmt: skip

_CURRENCY_CODE_RE = re.compile(
    r"\b(?:" + "|".join(_CURRENCY_CODES) + r")\b",
    re.IGNORECASE,
)
_CURRENCY_WORD_RE = re.compile(
    r"(?<!\w)(?:" + "|".join(re.escape(word) for word in _CURRENCY_SYMBOL_WORDS) + r")(?!\w)",
    re.IGNORECASE,
)
_PAYMENT_WORD_RE = re.compile(
    r"\b(?:"
    + "|".join(re.escape(word) for word in _PAYMENT_WORDS if " " not in word)
    + r")s?\b",
    re.IGNORECASE,
)
_PAYMENT_PHRASES: tuple[str, ...] = tuple(word for word in _PAYMENT_WORDS if " " in word)


@dataclass(frozen=True)
class ContentCheckResult:
    """Outcome of scanning one piece of text."""

    is_clean: bool
    contains_email: bool
    contains_phone: bool
    contains_payment_info: bool
    message: str


_CLEAN = ContentCheckResult(
    is_clean=True,
    contains_email=False,
    contains_phone=False,
    contains_payment_info=False,
    message="",
)


def _contains_email(text: str) -> bool:
    if "@" in text or _EMAIL_RE.search(text) is not None:
        return True
    return any(pattern.search(text) is not None for pattern in _OBFUSCATED_EMAIL_RES)


def _contains_phone(text: str) -> bool:
    if any(pattern.search(text) is not None for pattern in _PHONE_RES):
        return True
    digit_count = sum(1 for char in text if char.isdigit())
    return digit_count >= 7 and _SUSPICIOUS_DIGITS_RE.search(text) is not None


def _contains_payment_info(text: str) -> bool:
    if any(symbol in text for symbol in _CURRENCY_SYMBOLS):
        return True
    if _CURRENCY_WORD_RE.search(text) is not None:
        return True
    if _CURRENCY_CODE_RE.search(text) is not None:
        return True
    if _PAYMENT_WORD_RE.search(text) is not None:
        return True
    lowered = text.lower()
    return any(phrase in lowered for phrase in _PAYMENT_PHRASES)


def check_for_contact_info(text: str | None) -> ContentCheckResult:
    """Scan text for emails, phone numbers and payment references."""
    if not text:
        return _CLEAN

    contains_email = _contains_email(text)
    contains_phone = _contains_phone(text)
    contains_payment_info = _contains_payment_info(text)

    if not (contains_email or contains_phone or contains_payment_info):
        return _CLEAN

    return ContentCheckResult(
        is_clean=False,
        contains_email=contains_email,
        contains_phone=contains_phone,
        contains_payment_info=contains_payment_info,
        message=BLOCKED_MESSAGE,
    )


def ensure_clean(text: str | None, field_name: str) -> None:
    """
    Reject text containing contact or payment details.

    Raises:
        ValidationError: CONTACT_INFO_DETECTED with the detection flags in details
    """
    result = check_for_contact_info(text)
    if result.is_clean:
        return
    raise ValidationError(
        "CONTACT_INFO_DETECTED",
        result.message,
        {
            "field": field_name,
            "contains_email": result.contains_email,
            "contains_phone": result.contains_phone,
            "contains_payment_info": result.contains_payment_info,
        },
    )
