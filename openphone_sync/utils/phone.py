"""
Phone number validation and standardization.

Client phone numbers are typed in by hand at intake, so the directory holds
values such as "706-877-4587", "(706) 877-4587", "N/A" or "x". This module
decides which of them are callable and converts them to the format
OpenPhone expects (E.164 where it can be deduced).

Two different normalizations exist on purpose:

- standardize_phone_number() produces the value sent to OpenPhone
- normalize_phone_for_comparison() produces the key used to compare a local
  number against numbers already stored remotely
"""

from __future__ import annotations

import re

# Placeholder values staff enter when no number is known
INVALID_PHONE_VALUES = frozenset(["N/A", "NA", "X", "NONE", "NULL", "", "TBD", "TBA"])

# Digit count bounds for a callable number
MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15

# Anything shorter is an extension or a fragment
MIN_STANDARDIZED_DIGITS = 7

# Number of trailing digits used for loose (partial) matching
PARTIAL_MATCH_DIGITS = 7

_PHONE_PATTERN = re.compile(r"^\+?[\d\s\-().]+$")


def is_placeholder(phone: str | None) -> bool:
    """Return True for empty values and known placeholders such as 'N/A'."""
    if phone is None:
        return True
    return phone.strip().upper() in INVALID_PHONE_VALUES


def digits_only(phone: str | None) -> str:
    """Strip everything except digits."""
    if not phone:
        return ""
    return re.sub(r"\D", "", phone)


def is_valid_phone_number(phone: str | None) -> bool:
    """
    Check whether a raw phone string is a callable number.

    A valid phone:
    1. Is not a placeholder ("N/A", "TBD", "x", empty, ...)
    2. Has between 10 and 15 digits
    3. Contains only digits and the separators space, dash, dot and
       parentheses, with an optional leading '+'

    Args:
        phone: Raw phone string from the client record

    Returns:
        True if the phone can be synced
    """
    if not isinstance(phone, str) or is_placeholder(phone):
        return False

    digits = digits_only(phone)
    if len(digits) < MIN_PHONE_DIGITS or len(digits) > MAX_PHONE_DIGITS:
        return False

    return bool(_PHONE_PATTERN.match(phone.strip()))


def standardize_phone_number(phone: str | None) -> str:
    """
    Convert a raw phone string to the format sent to OpenPhone.

    Rules, applied in order:
    - placeholders become ""
    - everything except digits and '+' is removed
    - a leading '+' is kept as is
    - a leading '00' becomes '+'
    - 10 digits with an area code starting 2-9 get '+1'
    - 11 digits starting with '1' get '+'
    - other numbers of 11 or more digits are returned bare
    - fewer than 7 digits returns "" (extension or fragment)

    Returns:
        Standardized number, or "" when it cannot be standardized

    Examples:
        >>> standardize_phone_number("706-877-4587")
        '+17068774587'
        >>> standardize_phone_number("0044 20 7123 4567")
        '+442071234567'
    """
    if not isinstance(phone, str) or is_placeholder(phone):
        return ""

    sanitized = re.sub(r"[^\d+]", "", phone)

    if sanitized.startswith("+"):
        return sanitized

    if sanitized.startswith("00"):
        return "+" + sanitized[2:]

    if len(sanitized) == 10:
        if sanitized[0] in "23456789":
            return "+1" + sanitized
    elif len(sanitized) == 11 and sanitized.startswith("1"):
        return "+" + sanitized
    elif len(sanitized) >= 11:
        return sanitized
    elif len(sanitized) < MIN_STANDARDIZED_DIGITS:
        return ""

    return sanitized


def normalize_phone_for_comparison(phone: str | None) -> str:
    """
    Normalize a phone number for equality checks against remote numbers.

    Formatting is stripped and the US country code is removed when it can be
    deduced ("+1" with 10 following digits, or 11 digits starting with "1"),
    so "+17068774587", "1 (706) 877-4587" and "706.877.4587" all compare as
    "7068774587".
    """
    if not phone:
        return ""

    normalized = re.sub(r"[^\d+]", "", phone)

    if normalized.startswith("+1") and len(normalized) == 12:
        normalized = normalized[2:]
    elif normalized.startswith("1") and len(normalized) == 11:
        normalized = normalized[1:]

    return normalized


def partial_phone_key(phone: str | None) -> str:
    """
    Return the last seven digits of a phone number for loose matching.

    Returns "" when the number has fewer than seven digits, since a shorter
    suffix would match far too many unrelated numbers.
    """
    digits = digits_only(normalize_phone_for_comparison(phone))
    if len(digits) < PARTIAL_MATCH_DIGITS:
        return ""
    return digits[-PARTIAL_MATCH_DIGITS:]
